from base64 import b64encode
from datetime import UTC, datetime
from email.utils import format_datetime, make_msgid

_LINESEP = "\r\n"
_MESSAGE_ID_DOMAIN = "local.test"


def subscribe_subject(sender: str, now: datetime) -> str:
    """
    Subject of the subscription email.

    Format is `subscribe <email> <timestamp>`, timestamp is UTC, with milliseconds and a `Z` suffix (e.g. `2024-01-31T08:15:00.123Z`).
    """
    timestamp = now.astimezone(UTC).isoformat(timespec="milliseconds")
    return f"subscribe {sender} {timestamp.replace('+00:00', 'Z')}"


def build_subscribe_mail(
    sender: str,
    to: str,
    now: datetime | None = None,
) -> bytes:
    """
    Build the raw email asking the forum to subscribe the sender.

    Header values are written as given, without folding, re-quoting or RFC 2047 encoding, so the forum reads the same sender and subject as submitted. Lines end with CRLF and the message ends with a trailing CRLF.

    Raises a `ValueError` if a header value contains a line break.

    Returns the message as UTF-8 bytes.
    """
    now = (now or datetime.now(UTC)).astimezone(UTC)

    headers = {
        "From": sender,
        "To": to,
        "Subject": subscribe_subject(sender, now),
        "Date": format_datetime(now, usegmt=True),
        "Message-ID": make_msgid(domain=_MESSAGE_ID_DOMAIN),
        "MIME-Version": "1.0",
        "Content-Type": "text/plain; charset=UTF-8",
    }
    for name, value in headers.items():
        # A line break would let the value inject its own headers
        if "\r" in value or "\n" in value:
            raise ValueError(f"Invalid mail header {name}: line breaks are not allowed")

    lines = [f"{name}: {value}" for name, value in headers.items()]
    lines += ["", "subscribe"]
    return (_LINESEP.join(lines) + _LINESEP).encode("utf-8")


def encode_mail(raw_email: bytes) -> str:
    """
    Encode a raw email as base64, as expected by the forum mail handler.
    """
    return b64encode(raw_email).decode("ascii")
