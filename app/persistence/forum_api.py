from typing import Any
from urllib.parse import quote, urlencode

from aiohttp import ClientResponse, ClientSession
from yarl import URL

from app.helpers.config_models.forum import ForumConfigModel
from app.helpers.http import aiohttp_session
from app.helpers.logging import logger
from app.helpers.mail import encode_mail
from app.helpers.monitoring import start_as_current_span
from app.models.user import ForumUserModel
from app.persistence.iforum import ForumError, IForum


class ForumApi(IForum):
    """
    Forum admin API, authenticated with an API key.

    Each call is sent once, errors are not retried. Any non-2xx response raises a `ForumError` with the status and the response body.
    """

    _config: ForumConfigModel
    _session: ClientSession | None

    def __init__(
        self,
        config: ForumConfigModel,
        session: ClientSession | None = None,
    ):
        self._config = config
        self._session = session

    @start_as_current_span("forum_handle_mail")
    async def handle_mail(self, raw_email: bytes) -> None:
        """
        Submit a raw email to the forum, as if it was received by the forum mailbox.
        """
        session = await self._use_session()
        async with session.post(
            headers=self._headers(),
            json={"email_encoded": encode_mail(raw_email)},
            url=self._url("/admin/email/handle_mail"),
        ) as res:
            await self._raise_for_status(res, "handle_mail")
        logger.debug("Mail submitted to %s", self._config.base_url)

    @start_as_current_span("forum_lookup_user")
    async def lookup_user(self, email: str) -> ForumUserModel | None:
        """
        Search an active user by email.

        If multiple users match the filter, the one with the exact same email (case-insensitive) is preferred, otherwise the first one.

        Returns `None` if no user is found.
        """
        session = await self._use_session()
        async with session.get(
            headers=self._headers(Accept="application/json"),
            url=self._url(
                "/admin/users/list/active.json",
                filter=email,
                show_emails="true",
            ),
        ) as res:
            await self._raise_for_status(res, "lookup user")
            users: Any = await res.json(content_type=None)

        # Not indexed yet
        if not isinstance(users, list) or not users:
            return None

        lower_email = email.lower()
        exact = next(
            (
                user
                for user in users
                if isinstance(user, dict)
                and str(user.get("email") or "").lower() == lower_email
            ),
            None,
        )
        return ForumUserModel.model_validate(exact or users[0])

    @start_as_current_span("forum_add_to_group")
    async def add_to_group(self, username: str) -> str:
        """
        Add a user to the configured group.

        Returns the raw response body.
        """
        group = quote(self._config.group_path, safe="")
        session = await self._use_session()
        async with session.put(
            data={"usernames": username},
            headers=self._headers(),
            url=self._url(f"/groups/{group}/members.json"),
        ) as res:
            await self._raise_for_status(res, "add to group")
            return await res.text(errors="replace")

    def _url(self, path: str, **query: str) -> URL:
        """
        Build an URL to the forum.

        Query is percent-encoded as a form would, `+` included.
        """
        url = f"{self._config.base_url}{path}"
        if query:
            url += f"?{urlencode(query)}"
        return URL(url, encoded=True)

    def _headers(self, **extra: str) -> dict[str, str]:
        return {
            "Api-Key": self._config.api_key.get_secret_value(),
            "Api-Username": self._config.api_user,
            **extra,
        }

    async def _use_session(self) -> ClientSession:
        if not self._session:
            self._session = await aiohttp_session()
        return self._session

    @staticmethod
    async def _raise_for_status(res: ClientResponse, action: str) -> None:
        """
        Raise a `ForumError` if the response is not a 2xx.

        Body is read entirely and included in the error message.
        """
        if 200 <= res.status < 300:
            return
        text = await res.text(errors="replace")
        raise ForumError(f"{action} failed: HTTP {res.status} {text}")
