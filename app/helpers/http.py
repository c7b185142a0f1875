from aiohttp import (
    AsyncResolver,
    ClientSession,
    ClientTimeout,
    DummyCookieJar,
    TCPConnector,
)

from app.helpers.cache import loop_acache
from app.helpers.config import CONFIG


@loop_acache
async def aiohttp_session() -> ClientSession:
    """
    Create the AIOHTTP session shared by forum calls.

    Forum API calls are authenticated with headers, so cookies are dropped and never leak between requests. Proxy settings are read from the environment.

    Returns a `ClientSession` instance.
    """
    return ClientSession(
        cookie_jar=DummyCookieJar(),
        trust_env=True,
        # Performance
        connector=TCPConnector(resolver=AsyncResolver()),
        # Reliability
        timeout=ClientTimeout(
            connect=CONFIG.forum.timeout.connect_sec,
            total=CONFIG.forum.timeout.total_sec,
        ),
    )
