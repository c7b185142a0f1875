import random
import string
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import ClientSession, test_utils, web
from pydantic import SecretStr

from app.helpers.config_models.forum import ForumConfigModel
from app.models.user import ForumUserModel
from app.persistence.iforum import ForumError, IForum

FORUM_ENV = {
    "API_KEY": "dummy-key",
    "API_USER": "system",
    "BASE_URL": "https://forum.example.com",
    "GROUP_ID": "42",
    "TO_ADDRESS": "subscribe@forum.example.com",
}


class ForumMock(IForum):
    """
    In-memory forum.

    Lookups return the configured results in order, the last one is repeated when exhausted.
    """

    added: list[str]
    lookups: list[str]
    mails: list[bytes]

    _group_error: str | None
    _lookup_results: list[ForumUserModel | None]
    _mail_error: str | None

    def __init__(
        self,
        lookup_results: list[ForumUserModel | None] | None = None,
        group_error: str | None = None,
        mail_error: str | None = None,
    ) -> None:
        self.added = []
        self.lookups = []
        self.mails = []
        self._group_error = group_error
        self._lookup_results = lookup_results or [None]
        self._mail_error = mail_error

    async def handle_mail(self, raw_email: bytes) -> None:
        if self._mail_error:
            raise ForumError(self._mail_error)
        self.mails.append(raw_email)

    async def lookup_user(self, email: str) -> ForumUserModel | None:
        index = min(len(self.lookups), len(self._lookup_results) - 1)
        self.lookups.append(email)
        return self._lookup_results[index]

    async def add_to_group(self, username: str) -> str:
        if self._group_error:
            raise ForumError(self._group_error)
        self.added.append(username)
        return '{"success":"OK"}'


@dataclass
class ForumRecord:
    """
    Requests received by the fake forum, and the responses it will send.
    """

    requests: list[tuple[str, str, dict[str, str], Any]] = field(default_factory=list)
    responses: dict[str, tuple[int, Any]] = field(default_factory=dict)


@pytest.fixture
def random_email() -> str:
    local = "".join(random.choice(string.ascii_lowercase) for _ in range(12))
    return f"{local}@example.com"


@pytest.fixture
def forum_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    for key, value in FORUM_ENV.items():
        monkeypatch.setenv(key, value)
    return FORUM_ENV


@pytest_asyncio.fixture
async def forum_server() -> AsyncGenerator[tuple[ForumRecord, str]]:
    """
    Fake forum admin API, served on localhost.

    Yields the record of received requests and the base URL.
    """
    record = ForumRecord()

    def _respond(name: str, default: Any) -> web.Response:
        status, body = record.responses.get(name, (200, default))
        if isinstance(body, str):
            return web.Response(status=status, text=body)
        return web.json_response(body, status=status)

    async def _handle_mail(request: web.Request) -> web.Response:
        record.requests.append(
            ("POST", request.path, dict(request.headers), await request.json())
        )
        return _respond("handle_mail", {"success": "OK"})

    async def _users(request: web.Request) -> web.Response:
        record.requests.append(
            ("GET", request.path, dict(request.headers), dict(request.query))
        )
        return _respond("users", [])

    async def _members(request: web.Request) -> web.Response:
        record.requests.append(
            ("PUT", request.path, dict(request.headers), dict(await request.post()))
        )
        return _respond("members", {"success": "OK", "usernames": []})

    app = web.Application()
    app.router.add_post("/admin/email/handle_mail", _handle_mail)
    app.router.add_get("/admin/users/list/active.json", _users)
    app.router.add_put("/groups/{group_id}/members.json", _members)

    server = test_utils.TestServer(app, host="127.0.0.1")
    await server.start_server()
    try:
        yield record, str(server.make_url("/")).rstrip("/")
    finally:
        await server.close()


@pytest.fixture
def forum_config(forum_server: tuple[ForumRecord, str]) -> ForumConfigModel:
    _, base_url = forum_server
    return ForumConfigModel(
        api_key=SecretStr("dummy-key"),
        api_user="system",
        base_url=base_url,
        group_id=42,
        to_address="subscribe@forum.example.com",
    )


@pytest_asyncio.fixture
async def client_session() -> AsyncGenerator[ClientSession]:
    async with ClientSession() as session:
        yield session
