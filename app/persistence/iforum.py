from abc import ABC, abstractmethod

from app.helpers.monitoring import start_as_current_span
from app.models.user import ForumUserModel


class ForumError(Exception):
    pass


class UserNotFoundError(ForumError):
    pass


class IForum(ABC):
    @abstractmethod
    @start_as_current_span("forum_handle_mail")
    async def handle_mail(self, raw_email: bytes) -> None:
        pass

    @abstractmethod
    @start_as_current_span("forum_lookup_user")
    async def lookup_user(self, email: str) -> ForumUserModel | None:
        pass

    @abstractmethod
    @start_as_current_span("forum_add_to_group")
    async def add_to_group(self, username: str) -> str:
        pass
