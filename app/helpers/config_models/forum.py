from math import isfinite

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(Exception):
    pass


class PollModel(BaseModel):
    attempts: int = Field(default=10, ge=1)
    delay_sec: float = Field(default=1.5, ge=0)


class TimeoutModel(BaseModel):
    connect_sec: float = Field(default=5, gt=0)
    total_sec: float = Field(default=30, gt=0)


class ForumModel(BaseModel):
    poll: PollModel = PollModel()  # Object is fully defined by default
    timeout: TimeoutModel = TimeoutModel()  # Object is fully defined by default


class ForumConfigModel(BaseModel, frozen=True):
    """
    Forum credentials and target, validated for a single request.
    """

    api_key: SecretStr
    api_user: str
    base_url: str
    group_id: float
    to_address: str

    @property
    def group_path(self) -> str:
        """
        Group identifier as it appears in URLs.

        Integral values drop their decimal part (e.g. `12.0` becomes `12`).
        """
        if self.group_id.is_integer():
            return str(int(self.group_id))
        return repr(self.group_id)


class ForumEnvModel(BaseSettings):
    """
    Raw forum settings, read from the environment.

    Empty variables are considered as missing.
    """

    # Pydantic settings
    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        env_prefix="",
        extra="ignore",
    )

    # Order matters, missing values are reported in this order
    api_key: SecretStr | None = None
    base_url: str | None = None
    api_user: str | None = None
    to_address: str | None = None
    group_id: str | None = None

    def validated(self) -> ForumConfigModel:
        """
        Check all values are set and usable.

        Raises a `ConfigError` naming the first missing value, or if the group ID is not a finite number.
        """
        for name in ForumEnvModel.model_fields:
            if getattr(self, name) is None:
                raise ConfigError(f"Server misconfigured: missing {name.upper()}")

        assert self.api_key and self.api_user and self.base_url and self.to_address

        # Blank is set but not a number, unlike an empty value which reads as missing
        try:
            group_id = float(str(self.group_id).strip())
        except ValueError:
            group_id = float("nan")
        if not isfinite(group_id):
            raise ConfigError("Server misconfigured: GROUP_ID must be a number")

        return ForumConfigModel(
            api_key=self.api_key,
            api_user=self.api_user,
            base_url=self.base_url.rstrip("/"),
            group_id=group_id,
            to_address=self.to_address,
        )


def load_forum_config() -> ForumConfigModel:
    """
    Load the forum configuration from the environment.

    Environment is read again at each call, so updated values are picked up without a restart.
    """
    return ForumEnvModel().validated()
