from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError, ValidationErrors

LogFormat = Literal["json", "console"]

DEFAULT_ENDPOINT = "https://ecs.aliyuncs.com/"
DEFAULT_POLL_INTERVAL_S = 5
DEFAULT_WAIT_TIMEOUT_S = 60


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ECS_IMAGE_BUILDER_",
        env_file=".env",
        extra="ignore",
    )

    run_root: Path = Field(default=Path("_runs"))
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default="console")
    poll_interval_s: int = Field(default=DEFAULT_POLL_INTERVAL_S, ge=1)
    endpoint: str = Field(default=DEFAULT_ENDPOINT)
    request_timeout_s: float = Field(default=10.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return Settings()


class AccessConfig(BaseSettings):
    """
    Credentials and home region.

    Values come from the environment (ALICLOUD_ACCESS_KEY, ALICLOUD_SECRET_KEY,
    ALICLOUD_REGION, SECURITY_TOKEN) unless passed explicitly.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    access_key: str = Field(
        default="",
        validation_alias=AliasChoices("access_key", "ALICLOUD_ACCESS_KEY"),
    )
    secret_key: str = Field(
        default="",
        validation_alias=AliasChoices("secret_key", "ALICLOUD_SECRET_KEY"),
    )
    region: str = Field(
        default="",
        validation_alias=AliasChoices("region", "ALICLOUD_REGION"),
    )
    security_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("security_token", "SECURITY_TOKEN"),
    )

    def problems(self) -> list[ConfigurationError]:
        errs: list[ConfigurationError] = []
        if not self.access_key or not self.secret_key:
            errs.append(
                ConfigurationError(
                    "ALICLOUD_ACCESS_KEY and ALICLOUD_SECRET_KEY must be set "
                    "in the build config or environment variables."
                )
            )
        if not self.region:
            errs.append(
                ConfigurationError(
                    "region option or ALICLOUD_REGION must be provided "
                    "in the build config or environment variables."
                )
            )
        return errs

    def prepare(self) -> "AccessConfig":
        errs = self.problems()
        if errs:
            raise ValidationErrors(errs)
        return self
