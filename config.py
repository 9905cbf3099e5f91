"""Application settings, loaded once at process start"""
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image-preview"
DEFAULT_TEXT_MODEL = "gemini-2.5-flash-preview-05-20"


class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env", env_ignore_empty=True, extra="ignore", frozen=True, populate_by_name=True
    )

    api_key: Optional[str] = Field(
        default=None,
        validation_alias="GEMINI_API_KEY",
        description="Server-side Gemini API key",
    )
    api_base: str = Field(default=DEFAULT_API_BASE, validation_alias="GEMINI_API_BASE")
    image_model: str = Field(default=DEFAULT_IMAGE_MODEL, validation_alias="GEMINI_IMAGE_MODEL")
    text_model: str = Field(default=DEFAULT_TEXT_MODEL, validation_alias="GEMINI_TEXT_MODEL")

    image_max_attempts: int = Field(default=5, ge=1)
    suggestion_max_attempts: int = Field(default=1, ge=1)
    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        validation_alias="RETRY_BASE_DELAY_SECONDS",
    )
    retry_policy: Literal["all", "classified"] = "all"

    upstream_timeout: float = Field(
        default=120.0,
        ge=0.0,
        validation_alias="UPSTREAM_TIMEOUT_SECONDS",
        description="httpx timeout for one upstream call",
    )
    request_deadline: Optional[float] = Field(
        default=None,
        ge=0.0,
        validation_alias="REQUEST_DEADLINE_SECONDS",
        description="Optional deadline for a whole retry sequence",
    )

    cors_enabled: bool = True
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1)

    @field_validator("api_base")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("retry_policy", mode="before")
    @classmethod
    def lower_policy(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def api_key_configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls, env_file: Optional[str] = ".env") -> "Settings":
        """Read environment variables and a local .env file; raises pydantic.ValidationError"""
        return cls(_env_file=env_file)
