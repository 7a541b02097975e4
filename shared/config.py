"""
Shared configuration management for the petstore query layer.
"""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SESSION_SECRET = "change-me-change-me-change-me-32b"
LOCAL_ENV = "local"


class BaseConfig(BaseSettings):
    """Base configuration class with common settings.

    Every field can be overridden with a ``PETSTORE_``-prefixed environment
    variable (``PETSTORE_LOG_LEVEL=debug``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="PETSTORE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default=LOCAL_ENV)
    log_level: str = Field(default="info")

    # Resource service
    petstore_base_url: str = Field(default="https://petstore.swagger.io/v2")
    request_timeout_seconds: float = Field(default=10.0)
    retry_max_attempts: int = Field(default=3)
    retry_base_delay: float = Field(default=0.5)

    # Query cache
    default_stale_seconds: float = Field(default=120.0)
    fetch_timeout_seconds: Optional[float] = Field(default=None)
    gc_retention_seconds: float = Field(default=300.0)

    # Session / credentials
    session_name: str = Field(default="app_session")
    session_secret: str = Field(default=DEFAULT_SESSION_SECRET)
    session_secure_cookie: bool = Field(default=False)

    @property
    def uses_default_session_secret(self) -> bool:
        return self.session_secret == DEFAULT_SESSION_SECRET

    @model_validator(mode="after")
    def _require_session_secret(self) -> "BaseConfig":
        if self.env != LOCAL_ENV and self.uses_default_session_secret:
            raise ValueError(
                f"PETSTORE_SESSION_SECRET must be set when env is '{self.env}'"
            )
        return self


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
