"""Application configuration settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = ".env"
ENV_FILE_ENCODING = "utf-8"


class Settings(BaseSettings):
    """Server-side configuration values loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=ENV_FILE, env_file_encoding=ENV_FILE_ENCODING, extra="ignore"
    )

    database_url: str = Field(
        description="Database connection URL used by SQLAlchemy to connect to the DB",
        min_length=1,
    )
    listener_dsn: str | None = Field(
        default=None,
        description="Explicit asyncpg DSN for the change listener; derived from DATABASE_URL when empty",
    )
    change_channel: str = Field(
        default="table_changed",
        description="PostgreSQL NOTIFY channel carrying row change events",
        pattern=r"^[a-z_][a-z0-9_]*$",
    )
    change_listener_enabled: bool = Field(
        default=True,
        description="Start the background change listener together with the API",
    )
    install_change_triggers: bool = Field(
        default=True,
        description="Create or refresh the change triggers when the API starts",
    )
    listener_retry_initial_delay: float = Field(default=1.0, gt=0)
    listener_retry_max_delay: float = Field(default=30.0, gt=0)
    listener_health_check_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between liveness probes on the listener connection",
    )
    hub_send_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds a hub send may take before the connection is dropped",
    )
    hub_require_token: bool = Field(
        default=False,
        description="Reject hub websocket connections without a valid access token",
    )
    secret_key: str | None = Field(
        default=None, description="Secret key used to verify JWT access tokens"
    )
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:4200"],
        description="Origins allowed to call the HTTP endpoints from a browser",
    )

    @model_validator(mode="after")
    def _validate_hub_auth(self) -> "Settings":
        if self.hub_require_token and not self.secret_key:
            raise ValueError("SECRET_KEY must be provided when HUB_REQUIRE_TOKEN is enabled")
        if self.listener_retry_max_delay < self.listener_retry_initial_delay:
            raise ValueError(
                "LISTENER_RETRY_MAX_DELAY must not be lower than LISTENER_RETRY_INITIAL_DELAY"
            )
        return self


class ClientSettings(BaseSettings):
    """Configuration for applications consuming the change hub."""

    model_config = SettingsConfigDict(
        env_prefix="CHANGESTREAMS_",
        env_file=ENV_FILE,
        env_file_encoding=ENV_FILE_ENCODING,
        extra="ignore",
    )

    api_base_url: str = Field(default="http://localhost:8000", min_length=1)
    hub_url: str | None = Field(
        default=None,
        description="Websocket URL of the change hub; derived from API_BASE_URL when empty",
    )
    access_token: str | None = None
    reconnect_initial_delay: float = Field(default=0.5, gt=0)
    reconnect_max_delay: float = Field(default=30.0, gt=0)
    request_timeout: float = Field(default=10.0, gt=0)

    def resolved_hub_url(self) -> str:
        """Return the websocket URL of the hub."""

        if self.hub_url:
            return self.hub_url
        base = self.api_base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://") :]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://") :]
        return f"{base}/changes"


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings instance."""

    return Settings()


@lru_cache
def get_client_settings() -> ClientSettings:
    """Return cached client settings instance."""

    return ClientSettings()


def reset_settings_cache() -> None:
    """Clear the settings cache to force reloading from the environment."""

    get_settings.cache_clear()
    get_client_settings.cache_clear()


__all__ = [
    "ClientSettings",
    "Settings",
    "get_client_settings",
    "get_settings",
    "reset_settings_cache",
]
