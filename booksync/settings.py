"""Settings for the booksync client with observability configuration."""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    if env_names:
        alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
        return Field(default=default, validation_alias=alias)
    return Field(default=default)


class Settings(BaseSettings):
    api_base_url: str = _env_field("http://localhost:5000", "API_BASE_URL", "BOOKSYNC_API_URL")
    # Socket.IO server is mounted next to the API unless overridden
    push_url: Optional[str] = _env_field(None, "PUSH_URL", "BOOKSYNC_PUSH_URL")
    push_path: str = _env_field("/ws", "PUSH_PATH")
    http_timeout_seconds: float = _env_field(15.0, "HTTP_TIMEOUT_SECONDS")

    # Fallback polling cadence per resource. Chat messages poll only while the
    # push channel is not authoritative for the chat.
    messages_poll_interval_seconds: float = _env_field(5.0, "MESSAGES_POLL_INTERVAL_SECONDS")
    notifications_poll_interval_seconds: float = _env_field(30.0, "NOTIFICATIONS_POLL_INTERVAL_SECONDS")
    internal_chats_poll_interval_seconds: float = _env_field(30.0, "INTERNAL_CHATS_POLL_INTERVAL_SECONDS")
    fetch_silent_retries: int = _env_field(2, "FETCH_SILENT_RETRIES")
    fetch_retry_delay_seconds: float = _env_field(1.0, "FETCH_RETRY_DELAY_SECONDS")

    push_handshake_timeout_seconds: float = _env_field(10.0, "PUSH_HANDSHAKE_TIMEOUT_SECONDS")
    push_backoff_base_seconds: float = _env_field(1.0, "PUSH_BACKOFF_BASE_SECONDS")
    push_backoff_max_seconds: float = _env_field(30.0, "PUSH_BACKOFF_MAX_SECONDS")

    environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
    obs_enabled: bool = _env_field(True, "OBS_ENABLED")
    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")
    service_name: str = _env_field("booksync-client", "SERVICE_NAME")
    git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("api_base_url", "push_url", mode="before")
    def _strip_trailing_slash(cls, value):  # type: ignore[override]
        if isinstance(value, str):
            value = value.strip()
            return value.rstrip("/") or None
        return value

    @field_validator("fetch_silent_retries", mode="before")
    def _clamp_retries(cls, value):  # type: ignore[override]
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return 2

    def resolved_push_url(self) -> str:
        return self.push_url or self.api_base_url


def _normalise_level(level: str) -> str:
    return level.upper()


settings = Settings()
settings.obs_log_level = _normalise_level(settings.obs_log_level)

