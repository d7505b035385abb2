"""Settings for the portal messaging core."""

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
    redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")
    # "memory" keeps the tree in-process; "redis" shares it across processes
    realtime_backend: str = _env_field("memory", "REALTIME_BACKEND")
    realtime_namespace: str = _env_field("rt", "REALTIME_NAMESPACE")
    realtime_write_retries: int = _env_field(16, "REALTIME_WRITE_RETRIES")
    realtime_listener_poll_seconds: float = _env_field(1.0, "REALTIME_LISTENER_POLL_SECONDS")

    user_search_url: str = _env_field("http://localhost:8000", "USER_SEARCH_URL", "APP_URL")
    user_search_path: str = _env_field("/api/users/search", "USER_SEARCH_PATH")
    user_search_timeout_seconds: float = _env_field(5.0, "USER_SEARCH_TIMEOUT_SECONDS")
    user_search_token: Optional[str] = _env_field(None, "USER_SEARCH_TOKEN")

    environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
    obs_enabled: bool = _env_field(True, "OBS_ENABLED")
    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")
    service_name: str = _env_field("portal-messaging", "SERVICE_NAME")
    git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("realtime_backend", mode="before")
    def _normalise_backend(cls, value):  # type: ignore[override]
        if value in (None, ""):
            return "memory"
        text = str(value).strip().lower()
        if text not in ("memory", "redis"):
            raise ValueError(f"unsupported realtime backend: {value}")
        return text

    @field_validator("user_search_url", mode="before")
    def _strip_trailing_slash(cls, value):  # type: ignore[override]
        if value in (None, ""):
            return "http://localhost:8000"
        return str(value).rstrip("/")


def _normalise_level(level: str) -> str:
    return level.upper()


settings = Settings()
settings.obs_log_level = _normalise_level(settings.obs_log_level)
