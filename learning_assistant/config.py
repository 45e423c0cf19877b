"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openrouter_api_key: str = Field(default="", alias="OPENROUTER_API_KEY")
    openrouter_model: str = Field(default="google/gemini-2.0-flash-exp:free", alias="OPENROUTER_MODEL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    database_path: Path = Field(default=Path("assistant.db"), alias="DATABASE_PATH")
    max_steps: int = Field(default=10, ge=1, alias="MAX_STEPS")
    request_timeout_seconds: float = Field(default=60.0, alias="REQUEST_TIMEOUT_SECONDS")
    scheduler_poll_interval_seconds: float = Field(default=2.0, alias="SCHEDULER_POLL_INTERVAL_SECONDS")
    # Comma-separated tool names that wait for the user's approval before running.
    confirm_tools: str = Field(default="cancelScheduledTask", alias="CONFIRM_TOOLS")
    content_feed_url: str = Field(default="https://blog.cloudflare.com/rss/", alias="CONTENT_FEED_URL")
    http_host: str = Field(default="127.0.0.1", alias="HTTP_HOST")
    http_port: int = Field(default=8787, alias="HTTP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()


def confirmation_required_tools(settings: Settings) -> frozenset[str]:
    """Return the tool names that must be approved before they execute."""

    return frozenset(n.strip() for n in settings.confirm_tools.split(",") if n.strip())
