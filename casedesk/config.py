from __future__ import annotations

from functools import lru_cache
from typing import List, Optional
from uuid import UUID

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the casedesk service."""

    app_name: str = "casedesk"
    app_version: str = "0.1.0"
    log_level: str = Field(default="INFO")

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Cases, evaluation configs and inbox entries
    database_url: str = Field(default="sqlite:///./casedesk.db")
    database_echo: bool = Field(default=False)

    # External chat channel (Telegram Bot API)
    telegram_bot_token: Optional[str] = Field(default=None)
    telegram_chat_id: Optional[str] = Field(default=None)
    telegram_api_base: str = Field(default="https://api.telegram.org")
    telegram_timeout_seconds: float = Field(default=5.0)
    channel_queue_maxsize: int = Field(default=100)
    dashboard_url: str = Field(default="http://localhost:3000/admin/dashboard")
    display_timezone: str = Field(default="Asia/Ho_Chi_Minh")

    # Stale case escalation
    stale_threshold_hours: int = Field(default=18)
    stale_monitor_enabled: bool = Field(default=True)
    stale_monitor_interval_seconds: float = Field(default=900.0)

    catalog_cache_ttl_seconds: float = Field(default=300.0)

    # Requester used when the caller has no linked Person record.
    # Unset means such requests are rejected.
    default_requester_id: Optional[UUID] = Field(default=None)

    model_config = SettingsConfigDict(
        env_prefix="CASEDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


def reset_settings_cache() -> None:
    get_settings.cache_clear()
