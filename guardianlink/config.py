"""
GuardianLink Configuration.

Pydantic Settings v2 — loads from .env, environment variables.
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="GUARDIANLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "GuardianLink"
    app_version: str = "1.0.0"
    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    # ── Logging ──────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")  # json or console

    # ── Alerting ─────────────────────────────────────────────────────────
    # Risk alerts always reach the parent; the student copy is optional.
    risk_alert_include_student: bool = Field(default=True)

    # ── Meetings ─────────────────────────────────────────────────────────
    max_reschedules: int = Field(default=2, ge=0)

    # ── Signaling ────────────────────────────────────────────────────────
    ice_servers: List[str] = Field(
        default=[
            "stun:stun.l.google.com:19302",
            "stun:stun1.l.google.com:19302",
        ],
    )

    # ── Collections ──────────────────────────────────────────────────────
    students_collection: str = "students"
    notifications_collection: str = "notifications"
    meeting_requests_collection: str = "meetingRequests"
    calls_collection: str = "calls"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
