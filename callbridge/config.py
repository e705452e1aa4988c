"""
Centralised configuration loaded from environment / .env file.
Uses pydantic-settings for validation and type coercion.
"""

from __future__ import annotations

from pathlib import Path
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from callbridge.models import DedupKeyPolicy

_PLACEHOLDER_API_KEY = "your_builderprime_api_key_here"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Dialpad ─────────────────────────────────────────────────
    dialpad_webhook_secret: str = Field(default="", description="Webhook signing secret")
    dialpad_api_key: str = Field(default="", description="Used to fetch call logs by id")
    dialpad_base_url: str = Field(default="https://dialpad.com/api/v2")

    # ── Generic webhook ─────────────────────────────────────────
    generic_webhook_secret: str = Field(default="")

    # ── BuilderPrime CRM ────────────────────────────────────────
    builderprime_api_key: str = Field(default="", description="Blank = in-memory directory")
    builderprime_base_url: str = Field(default="https://api.builderprime.com/v1")
    builderprime_activity_url: str = Field(
        default="https://api.builderprime.com/api/client-activities/v1"
    )
    crm_write_token: str = Field(default="", description="secretKey sent with every activity")

    # ── Pipeline ────────────────────────────────────────────────
    dedup_key_policy: DedupKeyPolicy = Field(default=DedupKeyPolicy.COMPOSITE)
    http_timeout_seconds: float = Field(default=30.0, gt=0)

    # ── Logging ─────────────────────────────────────────────────
    log_dir: Path = Field(default=Path("data/logs"))
    json_logs: bool = Field(default=True)

    # ── Server ──────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)

    @property
    def use_mock_directory(self) -> bool:
        """True when no usable BuilderPrime key is configured."""
        key = self.builderprime_api_key.strip()
        return not key or key == _PLACEHOLDER_API_KEY


def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]
