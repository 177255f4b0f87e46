"""Centralized configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application-wide settings sourced from .env / environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────────────
    expense_env: str = "development"
    expense_log_level: str = "INFO"

    # ── API Server ───────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    cors_origins: str = ""

    # ── Database ─────────────────────────────────────────────────────
    database_url: str = "sqlite+aiosqlite:///data/expenses.db"

    # ── Auth ─────────────────────────────────────────────────────────
    jwt_secret: str = ""
    jwt_ttl_seconds: int = 60 * 60 * 8
    auth_bypass: bool = False
    auth_bypass_hr_identifier: str = ""

    # ── Receipt storage ──────────────────────────────────────────────
    storage_provider: str = "local"
    storage_local_path: str = "uploads"
    receipt_max_bytes: int = Field(default=5 * 1024 * 1024, gt=0)
    receipt_max_files_per_item: int = Field(default=10, gt=0)
    receipt_allowed_mime_types: str = "application/pdf,image/png,image/jpeg,image/heic"

    # ── NetSuite export ──────────────────────────────────────────────
    netsuite_base_url: str = ""
    netsuite_account: str = ""
    netsuite_token: str = ""
    netsuite_timeout_seconds: float = 30.0

    # ── Finance ──────────────────────────────────────────────────────
    recent_batches_limit: int = Field(default=20, gt=0)

    @field_validator("storage_provider")
    @classmethod
    def _normalize_provider(cls, value: str) -> str:
        return value.strip().lower()

    # ── Derived ──────────────────────────────────────────────────────
    @property
    def data_dir(self) -> Path:
        """Return the data directory, creating it if needed."""
        path = Path("data")
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def allowed_cors_origins(self) -> list[str]:
        """Parse comma-separated CORS origins."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def allowed_receipt_types(self) -> set[str]:
        """Parse comma-separated receipt mime types."""
        return {
            mime.strip().lower()
            for mime in self.receipt_allowed_mime_types.split(",")
            if mime.strip()
        }

    @property
    def netsuite_configured(self) -> bool:
        """Whether a real NetSuite endpoint is configured."""
        return bool(self.netsuite_base_url.strip())


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the singleton Settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
