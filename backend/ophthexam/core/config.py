from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[3]


def _split_list(raw: str, *, label: str) -> list[str]:
    raw = raw.strip()
    if not raw:
        return []
    if raw.startswith("["):
        parsed = json.loads(raw)
        if not isinstance(parsed, list):
            raise ValueError(f"{label} JSON must be an array")
        return [str(x) for x in parsed]
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "OphthExam API"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    database_url: str = "sqlite:///./ophthexam.db"

    public_app_origin: str = "https://ophthexam.lovable.app"
    share_default_expiry_hours: float = 72
    share_token_length: int = Field(default=32, ge=16, le=128)

    stuck_exam_threshold_minutes: int = Field(default=10, ge=1)
    cleanup_cron_token: str | None = None

    aws_region: str = "us-east-1"
    s3_report_bucket: str = "report-pdfs"
    pdf_signed_url_ttl_seconds: int = 60 * 60 * 24 * 365
    storage_mode: Literal["auto", "local", "s3"] = "auto"
    local_storage_dir: Path = REPO_ROOT / "backend" / "artifacts"
    image_fetch_timeout_seconds: float = 10.0

    enable_dev_auth: bool = False
    access_token_ttl_minutes: int = 480
    session_signing_key: str = "replace-with-strong-session-key"
    bootstrap_admin_emails: str = ""

    cors_allowed_origins: str = "http://localhost:5173"

    rate_limit_auth_per_minute: str = "20/minute"
    rate_limit_mutating_per_user: str = "60/minute"
    rate_limit_mutating_per_ip: str = "120/minute"
    rate_limit_read_per_user: str = "180/minute"
    rate_limit_enabled: bool = True

    @property
    def is_local_dev(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def resolved_storage_mode(self) -> Literal["local", "s3"]:
        if self.storage_mode != "auto":
            return self.storage_mode
        return "local" if self.is_local_dev else "s3"

    @property
    def local_storage_dir_resolved(self) -> Path:
        path = Path(self.local_storage_dir)
        if path.is_absolute():
            return path
        # Relative paths from env are repo-root relative.
        return (REPO_ROOT / path).resolve()

    @property
    def local_report_dir(self) -> Path:
        return self.local_storage_dir_resolved / self.s3_report_bucket

    @property
    def cors_allowed_origins_list(self) -> list[str]:
        return _split_list(self.cors_allowed_origins, label="CORS_ALLOWED_ORIGINS")

    @property
    def bootstrap_admin_emails_list(self) -> list[str]:
        return [email.lower() for email in _split_list(self.bootstrap_admin_emails, label="BOOTSTRAP_ADMIN_EMAILS")]


@lru_cache
def get_settings() -> Settings:
    return Settings()
