from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    app_name: str = "reimburse"
    log_level: str = "INFO"

    # SQLite keeps local runs dependency-free; deployments point this at postgresql+asyncpg.
    database_url: str = "sqlite+aiosqlite:///./var/reimburse.db"
    db_pool_size: int = 10
    db_max_overflow: int = 5
    db_statement_timeout_ms: int = 0

    # Downloaded attachments and generated vouchers live under this directory.
    storage_dir: str = "var/storage"
    # Voucher folders are grouped under a dedicated top-level folder.
    voucher_folder: str = "vouchers"

    # Download worker cadence and per-attachment budget.
    download_poll_interval_s: float = 5.0
    download_batch_size: int = 10
    download_timeout_s: float = 30.0
    download_max_attempts: int = 3
    # Optional bearer token sent with attachment downloads.
    download_auth_token: str | None = None

    # Invoice worker cadence and per-attachment budget.
    invoice_poll_interval_s: float = 10.0
    invoice_batch_size: int = 5
    invoice_process_timeout_s: float = 120.0
    # Extractions below this confidence never take part in duplicate detection.
    invoice_dedup_min_confidence: float = 0.5

    # Remote approval status polling for instances awaiting a human verdict.
    status_poll_interval_s: float = 30.0
    status_batch_size: int = 20

    # Voucher generation for approved instances.
    voucher_poll_interval_s: float = 15.0
    voucher_batch_size: int = 5
    voucher_timeout_s: float = 60.0
    # Finished vouchers are mailed here; unset skips delivery.
    accountant_email: str | None = None

    # Bound external calls so a stalled platform cannot pin a worker item.
    ext_call_timeout_ms: int = 8000
    ext_retry_backoff_ms: int = 200

    # AI verdict routing thresholds.
    audit_high_confidence: float = 0.95
    audit_low_confidence: float = 0.70
    # Every AI decision is attributed to an accountable human approver.
    ai_approver_user_id: str = "ai-approver"
    ai_completed_by: str = "ai"

    # Capability selection for local development (fake only ships in-tree).
    ai_provider: str = "fake"
    messaging_provider: str = "fake"


@lru_cache
def get_settings() -> Settings:
    return Settings()
