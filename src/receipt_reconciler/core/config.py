from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"
    api_token: str | None = None

    database_url: str = "sqlite:///./receipt_reconciler.db"
    redis_url: str = "redis://localhost:6379/0"

    http_timeout_seconds: float = 30.0

    # Accounting ledger (QuickBooks Online REST API); tokens are refreshed externally.
    ledger_base_url: str = "https://quickbooks.api.intuit.com"
    ledger_realm_id: str | None = None
    ledger_access_token: str | None = None
    ledger_minor_version: int = 65

    gmail_base_url: str = "https://gmail.googleapis.com/gmail/v1"
    gmail_access_token: str | None = None
    gmail_user_id: str = "me"
    gmail_processed_label: str = "RLT-Processed"
    gmail_max_results: int = 50

    enable_ocr: bool = True
    tesseract_lang: str = "eng"
    ocr_min_confidence: float = 0.0
    pdf_max_pages: int = 10

    match_window_days: int = 3
    match_threshold: int = 80

    default_category: str = "Materials & Supplies"
    default_account_search: str = "Job Supplies"

    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 5 * 60

    # "thread" guards a single process only.
    pipeline_lock_backend: Literal["thread", "redis"] = "redis"
    pipeline_lock_name: str = "receipt-reconciler:pipeline-cycle"
    pipeline_lock_timeout_seconds: int = 15 * 60

    storage_backend: Literal["local", "s3"] = "local"
    local_storage_path: Path = Path(".local_storage")

    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    s3_bucket: str = "receipt-reconciler"
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None


settings = Settings()
