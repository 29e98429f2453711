# backend/shopledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Concurrency retry policy for deadlocks / optimistic lock conflicts
    RETRY_ATTEMPTS = int(os.environ.get("RETRY_ATTEMPTS", "3"))
    RETRY_BACKOFF_SECONDS = float(os.environ.get("RETRY_BACKOFF_SECONDS", "0.1"))

    # Only one open low-stock alert per inventory record when enabled
    STOCK_ALERT_DEDUPLICATE = _env_bool("STOCK_ALERT_DEDUPLICATE", True)

    # Store credit issued by approved returns; 0 disables expiry
    STORE_CREDIT_VALIDITY_DAYS = int(os.environ.get("STORE_CREDIT_VALIDITY_DAYS", "365"))

    # Receipt documents (local receipt store)
    RECEIPT_DIR = os.environ.get("RECEIPT_DIR")  # defaults to <instance>/receipts
    RECEIPT_BASE_URL = os.environ.get("RECEIPT_BASE_URL", "http://localhost:5000/receipts")
