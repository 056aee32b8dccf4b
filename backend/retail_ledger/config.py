# backend/retail_ledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # SQLite file in the working directory unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///retail_ledger.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Consistency errors are surfaced to the caller unless retries are opted into
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "1"))
    LEDGER_RETRY_BACKOFF_SECONDS = float(os.environ.get("LEDGER_RETRY_BACKOFF_SECONDS", "0.1"))

    # How long a SQLite writer waits on the database lock before giving up
    SQLITE_BUSY_TIMEOUT_SECONDS = float(os.environ.get("SQLITE_BUSY_TIMEOUT_SECONDS", "15"))

    # Returns move the product aggregate counter; set to also restock the sold variant
    RETURNS_RESTOCK_VARIANTS = _env_bool("RETURNS_RESTOCK_VARIANTS", False)

    RETURN_REASON_MIN_LENGTH = int(os.environ.get("RETURN_REASON_MIN_LENGTH", "5"))

    DEFAULT_CANCEL_REASON = "No reason given"
    DEFAULT_SALE_PAYMENT_METHOD = "CASH"
    DEFAULT_PURCHASE_PAYMENT_METHOD = "CREDIT"
    DEFAULT_REFUND_METHOD = "CASH"


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
    RETURNS_RESTOCK_VARIANTS = False
    SQLITE_BUSY_TIMEOUT_SECONDS = 15.0
