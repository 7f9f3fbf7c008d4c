# backend/fiscalpos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fiscalpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fiscalpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # bcrypt cost for supervisor PINs
    PIN_HASH_ROUNDS = int(os.environ.get("PIN_HASH_ROUNDS", "12"))

    # Business day boundaries (sale numbering, void window)
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "America/Argentina/Buenos_Aires")

    # Fiscal invoicing gateway
    FISCAL_GATEWAY_URL = os.environ.get("FISCAL_GATEWAY_URL", "https://api.factuhoy.com/v1")
    FISCAL_GATEWAY_API_KEY = os.environ.get("FISCAL_GATEWAY_API_KEY")
    FISCAL_GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("FISCAL_GATEWAY_TIMEOUT_SECONDS", "30"))

    # Invoice retry policy
    INVOICE_MAX_RETRIES = int(os.environ.get("INVOICE_MAX_RETRIES", "3"))
    INVOICE_RETRY_INTERVAL_SECONDS = float(os.environ.get("INVOICE_RETRY_INTERVAL_SECONDS", "300"))
    INVOICE_RETRY_BATCH_SIZE = int(os.environ.get("INVOICE_RETRY_BATCH_SIZE", "50"))
    INVOICE_RETRY_ITEM_DELAY_SECONDS = float(os.environ.get("INVOICE_RETRY_ITEM_DELAY_SECONDS", "1.0"))
    # A submission claim older than this is treated as abandoned (worker crashed mid-call)
    FISCAL_SUBMISSION_CLAIM_TIMEOUT_SECONDS = float(os.environ.get("FISCAL_SUBMISSION_CLAIM_TIMEOUT_SECONDS", "120"))

    # Post-commit work (invoice / credit note generation).
    # Eager mode runs tasks inline; used by tests and the CLI.
    BACKGROUND_TASKS_EAGER = _env_bool("BACKGROUND_TASKS_EAGER", False)
    BACKGROUND_MAX_WORKERS = int(os.environ.get("BACKGROUND_MAX_WORKERS", "4"))

    # Loyalty: points earned per LOYALTY_CENTS_PER_POINT spent; value of one point on redemption
    LOYALTY_CENTS_PER_POINT = int(os.environ.get("LOYALTY_CENTS_PER_POINT", "10000"))
    LOYALTY_POINT_VALUE_CENTS = int(os.environ.get("LOYALTY_POINT_VALUE_CENTS", "10"))

    # Alert thresholds
    LARGE_DISCOUNT_ALERT_PERCENT = float(os.environ.get("LARGE_DISCOUNT_ALERT_PERCENT", "15"))
    HIGH_VALUE_SALE_ALERT_CENTS = int(os.environ.get("HIGH_VALUE_SALE_ALERT_CENTS", "5000000"))
