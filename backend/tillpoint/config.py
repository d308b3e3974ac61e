# backend/tillpoint/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tillpoint.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tillpoint.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Receipt numbers look like RCPT-20260101-093015-4F1A2B
    RECEIPT_PREFIX = os.environ.get("RECEIPT_PREFIX", "RCPT")

    # Max allowed difference between a submitted and a recomputed promotion discount
    PROMOTION_DISCOUNT_TOLERANCE_CENTS = int(os.environ.get("PROMOTION_DISCOUNT_TOLERANCE_CENTS", "1"))

    # When on, checkout payments must cover the gross total
    ENFORCE_PAYMENT_TOTAL = _env_bool("ENFORCE_PAYMENT_TOTAL", True)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
