# backend/franchise_ledger/config.py
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

    # SQLite DB stored in backend/instance/franchise_ledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///franchise_ledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Bulk imports keep full counts but only the first N error/warning entries
    IMPORT_MAX_ERRORS = int(os.environ.get("IMPORT_MAX_ERRORS", "50"))
    IMPORT_MAX_WARNINGS = int(os.environ.get("IMPORT_MAX_WARNINGS", "20"))

    # Refund/cancel policy: when False a refund only changes sale status/amounts
    REFUND_RESTORES_STOCK = _env_bool("REFUND_RESTORES_STOCK", False)

    # Absolute currency difference above which the two COGS figures are flagged
    COGS_DIVERGENCE_TOLERANCE = os.environ.get("COGS_DIVERGENCE_TOLERANCE", "0.01")

    # P&L window when the caller gives neither start nor end
    REPORT_DEFAULT_DAYS = int(os.environ.get("REPORT_DEFAULT_DAYS", "30"))

    # Inventory report: positions with stock but no sale in this many days are dead stock
    DEAD_STOCK_DAYS = int(os.environ.get("DEAD_STOCK_DAYS", "90"))
