# backend/backoffice/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/backoffice.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///backoffice.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Single tax regime, in basis points (1800 = 18%)
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "1800"))

    # Installment credit limits
    MAX_INSTALLMENTS = int(os.environ.get("MAX_INSTALLMENTS", "24"))
    INSTALLMENT_PERIOD_DAYS = int(os.environ.get("INSTALLMENT_PERIOD_DAYS", "30"))

    # Attempts for transactions that hit lock/version conflicts
    LEDGER_RETRY_ATTEMPTS = int(os.environ.get("LEDGER_RETRY_ATTEMPTS", "3"))
