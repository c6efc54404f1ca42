# backend/settlepos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/settlepos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///settlepos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Order lock TTLs (seconds). Counter settlement uses the short one,
    # delivery remit keeps the order longer while cash is being counted.
    ORDER_LOCK_TTL_SECONDS = int(os.environ.get("ORDER_LOCK_TTL_SECONDS", "300"))
    REMIT_LOCK_TTL_SECONDS = int(os.environ.get("REMIT_LOCK_TTL_SECONDS", "600"))

    # Receipt numbers look like 20260301-000042
    RECEIPT_NUMBER_DIGITS = int(os.environ.get("RECEIPT_NUMBER_DIGITS", "6"))
