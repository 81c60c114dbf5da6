# backend/matcycle/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/matcycle.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///matcycle.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Mat test window and "long on test" thresholds (days)
    TEST_PERIOD_DAYS = int(os.environ.get("TEST_PERIOD_DAYS", "7"))
    LONG_TEST_WARNING_DAYS = int(os.environ.get("LONG_TEST_WARNING_DAYS", "20"))
    LONG_TEST_CRITICAL_DAYS = int(os.environ.get("LONG_TEST_CRITICAL_DAYS", "25"))

    # Bounded retries for the read-allocate-write sequence
    ALLOCATION_RETRY_ATTEMPTS = int(os.environ.get("ALLOCATION_RETRY_ATTEMPTS", "3"))
