# backend/fleetops/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fleetops.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fleetops.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Trip lifecycle policy (read into LifecycleSettings per request)
    ALLOCATION_BUDGET_PCT = os.environ.get("ALLOCATION_BUDGET_PCT", "100")
    PERIOD_LOCK_ENFORCED = os.environ.get("PERIOD_LOCK_ENFORCED", "true").lower() == "true"
    CONFLICT_RETRY_ATTEMPTS = int(os.environ.get("CONFLICT_RETRY_ATTEMPTS", "3"))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
    ALLOCATION_BUDGET_PCT = "100"
    PERIOD_LOCK_ENFORCED = True
    CONFLICT_RETRY_ATTEMPTS = 3
