# backend/pos_ingest/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pos_ingest.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Shared secret for terminals. Unset means the x-pos-api-key header is not checked.
    POS_API_KEY = os.environ.get("POS_API_KEY") or None

    # Comma-separated; the first entry is echoed in Access-Control-Allow-Origin
    ALLOWED_POS_ORIGINS = os.environ.get("ALLOWED_POS_ORIGINS", "*")

    POS_RATE_LIMIT_PER_MINUTE = _int_env("POS_RATE_LIMIT_PER_MINUTE", 60)
    POS_CUSTOMERS_RATE_LIMIT_PER_MINUTE = _int_env("POS_CUSTOMERS_RATE_LIMIT_PER_MINUTE", 120)
    POS_RATE_LIMIT_WINDOW_SECONDS = _int_env("POS_RATE_LIMIT_WINDOW_SECONDS", 60)
    POS_RATE_LIMIT_MAX_KEYS = _int_env("POS_RATE_LIMIT_MAX_KEYS", 10_000)
