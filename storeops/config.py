"""Runtime settings read from the environment."""

from __future__ import annotations

import os


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/storeops.db")
API_URL = os.getenv("STOREOPS_API_URL", "http://localhost:8000")
DEFAULT_TIMEZONE = os.getenv("STOREOPS_DEFAULT_TIMEZONE", "America/New_York")

# Store status poll interval in seconds.
POLL_INTERVAL_SECONDS = _int_env("STOREOPS_POLL_INTERVAL", 900)
SPECIAL_HOURS_LOOKAHEAD_DAYS = _int_env("STOREOPS_SPECIAL_HOURS_LOOKAHEAD_DAYS", 7)


def stripe_webhook_secret() -> str | None:
    return os.getenv("STRIPE_WEBHOOK_SECRET")
