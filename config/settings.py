"""
Application settings.

All configuration comes from environment variables, optionally loaded from a
.env file in the project root.

Environment variables:
- RAZORPAY_WEBHOOK_SECRET: Shared secret used to sign gateway webhooks
- RAZORPAY_KEY_SECRET: API key secret used to sign checkout callbacks
- COMMISSION_PERIOD_TYPE: daily, weekly or monthly (default: monthly)
- COMMISSION_MAX_ATTEMPTS: Write attempts per purchase before giving up (default: 5)
- COMMISSION_RETRY_BACKOFF_SECONDS: Base backoff between attempts (default: 0.05)
- COMMISSION_CLAIM_TIMEOUT_SECONDS: Age after which an unfinished purchase claim
  may be taken over by another reconciler (default: 300)
- LOG_LEVEL: Root log level for the API process (default: INFO)

Supabase credentials are read by `repositories/client.py`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from domain.period import PeriodType

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


@dataclass(frozen=True, slots=True)
class Settings:
    razorpay_webhook_secret: Optional[str]
    razorpay_key_secret: Optional[str]
    commission_period_type: PeriodType = PeriodType.MONTHLY
    commission_max_attempts: int = 5
    commission_retry_backoff_seconds: float = 0.05
    commission_claim_timeout_seconds: float = 300.0
    log_level: str = "INFO"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}")
    if value < 1:
        raise RuntimeError(f"Environment variable {name} must be at least 1")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be a number, got {raw!r}")


def load_settings() -> Settings:
    """Build settings from the current environment."""

    period_raw = os.getenv("COMMISSION_PERIOD_TYPE", PeriodType.MONTHLY.value).strip().lower()
    try:
        period_type = PeriodType(period_raw)
    except ValueError:
        raise RuntimeError(
            "COMMISSION_PERIOD_TYPE must be one of: "
            + ", ".join(p.value for p in PeriodType)
        )

    return Settings(
        razorpay_webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET") or None,
        razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET") or None,
        commission_period_type=period_type,
        commission_max_attempts=_int_env("COMMISSION_MAX_ATTEMPTS", 5),
        commission_retry_backoff_seconds=_float_env("COMMISSION_RETRY_BACKOFF_SECONDS", 0.05),
        commission_claim_timeout_seconds=_float_env("COMMISSION_CLAIM_TIMEOUT_SECONDS", 300.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


__all__ = ["Settings", "get_settings", "load_settings"]
