"""
Purpose: Environment-driven configuration for the bidding engine.
What it does:

Reads MARKETPLACE_* variables (optionally from a .env file) into a frozen
EngineSettings object. Example .env:

MARKETPLACE_LOG_LEVEL=INFO
MARKETPLACE_DEFAULT_CURRENCY=USD
MARKETPLACE_BID_VALIDITY_MINUTES=120
MARKETPLACE_SWEEP_INTERVAL_SECONDS=60
MARKETPLACE_MAX_BROADCAST_PROVIDERS=10
MARKETPLACE_AWARD_RETRY_LIMIT=3
MARKETPLACE_BACKGROUND_AUDIT=true

Rule: No engine logic here, just parameters.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

load_dotenv()

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class EngineSettings:
    """
    Central configuration for the engine's ambient behavior.
    Scoring weights are NOT here: they live in versioned ScoringConfigs.
    """

    log_level: str = "INFO"
    default_currency: str = "USD"

    # None means submitted bids never expire unless the provider sets valid_until.
    default_bid_validity_minutes: Optional[int] = None

    # --- Sweeper ---
    sweep_interval_seconds: int = 60

    # --- Broadcast / award ---
    max_broadcast_providers: int = 10
    award_retry_limit: int = 3

    # Deliver audit events on a background thread (fire-and-forget).
    background_audit: bool = True

    def validate(self) -> None:
        if logging.getLevelName(self.log_level) == f"Level {self.log_level}":
            raise ValueError(f"Unknown log level: {self.log_level}")

        if not self.default_currency or len(self.default_currency) != 3:
            raise ValueError("default_currency must be a 3-letter ISO code")

        if self.default_bid_validity_minutes is not None and self.default_bid_validity_minutes <= 0:
            raise ValueError("default_bid_validity_minutes must be > 0")

        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        if self.max_broadcast_providers <= 0:
            raise ValueError("max_broadcast_providers must be > 0")

        if self.award_retry_limit < 1:
            raise ValueError("award_retry_limit must be >= 1")


def _int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from None


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"{key} must be a boolean, got {raw!r}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> EngineSettings:
    """
    Build settings from the environment (or an explicit mapping, for tests).
    """
    env = os.environ if env is None else env

    settings = EngineSettings(
        log_level=env.get("MARKETPLACE_LOG_LEVEL", "INFO").upper(),
        default_currency=env.get("MARKETPLACE_DEFAULT_CURRENCY", "USD").upper(),
        default_bid_validity_minutes=_int(env, "MARKETPLACE_BID_VALIDITY_MINUTES", None),
        sweep_interval_seconds=_int(env, "MARKETPLACE_SWEEP_INTERVAL_SECONDS", 60),
        max_broadcast_providers=_int(env, "MARKETPLACE_MAX_BROADCAST_PROVIDERS", 10),
        award_retry_limit=_int(env, "MARKETPLACE_AWARD_RETRY_LIMIT", 3),
        background_audit=_bool(env, "MARKETPLACE_BACKGROUND_AUDIT", True),
    )
    settings.validate()
    return settings


def configure_logging(settings: Optional[EngineSettings] = None) -> None:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
