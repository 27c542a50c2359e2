"""
Purpose: Every error kind the bidding engine can surface.
What it does:

All caller-facing outcomes inherit from MarketplaceError and carry:
- code:      stable machine-readable identifier (ORDER_ALREADY_ASSIGNED, ...)
- message:   human readable description
- detail:    optional extra context (dict / None)
- retryable: whether retrying after fixing the underlying condition makes sense

Validation/conflict errors are deterministic. Anything else raised by a
collaborator (storage, push) propagates untouched.

Rule: raise these where the condition is detected; never catch them inside
the award or scoring path.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class MarketplaceError(Exception):
    """Base class for all engine errors."""

    code = "MARKETPLACE_ERROR"
    retryable = True

    def __init__(self, message: str, code: Optional[str] = None, detail: Optional[Dict[str, Any]] = None):
        self.message = message
        if code is not None:
            self.code = code
        self.detail = detail
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# --- Order lifecycle ---

class InvalidTransition(MarketplaceError):
    code = "INVALID_TRANSITION"


class OrderNotAcceptingBids(MarketplaceError):
    code = "ORDER_NOT_ACCEPTING_BIDS"


class OrderAlreadyAssigned(MarketplaceError):
    """The caller's candidate is moot; scoring must be redone (if at all)."""

    code = "ORDER_ALREADY_ASSIGNED"
    retryable = False


class OrderNotFound(MarketplaceError):
    code = "ORDER_NOT_FOUND"


# --- Bids ---

class ProviderUnavailable(MarketplaceError):
    code = "PROVIDER_UNAVAILABLE"


class DuplicateBid(MarketplaceError):
    code = "DUPLICATE_BID"


class BidNotPending(MarketplaceError):
    code = "BID_NOT_PENDING"


class BidExpired(MarketplaceError):
    code = "BID_EXPIRED"


class InvalidBid(MarketplaceError):
    code = "INVALID_BID"


class BidNotFound(MarketplaceError):
    code = "BID_NOT_FOUND"


class StaleBid(MarketplaceError):
    """Award re-validation failed. Re-run evaluation and retry with a fresh winner."""

    code = "STALE_BID"


# --- Scoring ---

class InsufficientBids(MarketplaceError):
    code = "INSUFFICIENT_BIDS"


class InvalidScoringConfig(MarketplaceError, ValueError):
    code = "INVALID_SCORING_CONFIG"


class ConfigConflict(MarketplaceError):
    code = "CONFIG_CONFLICT"


class NoActiveConfig(MarketplaceError):
    code = "NO_ACTIVE_CONFIG"


class ConfigNotFound(MarketplaceError):
    code = "CONFIG_NOT_FOUND"


# --- Providers ---

class ProviderNotFound(MarketplaceError):
    code = "PROVIDER_NOT_FOUND"

