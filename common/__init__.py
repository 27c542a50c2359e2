"""
Shared building blocks used by every domain package.

Public API:
- Error kinds (exceptions)
- Per-order locking (OrderLockManager)
- Audit events and publishing (AuditEvent, AuditPublisher, sinks)
"""
from .exceptions import (
    MarketplaceError,
    InvalidTransition,
    OrderNotAcceptingBids,
    ProviderUnavailable,
    DuplicateBid,
    BidNotPending,
    BidExpired,
    InsufficientBids,
    StaleBid,
    OrderAlreadyAssigned,
    InvalidBid,
    InvalidScoringConfig,
    ConfigConflict,
    NoActiveConfig,
    ConfigNotFound,
    OrderNotFound,
    BidNotFound,
    ProviderNotFound,
)
from .locks import OrderLockManager
from .events import AuditEvent, AuditPublisher, LoggingAuditSink, InMemoryAuditSink

__all__ = [
    "MarketplaceError",
    "InvalidTransition",
    "OrderNotAcceptingBids",
    "ProviderUnavailable",
    "DuplicateBid",
    "BidNotPending",
    "BidExpired",
    "InsufficientBids",
    "StaleBid",
    "OrderAlreadyAssigned",
    "InvalidBid",
    "InvalidScoringConfig",
    "ConfigConflict",
    "NoActiveConfig",
    "ConfigNotFound",
    "OrderNotFound",
    "BidNotFound",
    "ProviderNotFound",
    "OrderLockManager",
    "AuditEvent",
    "AuditPublisher",
    "LoggingAuditSink",
    "InMemoryAuditSink",
]
