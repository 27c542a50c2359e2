"""
Purpose: Domain models for bids.
What it does:
- Bid (a provider's offer on one order, with the provider's quality frozen in)
- BidStatus = submitted | accepted | rejected | expired
- BidDecision = accepted | rejected (the two ways an order owner can respond)
- DeliveryWindow (pharmacy delivery buckets) and its speed scale

Rule: Status changes only from SUBMITTED. Storage and locking live in the ledger.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Union

from common.exceptions import BidNotPending, InvalidBid
from orders.models import utcnow
from providers.models import QualitySnapshot


class BidStatus(str, Enum):
    SUBMITTED = "submitted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class BidDecision(str, Enum):
    ACCEPT = "accepted"
    REJECT = "rejected"


class DeliveryWindow(str, Enum):
    WITHIN_HOURS = "within-hours"
    ASAP = "asap"
    SAME_DAY = "same-day"
    READY_FOR_PICKUP = "ready-for-pickup"
    NEXT_DAY = "next-day"
    TWO_TO_THREE_DAYS = "2-3-days"

    @classmethod
    def parse(cls, value: Union[str, "DeliveryWindow"]) -> "DeliveryWindow":
        if isinstance(value, DeliveryWindow):
            return value
        key = str(value).strip().lower().replace("_", "-").replace(" ", "-")
        key = _WINDOW_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise InvalidBid(f"Unknown delivery window: {value!r}", detail={"delivery_window": value}) from None

    @property
    def speed(self) -> float:
        return DELIVERY_WINDOW_SPEED[self]


# Relative duration of each bucket. Smaller is faster.
DELIVERY_WINDOW_SPEED: Dict[DeliveryWindow, float] = {
    DeliveryWindow.WITHIN_HOURS: 1.0,
    DeliveryWindow.ASAP: 2.0,
    DeliveryWindow.SAME_DAY: 3.0,
    DeliveryWindow.READY_FOR_PICKUP: 3.0,
    DeliveryWindow.NEXT_DAY: 4.0,
    DeliveryWindow.TWO_TO_THREE_DAYS: 6.0,
}

_WINDOW_ALIASES = {
    "today": "same-day",
    "sameday": "same-day",
    "tomorrow": "next-day",
    "nextday": "next-day",
    "pickup": "ready-for-pickup",
    "2-3-day": "2-3-days",
    "2-to-3-days": "2-3-days",
}


@dataclass
class Bid:
    """
    A provider's offer on an order. At most one per (order, provider).
    """
    id: str
    order_id: str
    provider_id: str
    amount: float
    currency: str = "USD"

    # Category-specific estimate: pharmacy uses delivery_window, lab uses turnaround_hours
    delivery_window: Optional[DeliveryWindow] = None
    turnaround_hours: Optional[float] = None

    note: Optional[str] = None
    valid_until: Optional[datetime] = None  # None = never expires

    status: BidStatus = BidStatus.SUBMITTED
    quality: QualitySnapshot = field(default_factory=QualitySnapshot)

    submitted_at: datetime = field(default_factory=utcnow)
    responded_at: Optional[datetime] = None
    response_note: Optional[str] = None

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.valid_until is not None and now >= self.valid_until

    def is_live(self, now: Optional[datetime] = None) -> bool:
        return self.status == BidStatus.SUBMITTED and not self.is_expired(now)

    def speed_value(self) -> float:
        """Estimate on a common 'smaller is faster' axis."""
        if self.delivery_window is not None:
            return self.delivery_window.speed
        if self.turnaround_hours is not None:
            return float(self.turnaround_hours)
        raise InvalidBid(f"Bid {self.id} carries no delivery estimate", detail={"bid_id": self.id})

    # --- status changes (ledger holds the order lock) ---

    def _require_submitted(self) -> None:
        if self.status != BidStatus.SUBMITTED:
            raise BidNotPending(
                f"Bid {self.id} is {self.status.value}, not submitted",
                detail={"bid_id": self.id, "status": self.status.value},
            )

    def accept(self, now: datetime, note: Optional[str] = None) -> None:
        self._require_submitted()
        self.status = BidStatus.ACCEPTED
        self.responded_at = now
        self.response_note = note

    def reject(self, now: datetime, note: Optional[str] = None) -> None:
        self._require_submitted()
        self.status = BidStatus.REJECTED
        self.responded_at = now
        self.response_note = note

    def expire(self, now: datetime) -> None:
        self._require_submitted()
        self.status = BidStatus.EXPIRED
        self.responded_at = now
