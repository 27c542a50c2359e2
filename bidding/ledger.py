"""
Purpose: The Bid Ledger, the only place bids are stored and change status.
What it does:
- submit / update_bid / withdraw for providers
- respond (accept / reject) for the order owner
- award: the atomic single-winner section (accept one, reject the rest,
  assign the order) with full rollback on failure
- cancel: cancel an order and retire its open bids in one locked step
- expire_stale: the sweeper's expiry pass
- read side: get, bids_for_order, bids_for_provider, live_bids, statistics

Every mutation runs under the order's lock (common.locks). Audit events are
collected inside the lock and published after it is released.

Rule: No scoring here. Errors propagate to the caller untouched.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple, Union

from common.events import BID_ENTITY, ORDER_ENTITY, AuditEvent, AuditPublisher
from common.exceptions import (
    BidExpired,
    BidNotFound,
    BidNotPending,
    DuplicateBid,
    InvalidBid,
    InvalidTransition,
    OrderAlreadyAssigned,
    OrderNotAcceptingBids,
    ProviderUnavailable,
    StaleBid,
)
from common.locks import OrderLockManager
from config.settings import EngineSettings
from orders.intake import OrderBook
from orders.models import Order, OrderStatus, ServiceCategory, StatusChange, utcnow
from orders.state_machine import transition
from providers.directory import ProviderDirectory
from providers.models import Provider
from .models import Bid, BidDecision, BidStatus, DeliveryWindow

logger = logging.getLogger(__name__)

OTHER_BID_ACCEPTED = "Another bid was accepted"
ORDER_CANCELLED = "Order cancelled"
WITHDRAWN = "Withdrawn by provider"


@dataclass
class BidStatistics:
    total: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    average_amount: Optional[float] = None
    acceptance_rate: float = 0.0  # percent of all bids
    average_response_hours: Optional[float] = None


@dataclass
class _OrderSnapshot:
    """Fields the award path may touch, for rollback."""
    status: OrderStatus
    assigned_provider_id: Optional[str]
    total_amount: Optional[float]
    currency: Optional[str]
    assigned_at: Optional[datetime]
    last_status_change_at: Optional[datetime]
    completed_at: Optional[datetime]
    history_len: int

    @classmethod
    def take(cls, order: Order) -> "_OrderSnapshot":
        return cls(
            status=order.status,
            assigned_provider_id=order.assigned_provider_id,
            total_amount=order.total_amount,
            currency=order.currency,
            assigned_at=order.assigned_at,
            last_status_change_at=order.last_status_change_at,
            completed_at=order.completed_at,
            history_len=len(order.history),
        )

    def restore(self, order: Order) -> None:
        order.status = self.status
        order.assigned_provider_id = self.assigned_provider_id
        order.total_amount = self.total_amount
        order.currency = self.currency
        order.assigned_at = self.assigned_at
        order.last_status_change_at = self.last_status_change_at
        order.completed_at = self.completed_at
        del order.history[self.history_len:]


BidState = Tuple[BidStatus, Optional[datetime], Optional[str]]


def order_event(order: Order, change: StatusChange) -> AuditEvent:
    return AuditEvent(
        entity=ORDER_ENTITY,
        entity_id=order.id,
        order_id=order.id,
        from_state=change.from_status.value if change.from_status else None,
        to_state=change.to_status.value,
        note=change.note,
        actor=change.actor,
        at=change.at,
    )


def bid_event(
    bid: Bid, from_status: Optional[BidStatus], note: Optional[str], actor: str, at: datetime
) -> AuditEvent:
    return AuditEvent(
        entity=BID_ENTITY,
        entity_id=bid.id,
        order_id=bid.order_id,
        from_state=from_status.value if from_status else None,
        to_state=bid.status.value,
        note=note,
        actor=actor,
        at=at,
    )


class BidLedger:
    """
    In-memory, thread-safe bid store keyed by id with an (order, provider) index.
    """

    def __init__(
        self,
        order_book: OrderBook,
        directory: ProviderDirectory,
        locks: Optional[OrderLockManager] = None,
        publisher: Optional[AuditPublisher] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.order_book = order_book
        self.directory = directory
        self.locks = locks if locks is not None else OrderLockManager()
        self.publisher = publisher or AuditPublisher(background=False)
        self.settings = settings or EngineSettings()

        self._index_lock = threading.Lock()
        self._bids: Dict[str, Bid] = {}
        self._by_pair: Dict[Tuple[str, str], str] = {}
        self._by_order: Dict[str, List[str]] = defaultdict(list)

    # -------------------------
    # Provider side
    # -------------------------

    def submit(
        self,
        order_id: str,
        provider_id: str,
        amount: float,
        *,
        delivery_window: Optional[Union[str, DeliveryWindow]] = None,
        turnaround_hours: Optional[float] = None,
        valid_until: Optional[datetime] = None,
        note: Optional[str] = None,
        currency: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Bid:
        """
        Record a new bid. The order's first bid moves it to bids_received.
        """
        now = now or utcnow()
        provider = self.directory.get(provider_id)
        order = self.order_book.get_order(order_id)

        window, hours = self._validate_estimate(order, delivery_window, turnaround_hours)
        self._validate_amount(amount)
        if valid_until is None and self.settings.default_bid_validity_minutes:
            valid_until = now + timedelta(minutes=self.settings.default_bid_validity_minutes)
        if valid_until is not None and valid_until <= now:
            raise InvalidBid("valid_until must be in the future", detail={"valid_until": valid_until.isoformat()})

        events: List[AuditEvent] = []
        with self.locks.lock(order_id):
            if not order.can_receive_bids():
                raise OrderNotAcceptingBids(
                    f"Order {order_id} is {order.status.value} and not accepting bids",
                    detail={"order_id": order_id, "status": order.status.value},
                )
            self._require_eligible(provider, order, ProviderUnavailable)

            bid = Bid(
                id=Bid.new_id(),
                order_id=order_id,
                provider_id=provider_id,
                amount=float(amount),
                currency=currency or self.settings.default_currency,
                delivery_window=window,
                turnaround_hours=hours,
                note=note,
                valid_until=valid_until,
                quality=provider.quality_snapshot(),
                submitted_at=now,
            )
            with self._index_lock:
                if (order_id, provider_id) in self._by_pair:
                    raise DuplicateBid(
                        f"Provider {provider_id} already bid on order {order_id}",
                        detail={"order_id": order_id, "provider_id": provider_id},
                    )
                self._bids[bid.id] = bid
                self._by_pair[(order_id, provider_id)] = bid.id
                self._by_order[order_id].append(bid.id)
            events.append(bid_event(bid, None, note, provider_id, now))

            # first bid: every recorded step must be a legal edge
            if order.status == OrderStatus.PENDING_BROADCAST:
                change = transition(order, OrderStatus.AWAITING_BIDS, "Bidding opened by first bid", now=now)
                events.append(order_event(order, change))
            if order.status == OrderStatus.AWAITING_BIDS:
                change = transition(order, OrderStatus.BIDS_RECEIVED, f"First bid from {provider_id}", now=now)
                events.append(order_event(order, change))

        logger.info("Bid %s submitted on order %s by %s (%.2f %s)", bid.id, order_id, provider_id, bid.amount, bid.currency)
        self.publisher.publish_all(events)
        return bid

    def update_bid(
        self,
        bid_id: str,
        provider_id: str,
        *,
        amount: Optional[float] = None,
        delivery_window: Optional[Union[str, DeliveryWindow]] = None,
        turnaround_hours: Optional[float] = None,
        note: Optional[str] = None,
        valid_until: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Bid:
        """
        Revise a provider's own live bid while the order is still open for bidding.
        The quality snapshot is not refreshed.
        """
        now = now or utcnow()
        bid = self._own_bid(bid_id, provider_id)
        order = self.order_book.get_order(bid.order_id)

        if amount is not None:
            self._validate_amount(amount)
        if delivery_window is not None or turnaround_hours is not None:
            window, hours = self._validate_estimate(order, delivery_window, turnaround_hours)
        else:
            window, hours = bid.delivery_window, bid.turnaround_hours
        if valid_until is not None and valid_until <= now:
            raise InvalidBid("valid_until must be in the future", detail={"valid_until": valid_until.isoformat()})

        with self.locks.lock(bid.order_id):
            self._require_live(bid, now)
            if not order.can_receive_bids():
                raise OrderNotAcceptingBids(
                    f"Order {order.id} is {order.status.value} and not accepting bids",
                    detail={"order_id": order.id, "status": order.status.value},
                )
            if amount is not None:
                bid.amount = float(amount)
            bid.delivery_window = window
            bid.turnaround_hours = hours
            if note is not None:
                bid.note = note
            if valid_until is not None:
                bid.valid_until = valid_until

        logger.info("Bid %s updated by %s", bid_id, provider_id)
        return bid

    def withdraw(self, bid_id: str, provider_id: str, note: Optional[str] = None, now: Optional[datetime] = None) -> Bid:
        """
        Provider pulls a pending bid. Recorded as a rejection, never deleted.
        """
        now = now or utcnow()
        bid = self._own_bid(bid_id, provider_id)
        note = note or WITHDRAWN
        with self.locks.lock(bid.order_id):
            if bid.status != BidStatus.SUBMITTED:
                raise BidNotPending(
                    f"Bid {bid.id} is {bid.status.value}, not submitted",
                    detail={"bid_id": bid.id, "status": bid.status.value},
                )
            bid.reject(now, note)
            event = bid_event(bid, BidStatus.SUBMITTED, note, provider_id, now)

        logger.info("Bid %s withdrawn by %s", bid_id, provider_id)
        self.publisher.publish(event)
        return bid

    # -------------------------
    # Order owner side
    # -------------------------

    def respond(
        self,
        bid_id: str,
        decision: Union[str, BidDecision],
        note: Optional[str] = None,
        *,
        actor: str = "requester",
        now: Optional[datetime] = None,
    ) -> Bid:
        """
        Accept (award) or reject a single bid.
        """
        now = now or utcnow()
        decision = BidDecision(decision)
        bid = self.get(bid_id)

        if decision == BidDecision.ACCEPT:
            provider = self._find_provider(bid.provider_id)
            with self.locks.lock(bid.order_id):
                self._require_live(bid, now)
            # award re-validates under the lock and publishes after releasing it
            self.award(bid.order_id, bid_id, provider=provider, note=note, actor=actor, now=now)
            return bid

        with self.locks.lock(bid.order_id):
            self._require_live(bid, now)
            bid.reject(now, note)
            event = bid_event(bid, BidStatus.SUBMITTED, note, actor, now)

        logger.info("Bid %s rejected", bid_id)
        self.publisher.publish(event)
        return bid

    def award(
        self,
        order_id: str,
        bid_id: str,
        *,
        provider: Optional[Provider] = None,
        note: Optional[str] = None,
        actor: str = "system",
        now: Optional[datetime] = None,
    ) -> Order:
        """
        The single-winner section. Under the order lock:
        - OrderAlreadyAssigned if someone else won first
        - StaleBid if the bid is no longer live or its provider can no longer serve
        - accept the bid, reject every other submitted bid, assign the order
        Any failure restores every field it touched and re-raises.
        """
        now = now or utcnow()
        bid = self.get(bid_id)
        if bid.order_id != order_id:
            raise InvalidBid(f"Bid {bid_id} does not belong to order {order_id}", detail={"bid_id": bid_id, "order_id": order_id})
        if provider is None:
            provider = self._find_provider(bid.provider_id)

        with self.locks.lock(order_id):
            order = self.order_book.get_order(order_id)
            if order.is_assigned():
                raise OrderAlreadyAssigned(
                    f"Order {order_id} is already {order.status.value}",
                    detail={"order_id": order_id, "assigned_provider_id": order.assigned_provider_id},
                )
            if order.status != OrderStatus.BIDS_RECEIVED:
                raise InvalidTransition(
                    f"Order {order_id} is {order.status.value}, cannot award",
                    detail={"order_id": order_id, "from": order.status.value, "to": OrderStatus.ASSIGNED.value},
                )
            if not bid.is_live(now):
                raise StaleBid(
                    f"Bid {bid_id} is no longer live ({bid.status.value})",
                    detail={"bid_id": bid_id, "status": bid.status.value, "reason": "bid_not_live"},
                )
            self._require_eligible(provider, order, StaleBid, bid.provider_id)

            order_before = _OrderSnapshot.take(order)
            siblings = self._order_bids(order_id)
            bids_before: Dict[str, BidState] = {b.id: (b.status, b.responded_at, b.response_note) for b in siblings}
            try:
                bid.accept(now, note)
                rejected = []
                for other in siblings:
                    if other.id != bid.id and other.status == BidStatus.SUBMITTED:
                        other.reject(now, OTHER_BID_ACCEPTED)
                        rejected.append(other)

                order.assigned_provider_id = bid.provider_id
                order.total_amount = bid.amount
                order.currency = bid.currency
                order.assigned_at = now
                change = transition(
                    order,
                    OrderStatus.ASSIGNED,
                    note or f"Awarded to {bid.provider_id} (bid {bid.id})",
                    actor=actor,
                    now=now,
                )
            except Exception:
                order_before.restore(order)
                for other in siblings:
                    other.status, other.responded_at, other.response_note = bids_before[other.id]
                logger.warning("Award of bid %s on order %s rolled back", bid_id, order_id)
                raise

            events = [bid_event(bid, BidStatus.SUBMITTED, note, actor, now)]
            events += [bid_event(other, BidStatus.SUBMITTED, OTHER_BID_ACCEPTED, actor, now) for other in rejected]
            events.append(order_event(order, change))

        logger.info("Order %s awarded to %s at %.2f %s", order_id, bid.provider_id, bid.amount, bid.currency)
        self.publisher.publish_all(events)
        return order

    def cancel(
        self,
        order_id: str,
        reason: Optional[str] = None,
        *,
        actor: str = "system",
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Cancel an order and reject its still-submitted bids in one locked step.
        An assigned order loses its provider pointer; the note keeps the name.
        """
        now = now or utcnow()
        with self.locks.lock(order_id):
            order = self.order_book.get_order(order_id)
            former = order.assigned_provider_id
            note = reason or "Cancelled"
            if former:
                note = f"{note} (was assigned to {former})"

            change = transition(order, OrderStatus.CANCELLED, note, actor=actor, now=now)
            events = [order_event(order, change)]
            events += self._retire_locked(order_id, ORDER_CANCELLED, actor, now)

        logger.info("Order %s cancelled: %s", order_id, note)
        self.publisher.publish_all(events)
        return order

    def retire_open_bids(
        self, order_id: str, note: str = ORDER_CANCELLED, *, actor: str = "system", now: Optional[datetime] = None
    ) -> List[Bid]:
        """
        Reject every still-submitted bid on an order.
        """
        now = now or utcnow()
        with self.locks.lock(order_id):
            events = self._retire_locked(order_id, note, actor, now)
        self.publisher.publish_all(events)
        return [self._bids[event.entity_id] for event in events]

    def expire_stale(self, now: Optional[datetime] = None) -> List[Bid]:
        """
        Mark every submitted bid past its deadline as expired. Idempotent.
        """
        now = now or utcnow()
        with self._index_lock:
            candidates = [bid for bid in self._bids.values() if bid.status == BidStatus.SUBMITTED and bid.is_expired(now)]

        by_order: Dict[str, List[Bid]] = defaultdict(list)
        for bid in candidates:
            by_order[bid.order_id].append(bid)

        expired: List[Bid] = []
        events: List[AuditEvent] = []
        for order_id, bids in by_order.items():
            with self.locks.lock(order_id):
                for bid in bids:
                    # re-check: a concurrent award or response may have resolved it
                    if bid.status != BidStatus.SUBMITTED or not bid.is_expired(now):
                        continue
                    bid.expire(now)
                    expired.append(bid)
                    events.append(bid_event(bid, BidStatus.SUBMITTED, "Validity window elapsed", "sweeper", now))

        if expired:
            logger.info("Expired %d stale bid(s)", len(expired))
        self.publisher.publish_all(events)
        return expired

    # -------------------------
    # Read side
    # -------------------------

    def get(self, bid_id: str) -> Bid:
        with self._index_lock:
            bid = self._bids.get(bid_id)
        if bid is None:
            raise BidNotFound(f"Bid {bid_id} does not exist", detail={"bid_id": bid_id})
        return bid

    def bids_for_order(self, order_id: str) -> List[Bid]:
        return self._order_bids(order_id)

    def bids_for_provider(self, provider_id: str, status: Optional[BidStatus] = None) -> List[Bid]:
        with self._index_lock:
            bids = [bid for bid in self._bids.values() if bid.provider_id == provider_id]
        if status is not None:
            bids = [bid for bid in bids if bid.status == BidStatus(status)]
        return sorted(bids, key=lambda bid: (bid.submitted_at, bid.id))

    def live_bids(self, order_id: str, now: Optional[datetime] = None) -> List[Bid]:
        now = now or utcnow()
        return [bid for bid in self._order_bids(order_id) if bid.is_live(now)]

    def statistics(self, provider_id: Optional[str] = None) -> BidStatistics:
        with self._index_lock:
            bids = list(self._bids.values())
        if provider_id is not None:
            bids = [bid for bid in bids if bid.provider_id == provider_id]

        stats = BidStatistics(total=len(bids), by_status={status.value: 0 for status in BidStatus})
        if not bids:
            return stats

        for bid in bids:
            stats.by_status[bid.status.value] += 1
        stats.average_amount = sum(bid.amount for bid in bids) / len(bids)
        stats.acceptance_rate = 100.0 * stats.by_status[BidStatus.ACCEPTED.value] / len(bids)

        responded = [bid for bid in bids if bid.responded_at is not None]
        if responded:
            hours = [(bid.responded_at - bid.submitted_at).total_seconds() / 3600.0 for bid in responded]
            stats.average_response_hours = sum(hours) / len(hours)
        return stats

    def __len__(self) -> int:
        with self._index_lock:
            return len(self._bids)

    # -------------------------
    # Internals
    # -------------------------

    def _order_bids(self, order_id: str) -> List[Bid]:
        with self._index_lock:
            return [self._bids[bid_id] for bid_id in self._by_order.get(order_id, ())]

    def _retire_locked(self, order_id: str, note: str, actor: str, now: datetime) -> List[AuditEvent]:
        events = []
        for bid in self._order_bids(order_id):
            if bid.status == BidStatus.SUBMITTED:
                bid.reject(now, note)
                events.append(bid_event(bid, BidStatus.SUBMITTED, note, actor, now))
        return events

    def _own_bid(self, bid_id: str, provider_id: str) -> Bid:
        bid = self.get(bid_id)
        if bid.provider_id != provider_id:
            raise BidNotFound(
                f"Bid {bid_id} does not belong to provider {provider_id}",
                detail={"bid_id": bid_id, "provider_id": provider_id},
            )
        return bid

    def _find_provider(self, provider_id: str) -> Optional[Provider]:
        provider = self.directory.find(provider_id)
        if provider is None:
            logger.warning("Provider %s is no longer in the directory", provider_id)
        return provider

    @staticmethod
    def _require_live(bid: Bid, now: datetime) -> None:
        if bid.status != BidStatus.SUBMITTED:
            raise BidNotPending(
                f"Bid {bid.id} is {bid.status.value}, not submitted",
                detail={"bid_id": bid.id, "status": bid.status.value},
            )
        if bid.is_expired(now):
            raise BidExpired(
                f"Bid {bid.id} expired at {bid.valid_until.isoformat()}",
                detail={"bid_id": bid.id, "valid_until": bid.valid_until.isoformat()},
            )

    @staticmethod
    def _require_eligible(provider: Optional[Provider], order: Order, error, provider_id: Optional[str] = None) -> None:
        provider_id = provider.id if provider is not None else provider_id
        if provider is None or not provider.is_available():
            raise error(
                f"Provider {provider_id} is not available",
                detail={"provider_id": provider_id, "reason": "provider_unavailable"},
            )
        if provider.category != order.category:
            raise error(
                f"Provider {provider_id} does not serve {order.category.value} orders",
                detail={"provider_id": provider_id, "reason": "category_mismatch"},
            )

    @staticmethod
    def _validate_amount(amount: float) -> None:
        if amount is None or amount <= 0:
            raise InvalidBid("Bid amount must be > 0", detail={"amount": amount})

    @staticmethod
    def _validate_estimate(
        order: Order,
        delivery_window: Optional[Union[str, DeliveryWindow]],
        turnaround_hours: Optional[float],
    ) -> Tuple[Optional[DeliveryWindow], Optional[float]]:
        if order.category == ServiceCategory.PHARMACY:
            if delivery_window is None or turnaround_hours is not None:
                raise InvalidBid("Pharmacy bids need a delivery_window (and no turnaround_hours)")
            return DeliveryWindow.parse(delivery_window), None

        if turnaround_hours is None or delivery_window is not None:
            raise InvalidBid("Lab bids need turnaround_hours (and no delivery_window)")
        if turnaround_hours <= 0:
            raise InvalidBid("turnaround_hours must be > 0", detail={"turnaround_hours": turnaround_hours})
        return None, float(turnaround_hours)
