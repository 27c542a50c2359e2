"""
Purpose: Orchestrator / decision pipeline (the "glue").
What it does:
Takes an order from intake through broadcast, bid evaluation and award,
then along the post-award lifecycle:

broadcast_order  -> rank providers, open bidding, push the offer
evaluate_order   -> score the live bids with the active config
award_order      -> atomic single-winner award (delegated to the ledger)
award_best       -> evaluate + award, re-evaluating when the winner went stale
cancel_order     -> cancel and retire open bids
advance_order    -> assigned -> in_progress -> out_for_delivery / ready_for_pickup -> completed

Push notifications are sent after the order lock is released.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from bidding.config_store import ScoringConfigStore
from bidding.ledger import BidLedger, order_event
from bidding.policy import ScoringConfig
from bidding.scoring import EvaluationResult, evaluate_bids
from common.events import AuditPublisher, LoggingAuditSink
from common.exceptions import StaleBid
from common.locks import OrderLockManager
from config.settings import EngineSettings
from orders.intake import OrderBook
from orders.models import Order, OrderStatus, utcnow
from orders.state_machine import transition
from providers.directory import ProviderDirectory
from providers.models import Provider
from providers.policy import RankingPolicy, default_ranking_policy
from providers.selection import MatchingCriteria, ProviderMatch, criteria_from_order, rank_providers

logger = logging.getLogger(__name__)


@dataclass
class BroadcastResult:
    order: Order
    matches: List[ProviderMatch] = field(default_factory=list)

    @property
    def provider_ids(self) -> List[str]:
        return [match.provider.id for match in self.matches]


class Dispatcher:
    """
    Coordinates an Order from broadcast to a single awarded Provider.
    """

    def __init__(
        self,
        order_book: OrderBook,
        directory: ProviderDirectory,
        config_store: ScoringConfigStore,
        ledger: Optional[BidLedger] = None,
        *,
        locks: Optional[OrderLockManager] = None,
        publisher: Optional[AuditPublisher] = None,
        settings: Optional[EngineSettings] = None,
        ranking_policy: Optional[RankingPolicy] = None,
        push_service=None,
    ):
        self.settings = settings or EngineSettings()
        self.order_book = order_book
        self.directory = directory
        self.config_store = config_store
        if locks is None:
            locks = ledger.locks if ledger is not None else OrderLockManager()
        if publisher is None:
            publisher = ledger.publisher if ledger is not None else AuditPublisher(background=False)
        self.locks = locks
        self.publisher = publisher
        self.ledger = ledger if ledger is not None else BidLedger(order_book, directory, self.locks, self.publisher, self.settings)
        self.ranking_policy = ranking_policy or default_ranking_policy(self.settings.max_broadcast_providers)
        self.push_service = push_service

        # provider ids each order was offered to, so losers can be told
        self._offers: Dict[str, List[str]] = {}
        self._offers_lock = threading.Lock()

    # -------------------------
    # Broadcast
    # -------------------------

    def broadcast_order(
        self,
        order_id: str,
        criteria: Optional[MatchingCriteria] = None,
        *,
        now: Optional[datetime] = None,
    ) -> BroadcastResult:
        """
        Rank providers for the order and open it for bidding. No bids are scored here.
        """
        now = now or utcnow()
        order = self.order_book.get_order(order_id)
        criteria = criteria or criteria_from_order(order)

        # provider snapshots are read before the lock
        pool = self.directory.search(category=order.category, available_only=True)
        matches = rank_providers(pool, criteria, self.ranking_policy)
        if not matches:
            logger.warning("Order %s broadcast to nobody: no eligible providers", order_id)

        with self.locks.lock(order_id):
            change = transition(
                order,
                OrderStatus.AWAITING_BIDS,
                f"Broadcast to {len(matches)} provider(s)",
                actor="dispatcher",
                now=now,
            )
            events = [order_event(order, change)]

        result = BroadcastResult(order=order, matches=matches)
        with self._offers_lock:
            self._offers[order_id] = result.provider_ids

        logger.info("Order %s broadcast to %d provider(s)", order_id, len(matches))
        self.publisher.publish_all(events)
        if self.push_service and matches:
            self.push_service.broadcast_offer(result.provider_ids, order)
        return result

    # -------------------------
    # Evaluation and award
    # -------------------------

    def evaluate_order(
        self,
        order_id: str,
        *,
        config: Optional[ScoringConfig] = None,
        exclude: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> EvaluationResult:
        order = self.order_book.get_order(order_id)
        config = config or self.config_store.active_for(order.category)
        excluded = set(exclude)
        bids = [bid for bid in self.ledger.bids_for_order(order_id) if bid.id not in excluded]
        return evaluate_bids(order, bids, config, now)

    def award_order(
        self,
        order_id: str,
        bid_id: str,
        note: Optional[str] = None,
        *,
        actor: str = "dispatcher",
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Race condition resolver: at most one award per order ever succeeds.
        Losing callers get OrderAlreadyAssigned.
        """
        bid = self.ledger.get(bid_id)
        provider = self.directory.find(bid.provider_id)
        order = self.ledger.award(order_id, bid_id, provider=provider, note=note, actor=actor, now=now)

        with self._offers_lock:
            offered = self._offers.pop(order_id, [])
        others = [provider_id for provider_id in offered if provider_id != bid.provider_id]
        if self.push_service and others:
            self.push_service.revoke_offer(others, order_id)
        return order

    def award_best(
        self,
        order_id: str,
        *,
        max_attempts: Optional[int] = None,
        actor: str = "dispatcher",
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Evaluate and award the top bid. When the winner went stale between
        evaluation and award, evaluate again from scratch.
        """
        attempts = max_attempts or self.settings.award_retry_limit
        stale: List[str] = []
        for attempt in range(1, attempts + 1):
            result = self.evaluate_order(order_id, exclude=stale, now=now)
            winner = result.winner
            try:
                return self.award_order(
                    order_id,
                    winner.bid.id,
                    note=f"Best of {result.context.candidates} bid(s), score {winner.score:.1f}",
                    actor=actor,
                    now=now,
                )
            except StaleBid as exc:
                logger.warning("Order %s: winner %s went stale (attempt %d/%d): %s", order_id, winner.bid.id, attempt, attempts, exc)
                if attempt == attempts:
                    raise
                stale.append(winner.bid.id)

    # -------------------------
    # Cancellation and lifecycle
    # -------------------------

    def cancel_order(
        self, order_id: str, reason: Optional[str] = None, *, actor: str = "dispatcher", now: Optional[datetime] = None
    ) -> Order:
        order = self.ledger.cancel(order_id, reason, actor=actor, now=now)
        with self._offers_lock:
            offered = self._offers.pop(order_id, [])
        if self.push_service and offered:
            self.push_service.revoke_offer(offered, order_id)
        return order

    def advance_order(
        self,
        order_id: str,
        new_status: Union[str, OrderStatus],
        note: Optional[str] = None,
        *,
        actor: str = "provider",
        now: Optional[datetime] = None,
    ) -> Order:
        new_status = OrderStatus(new_status)
        if new_status == OrderStatus.CANCELLED:
            # cancellation also retires open bids and revokes offers
            return self.cancel_order(order_id, note, actor=actor, now=now)

        with self.locks.lock(order_id):
            order = self.order_book.get_order(order_id)
            change = transition(order, new_status, note, actor=actor, now=now)
            events = [order_event(order, change)]

        logger.info("Order %s -> %s", order_id, change.to_status.value)
        self.publisher.publish_all(events)
        return order

    def start_fulfillment(self, order_id: str, note: Optional[str] = None, **kwargs) -> Order:
        return self.advance_order(order_id, OrderStatus.IN_PROGRESS, note or "Fulfillment started", **kwargs)

    def mark_out_for_delivery(self, order_id: str, note: Optional[str] = None, **kwargs) -> Order:
        return self.advance_order(order_id, OrderStatus.OUT_FOR_DELIVERY, note or "Out for delivery", **kwargs)

    def mark_ready_for_pickup(self, order_id: str, note: Optional[str] = None, **kwargs) -> Order:
        return self.advance_order(order_id, OrderStatus.READY_FOR_PICKUP, note or "Ready for pickup", **kwargs)

    def complete_order(self, order_id: str, note: Optional[str] = None, **kwargs) -> Order:
        return self.advance_order(order_id, OrderStatus.COMPLETED, note or "Completed", **kwargs)


def build_dispatcher(
    settings: Optional[EngineSettings] = None,
    providers: Iterable[Provider] = (),
    configs: Optional[Iterable[ScoringConfig]] = None,
    *,
    push_service=None,
    sinks=None,
) -> Dispatcher:
    """
    Wire an in-memory engine. Without explicit configs the shipped defaults
    are installed and the balanced pharmacy / lab configs activated.
    """
    settings = settings or EngineSettings()
    publisher = AuditPublisher(
        sinks if sinks is not None else [LoggingAuditSink()],
        background=settings.background_audit,
    )

    store = ScoringConfigStore()
    if configs is None:
        store.reset_to_defaults()
    else:
        for config in configs:
            store.create(config, activate=True)

    order_book = OrderBook()
    directory = ProviderDirectory(providers)
    locks = OrderLockManager()
    ledger = BidLedger(order_book, directory, locks, publisher, settings)
    return Dispatcher(
        order_book,
        directory,
        store,
        ledger,
        locks=locks,
        publisher=publisher,
        settings=settings,
        push_service=push_service,
    )
