"""
Purpose: The time-based "heartbeat" of the bidding engine.
What it does:
Each cycle:
1. expires bids whose validity window elapsed
2. finds orders whose bidding window (time since entering awaiting_bids)
   exceeded the active config's max_bid_wait_minutes
3. forces evaluation + award for those orders

Orders without enough live bids are reported, not awarded. They stay open
and are picked up again on the next cycle.

Rule: The sweeper owns timing only. Scoring and award live in the dispatcher.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from common.exceptions import InsufficientBids, NoActiveConfig, OrderAlreadyAssigned, StaleBid
from orders.models import Order, OrderStatus, utcnow
from .dispatcher import Dispatcher

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    expired_bids: List[str] = field(default_factory=list)
    awarded: List[str] = field(default_factory=list)
    insufficient: List[str] = field(default_factory=list)  # overdue, not enough live bids
    lost_race: List[str] = field(default_factory=list)     # someone else awarded first
    stale: List[str] = field(default_factory=list)         # every retry hit a stale winner
    skipped: List[str] = field(default_factory=list)       # no active config for the category
    now: datetime = field(default_factory=utcnow)


class BiddingWindowSweeper:

    def __init__(self, dispatcher: Dispatcher, interval_seconds: Optional[int] = None):
        self.dispatcher = dispatcher
        self.interval_seconds = interval_seconds or dispatcher.settings.sweep_interval_seconds

    def overdue_orders(self, now: Optional[datetime] = None) -> List[Order]:
        """
        Orders still open for bidding whose window has elapsed.
        """
        now = now or utcnow()
        store = self.dispatcher.config_store

        overdue = []
        for order in self.dispatcher.order_book.orders_by_status(OrderStatus.AWAITING_BIDS, OrderStatus.BIDS_RECEIVED):
            opened_at = order.entered_status_at(OrderStatus.AWAITING_BIDS)
            if opened_at is None:
                continue
            try:
                config = store.active_for(order.category)
            except NoActiveConfig:
                continue
            if now - opened_at >= timedelta(minutes=config.max_bid_wait_minutes):
                overdue.append(order)

        overdue.sort(key=lambda order: (order.created_at, order.id))  # oldest first
        return overdue

    def run_cycle(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or utcnow()
        report = SweepReport(now=now)

        # 1. Expire bids whose validity elapsed
        report.expired_bids = [bid.id for bid in self.dispatcher.ledger.expire_stale(now)]

        # 2. Force evaluation of overdue orders
        for order in self.overdue_orders(now):
            if order.status == OrderStatus.AWAITING_BIDS:
                report.insufficient.append(order.id)
                continue
            try:
                self.dispatcher.award_best(order.id, actor="sweeper", now=now)
                report.awarded.append(order.id)
            except InsufficientBids:
                report.insufficient.append(order.id)
            except OrderAlreadyAssigned:
                report.lost_race.append(order.id)
            except StaleBid:
                report.stale.append(order.id)
            except NoActiveConfig:
                report.skipped.append(order.id)

        logger.info(
            "Sweep: %d expired, %d awarded, %d without enough bids",
            len(report.expired_bids),
            len(report.awarded),
            len(report.insufficient),
        )
        return report

    def run_forever(self, stop_event: threading.Event) -> None:
        """
        Loop until `stop_event` is set. Meant for a dedicated worker thread.
        """
        logger.info("Bidding window sweeper started (every %ss)", self.interval_seconds)
        while not stop_event.is_set():
            self.run_cycle()
            stop_event.wait(self.interval_seconds)
        logger.info("Bidding window sweeper stopped")
