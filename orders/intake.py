"""
Purpose: Order intake and lookup (the engine's view of the order store).
What it does:
- Owns the in-memory order records, keyed by id.
- create_order(...) is the intake collaborator's entry point: it builds an
  Order in pending_broadcast with the requester snapshot frozen in.
- get_order / orders_by_status for the ledger, dispatcher and sweeper;
  open_orders / stats for reporting.

Rule: Intake owns storage of orders; status changes go through
orders.state_machine under the order's lock (held by the caller).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from common.exceptions import OrderNotFound
from .models import (
    Order,
    OrderStatus,
    PayloadLine,
    RequesterSnapshot,
    ServiceCategory,
    TERMINAL_STATUSES,
    Urgency,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class OrderBookStats:
    total: int
    by_status: Dict[str, int]
    now: datetime = field(default_factory=utcnow)


class OrderBook:
    """
    In-memory order store.
    A persistent deployment implements the same methods over its database.
    """

    def __init__(self):
        self._orders: Dict[str, Order] = {}
        self._lock = threading.Lock()

    # --- Public API ---

    def create_order(
        self,
        category: Union[str, ServiceCategory],
        requester: RequesterSnapshot,
        payload: Iterable[PayloadLine] = (),
        *,
        urgency: Union[str, Urgency] = Urgency.MEDIUM,
        now: Optional[datetime] = None,
    ) -> Order:
        """
        Create a new order in pending_broadcast and return it.
        """
        order = Order.new(category=category, requester=requester, payload=tuple(payload), urgency=urgency, now=now)
        self.add(order)
        logger.info("Order %s created (%s, %s urgency)", order.id, order.category.value, order.urgency.value)
        return order

    def add(self, order: Order) -> None:
        with self._lock:
            if order.id in self._orders:
                # idempotency: dont double insert
                return
            self._orders[order.id] = order

    def get_order(self, order_id: str) -> Order:
        with self._lock:
            order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} does not exist", detail={"order_id": order_id})
        return order

    def all_orders(self) -> List[Order]:
        with self._lock:
            return list(self._orders.values())

    def orders_by_status(self, *statuses: OrderStatus) -> List[Order]:
        wanted = set(statuses)
        return [order for order in self.all_orders() if order.status in wanted]

    def open_orders(self) -> List[Order]:
        return [order for order in self.all_orders() if order.status not in TERMINAL_STATUSES]

    def stats(self) -> OrderBookStats:
        orders = self.all_orders()
        by_status = {status.value: 0 for status in OrderStatus}
        for order in orders:
            by_status[order.status.value] += 1
        return OrderBookStats(total=len(orders), by_status=by_status)

    def __len__(self) -> int:
        with self._lock:
            return len(self._orders)
