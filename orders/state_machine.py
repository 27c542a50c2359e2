"""
Purpose: The authoritative lifecycle of a single order.
What it does:
Holds the allowed-successor table and the one function that is allowed to
change an order's status. Every successful transition appends a StatusChange
to the order's audit trail and stamps its timestamps.

Rule: No locking here. Callers (ledger / dispatcher) hold the order's lock.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, Optional

from common.exceptions import InvalidTransition
from .models import Order, OrderStatus, StatusChange, utcnow

ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING_BROADCAST: frozenset({OrderStatus.AWAITING_BIDS, OrderStatus.CANCELLED}),
    OrderStatus.AWAITING_BIDS: frozenset({OrderStatus.BIDS_RECEIVED, OrderStatus.CANCELLED}),
    OrderStatus.BIDS_RECEIVED: frozenset({OrderStatus.ASSIGNED, OrderStatus.CANCELLED}),
    OrderStatus.ASSIGNED: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.COMPLETED,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.OUT_FOR_DELIVERY: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.READY_FOR_PICKUP: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def allowed_successors(status: OrderStatus) -> FrozenSet[OrderStatus]:
    return ALLOWED_TRANSITIONS[status]


def can_transition(current: OrderStatus, new_status: OrderStatus) -> bool:
    return new_status in ALLOWED_TRANSITIONS[current]


def transition(
    order: Order,
    new_status: OrderStatus,
    note: Optional[str] = None,
    *,
    actor: str = "system",
    now: Optional[datetime] = None,
) -> StatusChange:
    """
    Move `order` to `new_status` or raise InvalidTransition.

    Reaching ASSIGNED requires the award to have set assigned_provider_id first.
    Reaching COMPLETED stamps completed_at.
    Reaching CANCELLED clears assigned_provider_id.
    """
    new_status = OrderStatus(new_status)
    if not can_transition(order.status, new_status):
        raise InvalidTransition(
            f"Cannot transition order {order.id} from {order.status.value} to {new_status.value}",
            detail={"order_id": order.id, "from": order.status.value, "to": new_status.value},
        )

    if new_status == OrderStatus.ASSIGNED and order.assigned_provider_id is None:
        raise InvalidTransition(
            f"Order {order.id} cannot become assigned without an assigned provider",
            detail={"order_id": order.id, "to": new_status.value},
        )

    now = now or utcnow()
    change = StatusChange(from_status=order.status, to_status=new_status, at=now, note=note, actor=actor)

    order.status = new_status
    order.last_status_change_at = now
    if new_status == OrderStatus.COMPLETED:
        order.completed_at = now
    if new_status == OrderStatus.CANCELLED:
        order.assigned_provider_id = None
    order.history.append(change)
    return change
