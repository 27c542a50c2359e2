"""
Purpose: Domain models for the Orders capability.
What it does:
- Defines core data structures:
- Order (id, category, requester snapshot, payload, status, assignment, audit trail)
- RequesterSnapshot (patient + referring clinician, frozen at creation)
- PrescriptionLine / LabTest (category-specific payload lines)
- StatusChange (one entry of the immutable audit trail)

Defines enums/constants:
- ServiceCategory = pharmacy | lab
- OrderStatus = pending_broadcast | awaiting_bids | bids_received | assigned |
  in_progress | out_for_delivery | ready_for_pickup | completed | cancelled
- Urgency = low | medium | high | emergency

Rule: No transition rules, no bidding logic. Models only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple, Union
import uuid

LatLon = Tuple[float, float]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceCategory(str, Enum):
    PHARMACY = "pharmacy"
    LAB = "lab"


class OrderStatus(str, Enum):
    PENDING_BROADCAST = "pending_broadcast"
    AWAITING_BIDS = "awaiting_bids"
    BIDS_RECEIVED = "bids_received"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    OUT_FOR_DELIVERY = "out_for_delivery"
    READY_FOR_PICKUP = "ready_for_pickup"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


# Statuses in which an order must have an assigned provider.
ASSIGNED_STATUSES = frozenset({
    OrderStatus.ASSIGNED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.COMPLETED,
})

BIDDING_STATUSES = frozenset({
    OrderStatus.PENDING_BROADCAST,
    OrderStatus.AWAITING_BIDS,
    OrderStatus.BIDS_RECEIVED,
})

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


@dataclass(frozen=True)
class RequesterSnapshot:
    """
    Who asked for the order, as it was at creation time. Never re-fetched.
    """
    patient_id: str
    patient_name: str
    clinician_name: Optional[str] = None
    clinic_address: Optional[str] = None
    clinic_license: Optional[str] = None

    # Used by provider ranking for proximity.
    patient_location: Optional[LatLon] = None
    patient_region: Optional[str] = None


@dataclass(frozen=True)
class PrescriptionLine:
    medication: str
    dosage: Optional[str] = None
    quantity: int = 1
    instructions: Optional[str] = None


@dataclass(frozen=True)
class LabTest:
    name: str
    code: Optional[str] = None
    fasting_required: bool = False


PayloadLine = Union[PrescriptionLine, LabTest]


@dataclass(frozen=True)
class StatusChange:
    """
    One entry of an order's audit trail. Appended, never edited.
    """
    from_status: Optional[OrderStatus]
    to_status: OrderStatus
    at: datetime
    note: Optional[str] = None
    actor: str = "system"

    def render(self) -> str:
        text = f"[{self.at.isoformat()}] {self.to_status.value}"
        if self.note:
            text += f": {self.note}"
        return text


@dataclass
class Order:
    """
    One fulfillment request (pharmacy prescription or lab test list).
    """

    id: str
    category: ServiceCategory
    requester: RequesterSnapshot
    payload: Tuple[PayloadLine, ...] = ()
    urgency: Urgency = Urgency.MEDIUM

    status: OrderStatus = OrderStatus.PENDING_BROADCAST

    # Set only by an award.
    assigned_provider_id: Optional[str] = None
    total_amount: Optional[float] = None
    currency: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    last_status_change_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    history: List[StatusChange] = field(default_factory=list)

    @staticmethod  # Factory method, mirrors the intake collaborator's create call
    def new(
        category: Union[str, ServiceCategory],
        requester: RequesterSnapshot,
        payload: Tuple[PayloadLine, ...] = (),
        urgency: Union[str, Urgency] = Urgency.MEDIUM,
        now: Optional[datetime] = None,
    ) -> Order:
        now = now or utcnow()
        order = Order(
            id=str(uuid.uuid4()),
            category=ServiceCategory(category),
            requester=requester,
            payload=tuple(payload),
            urgency=Urgency(urgency),
            created_at=now,
            last_status_change_at=now,
        )
        order.history.append(
            StatusChange(from_status=None, to_status=order.status, at=now, note="Order created", actor="intake")
        )
        return order

    def can_receive_bids(self) -> bool:
        return self.status in BIDDING_STATUSES

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_assigned(self) -> bool:
        return self.status in ASSIGNED_STATUSES

    def entered_status_at(self, status: OrderStatus) -> Optional[datetime]:
        """When the order first entered `status`, or None if it never did."""
        for change in self.history:
            if change.to_status == status:
                return change.at
        return None

    def required_capabilities(self) -> List[str]:
        names: List[str] = []
        for line in self.payload:
            if isinstance(line, PrescriptionLine):
                names.append(line.medication)
            else:
                names.append(line.name)
        return names

    @property
    def notes(self) -> str:
        return "\n".join(change.render() for change in self.history if change.note)
