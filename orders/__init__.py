"""
Orders domain package.

Public API:
- Domain models: Order, OrderStatus, ServiceCategory, Urgency,
  RequesterSnapshot, PrescriptionLine, LabTest, StatusChange
- Lifecycle: transition, can_transition, allowed_successors
- Intake: OrderBook
"""
from .models import (
    Order,
    OrderStatus,
    ServiceCategory,
    Urgency,
    RequesterSnapshot,
    PrescriptionLine,
    LabTest,
    StatusChange,
)
from .state_machine import transition, can_transition, allowed_successors
from .intake import OrderBook

__all__ = [
    "Order",
    "OrderStatus",
    "ServiceCategory",
    "Urgency",
    "RequesterSnapshot",
    "PrescriptionLine",
    "LabTest",
    "StatusChange",
    "transition",
    "can_transition",
    "allowed_successors",
    "OrderBook",
]
