"""
Purpose: Core data models for the providers domain.
What it does:
Defines the structure of a Provider (pharmacy or lab) and the frozen quality
snapshot copied into every bid, without relying on any ORM.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

from orders.models import LatLon, ServiceCategory
from .quality import blend_quality


@dataclass(frozen=True)
class QualitySnapshot:
    """
    Provider quality metrics as they were at one point in time.
    Embedded in a Bid at submission so later metric changes never
    alter historical bids.
    """
    rating: Optional[float] = None
    rating_count: int = 0
    sla_compliance: Optional[float] = None
    quality_grade: Optional[str] = None

    def score(self) -> float:
        return blend_quality(self.rating, self.sla_compliance, self.quality_grade)


@dataclass(frozen=True)
class Provider:
    """
    A purely stateless representation of a Provider at a specific point in time.
    The directory replaces the whole snapshot when anything changes.
    """
    id: str
    name: str
    category: ServiceCategory
    service_region: str = ""
    location: Optional[LatLon] = None

    # Capabilities
    services_offered: Tuple[str, ...] = ()
    tests_offered: Tuple[str, ...] = ()

    # Pharmacy specific
    offers_delivery: bool = False
    delivery_radius_km: Optional[float] = None

    # Lab specific
    avg_turnaround_hours: Optional[float] = None

    # Performance metrics
    average_rating: Optional[float] = None
    total_ratings: int = 0
    sla_compliance: Optional[float] = None
    quality_grade: Optional[str] = None
    typical_order_amount: Optional[float] = None

    # Operational status
    is_active: bool = True
    accepting_new_orders: bool = True
    current_capacity: int = 0
    max_capacity: Optional[int] = None

    @classmethod
    def new(
        cls,
        provider_id: str,
        name: str,
        category: Union[str, ServiceCategory],
        *,
        service_region: str = "",
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        services_offered: Iterable[str] = (),
        tests_offered: Iterable[str] = (),
        **attributes,
    ) -> Provider:
        location = (lat, lon) if lat is not None and lon is not None else None
        return cls(
            id=provider_id,
            name=name,
            category=ServiceCategory(category),
            service_region=service_region,
            location=location,
            services_offered=tuple(services_offered),
            tests_offered=tuple(tests_offered),
            **attributes,
        )

    def is_available(self) -> bool:
        return self.is_active and self.accepting_new_orders

    def has_capacity(self) -> bool:
        if not self.max_capacity:
            return True
        return self.current_capacity < self.max_capacity

    def can_service_region(self, region: str) -> bool:
        return region.strip().lower() in self.service_region.lower()

    def capabilities(self) -> Tuple[str, ...]:
        return self.services_offered + self.tests_offered

    def offers(self, capability: str) -> bool:
        wanted = capability.strip().lower()
        return any(wanted in offered.lower() for offered in self.capabilities())

    def quality_snapshot(self) -> QualitySnapshot:
        return QualitySnapshot(
            rating=self.average_rating,
            rating_count=self.total_ratings,
            sla_compliance=self.sla_compliance,
            quality_grade=self.quality_grade,
        )
