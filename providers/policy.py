"""
Purpose: Central configuration for Provider Ranking and broadcast.
What it does:

Stores all tunable weights/thresholds used to decide whom to invite to bid:

URGENCY_WEIGHTS (location / service / quality / availability / price)
REFERENCE_DISTANCE_KM = 80
MAX_BROADCAST_PROVIDERS = 10

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from orders.models import Urgency


@dataclass(frozen=True)
class FactorWeights:
    location: float
    service: float
    quality: float
    availability: float
    price: float

    def total(self) -> float:
        return self.location + self.service + self.quality + self.availability + self.price


def _default_urgency_weights() -> Dict[Urgency, FactorWeights]:
    # Emergency favors proximity + availability; low urgency favors quality + price.
    return {
        Urgency.EMERGENCY: FactorWeights(location=0.4, service=0.3, quality=0.1, availability=0.2, price=0.0),
        Urgency.HIGH: FactorWeights(location=0.3, service=0.25, quality=0.15, availability=0.25, price=0.05),
        Urgency.MEDIUM: FactorWeights(location=0.2, service=0.2, quality=0.2, availability=0.2, price=0.2),
        Urgency.LOW: FactorWeights(location=0.15, service=0.2, quality=0.25, availability=0.15, price=0.25),
    }


@dataclass(frozen=True)
class RankingPolicy:
    """
    Central configuration for provider ranking.
    """

    urgency_weights: Dict[Urgency, FactorWeights] = field(default_factory=_default_urgency_weights)

    # --- Location ---
    # Distance at which the location factor decays to 0 when the request sets no cap.
    reference_distance_km: float = 80.0
    # Location factor when only the service region can be compared.
    region_match_score: float = 75.0
    region_mismatch_score: float = 25.0
    neutral_score: float = 50.0

    # --- Capability ---
    capability_bonus_per_item: float = 2.0
    capability_bonus_cap: float = 20.0

    # --- Availability ---
    high_utilisation: float = 0.7
    near_full_utilisation: float = 0.9
    turnaround_bonus_cap: float = 20.0

    # --- Price ---
    base_price_score: float = 75.0
    delivery_bonus: float = 10.0

    # --- Hard filters / broadcast ---
    # Applied when the request does not set its own min_rating. Unrated providers pass.
    default_min_rating: Optional[float] = 3.0
    max_broadcast_providers: int = 10

    def weights_for(self, urgency: Urgency) -> FactorWeights:
        return self.urgency_weights[Urgency(urgency)]

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        for urgency in Urgency:
            if urgency not in self.urgency_weights:
                raise ValueError(f"Missing ranking weights for urgency {urgency.value}")
            weights = self.urgency_weights[urgency]
            if min(weights.location, weights.service, weights.quality, weights.availability, weights.price) < 0:
                raise ValueError(f"Ranking weights for {urgency.value} must be >= 0")
            if abs(weights.total() - 1.0) > 0.001:
                raise ValueError(f"Ranking weights for {urgency.value} must sum to 1.0")

        if self.reference_distance_km <= 0:
            raise ValueError("reference_distance_km must be > 0")

        if not 0 < self.high_utilisation <= self.near_full_utilisation <= 1.0:
            raise ValueError("utilisation thresholds must satisfy 0 < high <= near_full <= 1")

        if self.max_broadcast_providers <= 0:
            raise ValueError("max_broadcast_providers must be > 0")


def default_ranking_policy(max_broadcast_providers: int = 10) -> RankingPolicy:
    """
    Convenience factory for the default policy.
    """
    p = RankingPolicy(max_broadcast_providers=max_broadcast_providers)
    p.validate()
    return p
