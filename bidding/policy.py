"""
Purpose: Versioned scoring configuration for bid evaluation.
What it does:

Holds the three weights used to blend bid sub-scores plus the bidding-window
limits, and factory functions for the shipped defaults:

pharmacy        price 0.4 / speed 0.3 / quality 0.3   (30 min window, 1..5 bids)
lab             price 0.2 / speed 0.3 / quality 0.5   (60 min window, 1..8 bids)
price-focused   pharmacy 0.6 / 0.2 / 0.2, lab 0.5 / 0.3 / 0.2

Rule: No logic here beyond validation. Configs are immutable; a change is a new version.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Union

from common.exceptions import InvalidScoringConfig
from orders.models import ServiceCategory

WEIGHT_TOLERANCE = 0.001


class ConfigCategory(str, Enum):
    PHARMACY = "pharmacy"
    LAB = "lab"
    BOTH = "both"


@dataclass(frozen=True)
class ScoringConfig:
    name: str
    price_weight: float
    speed_weight: float
    quality_weight: float
    category: ConfigCategory = ConfigCategory.BOTH

    min_bids_required: int = 1
    max_bids_considered: int = 10
    max_bid_wait_minutes: int = 30

    version: int = 1
    description: str = ""

    def __post_init__(self):
        try:
            category = ConfigCategory(self.category)
        except ValueError:
            raise InvalidScoringConfig(
                f"Unknown category {self.category!r} for {self.name}",
                detail={"name": self.name, "category": self.category},
            ) from None
        object.__setattr__(self, "category", category)

    def weight_sum(self) -> float:
        return self.price_weight + self.speed_weight + self.quality_weight

    def applies_to(self, category: Union[str, ServiceCategory]) -> bool:
        if self.category == ConfigCategory.BOTH:
            return True
        return self.category.value == ServiceCategory(category).value

    def categories(self):
        if self.category == ConfigCategory.BOTH:
            return (ServiceCategory.PHARMACY, ServiceCategory.LAB)
        return (ServiceCategory(self.category.value),)

    def validate(self) -> None:
        """
        Rejects configs the store must never hold.
        """
        if not self.name or not self.name.strip():
            raise InvalidScoringConfig("Config name is required")

        weights = (self.price_weight, self.speed_weight, self.quality_weight)
        if not all(math.isfinite(weight) for weight in weights):
            raise InvalidScoringConfig(
                f"Weights for {self.name} must be finite numbers",
                detail={"name": self.name},
            )

        if min(weights) < 0:
            raise InvalidScoringConfig(
                f"Weights for {self.name} must be >= 0",
                detail={"name": self.name},
            )

        if abs(self.weight_sum() - 1.0) > WEIGHT_TOLERANCE:
            raise InvalidScoringConfig(
                f"Weights for {self.name} must sum to 1.0 (got {self.weight_sum():.4f})",
                detail={"name": self.name, "sum": self.weight_sum()},
            )

        if self.min_bids_required < 1:
            raise InvalidScoringConfig("min_bids_required must be >= 1", detail={"name": self.name})

        if self.max_bids_considered < self.min_bids_required:
            raise InvalidScoringConfig(
                "max_bids_considered must be >= min_bids_required", detail={"name": self.name}
            )

        if self.max_bid_wait_minutes <= 0:
            raise InvalidScoringConfig("max_bid_wait_minutes must be > 0", detail={"name": self.name})

        if self.version < 1:
            raise InvalidScoringConfig("version must be >= 1", detail={"name": self.name})


def _validated(config: ScoringConfig) -> ScoringConfig:
    config.validate()
    return config


def default_pharmacy_config() -> ScoringConfig:
    return _validated(ScoringConfig(
        name="default_pharmacy",
        price_weight=0.4,
        speed_weight=0.3,
        quality_weight=0.3,
        category=ConfigCategory.PHARMACY,
        min_bids_required=1,
        max_bids_considered=5,
        max_bid_wait_minutes=30,
        description="Balanced scoring for pharmacy orders",
    ))


def default_lab_config() -> ScoringConfig:
    return _validated(ScoringConfig(
        name="default_lab",
        price_weight=0.2,
        speed_weight=0.3,
        quality_weight=0.5,
        category=ConfigCategory.LAB,
        min_bids_required=1,
        max_bids_considered=8,
        max_bid_wait_minutes=60,
        description="Quality-weighted scoring for lab orders",
    ))


def price_focused_pharmacy_config() -> ScoringConfig:
    return _validated(ScoringConfig(
        name="price_focused_pharmacy",
        price_weight=0.6,
        speed_weight=0.2,
        quality_weight=0.2,
        category=ConfigCategory.PHARMACY,
        min_bids_required=1,
        max_bids_considered=5,
        max_bid_wait_minutes=30,
        description="Cheapest acceptable pharmacy wins",
    ))


def price_focused_lab_config() -> ScoringConfig:
    return _validated(ScoringConfig(
        name="price_focused_lab",
        price_weight=0.5,
        speed_weight=0.3,
        quality_weight=0.2,
        category=ConfigCategory.LAB,
        min_bids_required=1,
        max_bids_considered=8,
        max_bid_wait_minutes=60,
        description="Cheapest acceptable lab wins",
    ))


def default_configs():
    return [
        default_pharmacy_config(),
        default_lab_config(),
        price_focused_pharmacy_config(),
        price_focused_lab_config(),
    ]
