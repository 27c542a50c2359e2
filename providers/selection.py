"""
Purpose: Business rules for choosing whom to invite to bid.
What it does:
Accepts matching criteria and a pool of providers, filters out ineligible
providers (hard rules), and ranks the remaining ones by a weighted blend of
location, capability, quality, availability and price competitiveness.

Independent of bids: it can run before any bid exists.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from orders.models import LatLon, Order, ServiceCategory, Urgency
from .models import Provider
from .policy import RankingPolicy, default_ranking_policy
from .quality import blend_quality

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class MatchingCriteria:
    category: ServiceCategory
    patient_location: Optional[LatLon] = None
    region: Optional[str] = None
    required_services: Tuple[str, ...] = ()
    required_tests: Tuple[str, ...] = ()
    urgency: Urgency = Urgency.MEDIUM

    # Optional caps
    max_distance_km: Optional[float] = None
    max_price: Optional[float] = None
    min_rating: Optional[float] = None


@dataclass(frozen=True)
class MatchFactors:
    location: float
    service: float
    quality: float
    availability: float
    price: float


@dataclass(frozen=True)
class ProviderMatch:
    provider: Provider
    match_score: float
    factors: MatchFactors
    estimated_distance_km: Optional[float] = None
    estimated_delivery: Optional[str] = None


def criteria_from_order(order: Order, **overrides) -> MatchingCriteria:
    """
    Derive matching criteria from an order's frozen requester snapshot and payload.
    """
    if order.category == ServiceCategory.PHARMACY:
        services: Tuple[str, ...] = ("Prescription Dispensing",)
        tests: Tuple[str, ...] = ()
    else:
        services = ()
        tests = tuple(order.required_capabilities())

    values = dict(
        category=order.category,
        patient_location=order.requester.patient_location,
        region=order.requester.patient_region,
        required_services=services,
        required_tests=tests,
        urgency=order.urgency,
    )
    values.update(overrides)
    return MatchingCriteria(**values)


def haversine_km(origin: LatLon, destination: LatLon) -> float:
    lat1, lon1 = map(math.radians, origin)
    lat2, lon2 = map(math.radians, destination)
    d_lat = lat2 - lat1
    d_lon = lon2 - lon1
    a = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


# -------------------------
# Hard filters
# -------------------------

def filter_eligible_providers(
    providers: Sequence[Provider],
    criteria: MatchingCriteria,
    policy: Optional[RankingPolicy] = None,
) -> List[Provider]:
    """
    Returns only providers who are active, accepting new orders, serve the
    requested category and meet the minimum rating. Unrated providers pass
    the rating gate.
    """
    policy = policy or default_ranking_policy()
    min_rating = criteria.min_rating if criteria.min_rating is not None else policy.default_min_rating

    eligible = []
    for provider in providers:
        if not provider.is_active or not provider.accepting_new_orders:
            continue

        if provider.category != criteria.category:
            continue

        if min_rating is not None and provider.average_rating is not None and provider.average_rating < min_rating:
            continue

        eligible.append(provider)

    return eligible


# -------------------------
# Factor scores (0-100)
# -------------------------

def location_score(
    provider: Provider, criteria: MatchingCriteria, policy: RankingPolicy
) -> Tuple[float, Optional[float]]:
    if criteria.patient_location is not None and provider.location is not None:
        distance = haversine_km(provider.location, criteria.patient_location)
        if criteria.max_distance_km is not None and distance > criteria.max_distance_km:
            return 0.0, distance  # outside acceptable range
        reference = criteria.max_distance_km or policy.reference_distance_km
        return _clamp(100.0 - (distance / reference) * 100.0), distance

    if criteria.region and provider.service_region:
        if provider.can_service_region(criteria.region):
            return policy.region_match_score, None
        return policy.region_mismatch_score, None

    return policy.neutral_score, None


def service_score(provider: Provider, criteria: MatchingCriteria, policy: RankingPolicy) -> float:
    score = 100.0

    if criteria.required_services:
        matched = [service for service in criteria.required_services if provider.offers(service)]
        score *= len(matched) / len(criteria.required_services)

    if criteria.required_tests:
        matched = [test for test in criteria.required_tests if provider.offers(test)]
        score *= len(matched) / len(criteria.required_tests)

    # Bonus for breadth of capabilities
    bonus = min(policy.capability_bonus_cap, len(provider.capabilities()) * policy.capability_bonus_per_item)
    return _clamp(score + bonus)


def quality_score(provider: Provider) -> float:
    return blend_quality(provider.average_rating, provider.sla_compliance, provider.quality_grade)


def availability_score(provider: Provider, policy: RankingPolicy) -> float:
    if not provider.accepting_new_orders:
        return 0.0

    if not provider.has_capacity():
        return 0.0

    score = 100.0
    if provider.max_capacity:
        utilisation = provider.current_capacity / provider.max_capacity
        if utilisation >= policy.near_full_utilisation:
            score *= 0.5
        elif utilisation >= policy.high_utilisation:
            score *= 0.8

    # Faster average turnaround earns up to the bonus cap
    if provider.avg_turnaround_hours:
        cap = policy.turnaround_bonus_cap
        score += max(0.0, cap - (provider.avg_turnaround_hours / 24.0) * cap)

    return _clamp(score)


def price_score(provider: Provider, criteria: MatchingCriteria, policy: RankingPolicy) -> float:
    score = policy.base_price_score

    if provider.offers_delivery and criteria.category == ServiceCategory.PHARMACY:
        score += policy.delivery_bonus

    if criteria.max_price:
        if provider.typical_order_amount is None:
            score += 15.0
        elif provider.typical_order_amount > criteria.max_price:
            return 0.0
        else:
            score += 25.0 * (1.0 - provider.typical_order_amount / criteria.max_price)

    return _clamp(score)


def estimate_delivery(provider: Provider, criteria: MatchingCriteria) -> str:
    if criteria.category == ServiceCategory.PHARMACY:
        if not provider.offers_delivery:
            return "Ready for pickup in 2-4 hours"
        return {
            Urgency.EMERGENCY: "1-2 hours",
            Urgency.HIGH: "2-4 hours",
            Urgency.MEDIUM: "4-8 hours",
        }.get(criteria.urgency, "Same day")

    base = provider.avg_turnaround_hours or 24.0
    hours = {
        Urgency.EMERGENCY: max(2.0, base / 2),
        Urgency.HIGH: max(4.0, base * 0.75),
        Urgency.MEDIUM: base,
    }.get(criteria.urgency, base * 1.2)
    return f"{hours:g} hours"


# -------------------------
# Ranking
# -------------------------

def score_provider(
    provider: Provider, criteria: MatchingCriteria, policy: Optional[RankingPolicy] = None
) -> ProviderMatch:
    policy = policy or default_ranking_policy()
    location, distance = location_score(provider, criteria, policy)
    factors = MatchFactors(
        location=location,
        service=service_score(provider, criteria, policy),
        quality=quality_score(provider),
        availability=availability_score(provider, policy),
        price=price_score(provider, criteria, policy),
    )

    weights = policy.weights_for(criteria.urgency)
    total = (
        factors.location * weights.location
        + factors.service * weights.service
        + factors.quality * weights.quality
        + factors.availability * weights.availability
        + factors.price * weights.price
    )

    return ProviderMatch(
        provider=provider,
        match_score=_clamp(total),
        factors=factors,
        estimated_distance_km=distance,
        estimated_delivery=estimate_delivery(provider, criteria),
    )


def rank_providers(
    providers: Sequence[Provider],
    criteria: MatchingCriteria,
    policy: Optional[RankingPolicy] = None,
    *,
    limit: Optional[int] = None,
) -> List[ProviderMatch]:
    """
    Hard-filter, score and sort providers (best first, ties by provider id).
    Returns at most `limit` (default: policy.max_broadcast_providers) matches.
    """
    policy = policy or default_ranking_policy()
    eligible = filter_eligible_providers(providers, criteria, policy)

    matches = [score_provider(provider, criteria, policy) for provider in eligible]
    matches.sort(key=lambda match: (-match.match_score, match.provider.id))

    limit = policy.max_broadcast_providers if limit is None else limit
    return matches[:limit]
