"""
Purpose: Matching & scoring of the bids on one order.
What it does:
Given an order, its bids and a ScoringConfig:
1. keeps only live bids (submitted, not past valid_until) and requires
   min_bids_required of them
2. considers at most max_bids_considered (earliest submitted first)
3. builds a context from the candidates (average amount, fastest estimate, best quality)
4. scores each candidate on price / speed / quality (0-100) and blends them
   with the config weights
5. ranks by score desc, then earliest submission, then bid id

Rule: Pure and deterministic. No locking, no status changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from common.exceptions import InsufficientBids, InvalidScoringConfig
from orders.models import Order, utcnow
from .models import Bid
from .policy import ScoringConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationContext:
    avg_amount: float
    fastest_estimate: float
    best_quality: float
    candidates: int


@dataclass(frozen=True)
class ScoredBid:
    bid: Bid
    score: float
    price_score: float
    speed_score: float
    quality_score: float
    rank: int


@dataclass(frozen=True)
class EvaluationResult:
    order_id: str
    config_name: str
    config_version: int
    context: EvaluationContext
    ranking: List[ScoredBid]

    @property
    def winner(self) -> Optional[ScoredBid]:
        return self.ranking[0] if self.ranking else None


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


# -------------------------
# Sub-scores (0-100)
# -------------------------

def price_score(amount: float, avg_amount: float) -> float:
    # At the candidates' average -> 0, at half the average -> 100.
    return _clamp(100.0 * (avg_amount / amount - 1.0))


def speed_score(estimate: float, fastest_estimate: float) -> float:
    return _clamp(100.0 * fastest_estimate / estimate)


def quality_score(bid: Bid) -> float:
    return _clamp(bid.quality.score())


def select_candidates(bids: Sequence[Bid], config: ScoringConfig, now: datetime) -> List[Bid]:
    live = [bid for bid in bids if bid.is_live(now)]
    if len(live) < config.min_bids_required:
        raise InsufficientBids(
            f"{len(live)} live bid(s), {config.min_bids_required} required",
            detail={"live": len(live), "required": config.min_bids_required},
        )
    live.sort(key=lambda bid: (bid.submitted_at, bid.id))
    return live[: config.max_bids_considered]


def build_context(candidates: Sequence[Bid]) -> EvaluationContext:
    return EvaluationContext(
        avg_amount=sum(bid.amount for bid in candidates) / len(candidates),
        fastest_estimate=min(bid.speed_value() for bid in candidates),
        best_quality=max(quality_score(bid) for bid in candidates),
        candidates=len(candidates),
    )


def evaluate_bids(
    order: Order,
    bids: Sequence[Bid],
    config: ScoringConfig,
    now: Optional[datetime] = None,
) -> EvaluationResult:
    """
    Rank the live bids on `order`. Raises InsufficientBids when too few are live.
    """
    if not config.applies_to(order.category):
        raise InvalidScoringConfig(
            f"Config {config.name} does not apply to {order.category.value} orders",
            detail={"name": config.name, "category": order.category.value},
        )

    now = now or utcnow()
    candidates = select_candidates([bid for bid in bids if bid.order_id == order.id], config, now)
    context = build_context(candidates)

    scored = []
    for bid in candidates:
        p = price_score(bid.amount, context.avg_amount)
        s = speed_score(bid.speed_value(), context.fastest_estimate)
        q = quality_score(bid)
        total = _clamp(p * config.price_weight + s * config.speed_weight + q * config.quality_weight)
        logger.debug("Bid %s on order %s: price=%.1f speed=%.1f quality=%.1f -> %.2f", bid.id, order.id, p, s, q, total)
        scored.append((bid, total, p, s, q))

    scored.sort(key=lambda row: (-row[1], row[0].submitted_at, row[0].id))

    ranking = [
        ScoredBid(bid=bid, score=total, price_score=p, speed_score=s, quality_score=q, rank=index + 1)
        for index, (bid, total, p, s, q) in enumerate(scored)
    ]
    return EvaluationResult(
        order_id=order.id,
        config_name=config.name,
        config_version=config.version,
        context=context,
        ranking=ranking,
    )
