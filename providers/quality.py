"""
Purpose: One quality blend shared by bid scoring and provider ranking.
What it does:
Turns (rating /5, SLA compliance %, letter grade) into a 0-100 score:
  rating  -> 40%
  SLA     -> 30%
  grade   -> 30%
A missing component counts at its neutral midpoint; no metrics at all -> 50.
"""

from __future__ import annotations

from typing import Dict, Optional

NEUTRAL_QUALITY = 50.0

GRADE_POINTS: Dict[str, float] = {
    "A+": 100.0,
    "A": 90.0,
    "B+": 80.0,
    "B": 70.0,
    "C+": 60.0,
    "C": 50.0,
    "D": 30.0,
    "F": 10.0,
}

RATING_SHARE = 40.0
SLA_SHARE = 30.0
GRADE_SHARE = 30.0


def grade_to_points(grade: Optional[str]) -> float:
    if not grade:
        return NEUTRAL_QUALITY
    return GRADE_POINTS.get(grade.strip().upper(), NEUTRAL_QUALITY)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def blend_quality(
    rating: Optional[float] = None,
    sla_compliance: Optional[float] = None,
    quality_grade: Optional[str] = None,
) -> float:
    if rating is None and sla_compliance is None and not quality_grade:
        return NEUTRAL_QUALITY

    rating_fraction = _clamp(rating / 5.0, 0.0, 1.0) if rating is not None else 0.5
    sla_fraction = _clamp(sla_compliance / 100.0, 0.0, 1.0) if sla_compliance is not None else 0.5
    grade_fraction = grade_to_points(quality_grade) / 100.0

    score = rating_fraction * RATING_SHARE + sla_fraction * SLA_SHARE + grade_fraction * GRADE_SHARE
    return _clamp(score, 0.0, 100.0)
