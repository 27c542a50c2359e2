"""
Providers domain package.

Public API:
- Models: Provider, QualitySnapshot
- Directory: ProviderDirectory
- Ranking: MatchingCriteria, ProviderMatch, rank_providers, criteria_from_order
- Policy: RankingPolicy, default_ranking_policy
"""
from .models import Provider, QualitySnapshot
from .directory import ProviderDirectory
from .policy import RankingPolicy, default_ranking_policy
from .selection import (
    MatchingCriteria,
    MatchFactors,
    ProviderMatch,
    criteria_from_order,
    filter_eligible_providers,
    rank_providers,
)

__all__ = [
    "Provider",
    "QualitySnapshot",
    "ProviderDirectory",
    "RankingPolicy",
    "default_ranking_policy",
    "MatchingCriteria",
    "MatchFactors",
    "ProviderMatch",
    "criteria_from_order",
    "filter_eligible_providers",
    "rank_providers",
]
