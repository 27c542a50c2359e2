"""
Bidding domain package.

Public API:
- Models: Bid, BidStatus, BidDecision, DeliveryWindow
- Scoring configuration: ScoringConfig, ConfigCategory, default_* factories, ScoringConfigStore
- Ledger: BidLedger, BidStatistics
- Evaluation: evaluate_bids, EvaluationResult, ScoredBid
"""
from .models import Bid, BidStatus, BidDecision, DeliveryWindow
from .policy import (
    ConfigCategory,
    ScoringConfig,
    default_configs,
    default_lab_config,
    default_pharmacy_config,
    price_focused_lab_config,
    price_focused_pharmacy_config,
)
from .config_store import ScoringConfigStore
from .ledger import BidLedger, BidStatistics
from .scoring import EvaluationContext, EvaluationResult, ScoredBid, evaluate_bids

__all__ = [
    "Bid",
    "BidStatus",
    "BidDecision",
    "DeliveryWindow",
    "ConfigCategory",
    "ScoringConfig",
    "default_configs",
    "default_lab_config",
    "default_pharmacy_config",
    "price_focused_lab_config",
    "price_focused_pharmacy_config",
    "ScoringConfigStore",
    "BidLedger",
    "BidStatistics",
    "EvaluationContext",
    "EvaluationResult",
    "ScoredBid",
    "evaluate_bids",
]
