"""Transfer matching engine."""

from .candidates import CandidateGenerator, TransferMatch
from .confidence import AmountMatchType, ConfidenceFactors, ConfidenceScorer
from .pairing import (
    GreedyPairing,
    OptimalPairing,
    PairingResult,
    PairingStrategy,
    get_pairing_strategy,
)
from .pending import PendingMatchResult, PendingTransferMatcher, plan_pending_matches

__all__ = [
    "AmountMatchType",
    "CandidateGenerator",
    "ConfidenceFactors",
    "ConfidenceScorer",
    "GreedyPairing",
    "OptimalPairing",
    "PairingResult",
    "PairingStrategy",
    "PendingMatchResult",
    "PendingTransferMatcher",
    "TransferMatch",
    "get_pairing_strategy",
    "plan_pending_matches",
]
