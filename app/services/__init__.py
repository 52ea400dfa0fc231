"""Services for transfer reconciliation."""

from .cache import CacheClient
from .detect import DetectionRequest, DetectionResult, TransferDetectionService
from .linker import TransferLinker
from .loader import TransactionFilter, TransactionLoader
from .rates import ExchangeRateClient, ExchangeRateResolver
from .review import CandidateReviewService

__all__ = [
    "CacheClient",
    "CandidateReviewService",
    "DetectionRequest",
    "DetectionResult",
    "ExchangeRateClient",
    "ExchangeRateResolver",
    "TransactionFilter",
    "TransactionLoader",
    "TransferDetectionService",
    "TransferLinker",
]
