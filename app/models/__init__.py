"""Database models."""

from .ledger import (
    BankAccount,
    Base,
    Category,
    ExchangeRateCache,
    PendingTransfer,
    ReanalyzeBatch,
    Transaction,
    TransferCandidate,
)

__all__ = [
    "Base",
    "BankAccount",
    "Category",
    "Transaction",
    "TransferCandidate",
    "PendingTransfer",
    "ExchangeRateCache",
    "ReanalyzeBatch",
]
