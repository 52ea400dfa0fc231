"""Confidence scoring for transfer candidates."""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from app.config import settings


class AmountMatchType(str, Enum):
    """How well the debit and credit amounts agree."""

    EXACT = "exact"
    FOREX_1PCT = "forex_1pct"
    FOREX_2PCT = "forex_2pct"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class ConfidenceFactors:
    """Inputs that produced a confidence score."""

    amount_match_type: AmountMatchType
    date_diff_days: int
    same_company: bool
    has_transfer_keywords: bool

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "amount_match": self.amount_match_type != AmountMatchType.NO_MATCH,
            "amount_match_type": self.amount_match_type.value,
            "date_diff_days": self.date_diff_days,
            "same_company": self.same_company,
            "has_transfer_keywords": self.has_transfer_keywords,
        }


class ConfidenceScorer:
    """Weighted 0-100 score for a debit/credit pairing."""

    AMOUNT_SCORES: dict[AmountMatchType, int] = {
        AmountMatchType.EXACT: 40,
        AmountMatchType.FOREX_1PCT: 35,
        AmountMatchType.FOREX_2PCT: 25,
        AmountMatchType.NO_MATCH: 0,
    }

    # Days apart -> points; anything further apart scores nothing
    DATE_SCORES: dict[int, int] = {0: 30, 1: 20, 2: 10, 3: 5}

    SAME_COMPANY_SCORE = 20
    KEYWORD_SCORE = 10

    def __init__(self, keywords: Iterable[str] | None = None):
        """Initialize scorer.

        Args:
            keywords: Transfer keywords; defaults to the configured list
        """
        source = settings.transfer_keywords if keywords is None else keywords
        self.keywords = [kw.upper() for kw in source if kw]

    def has_transfer_keywords(self, *descriptions: str | None) -> bool:
        """Check whether any description contains a transfer keyword."""
        for description in descriptions:
            if not description:
                continue
            upper = description.upper()
            if any(kw in upper for kw in self.keywords):
                return True
        return False

    def score(
        self,
        amount_match_type: AmountMatchType,
        date_diff_days: int,
        same_company: bool,
        has_keywords: bool,
    ) -> int:
        """Calculate the confidence score."""
        total = self.AMOUNT_SCORES.get(amount_match_type, 0)
        total += self.DATE_SCORES.get(abs(date_diff_days), 0)
        if same_company:
            total += self.SAME_COMPANY_SCORE
        if has_keywords:
            total += self.KEYWORD_SCORE
        return total

    def score_factors(self, factors: ConfidenceFactors) -> int:
        return self.score(
            factors.amount_match_type,
            factors.date_diff_days,
            factors.same_company,
            factors.has_transfer_keywords,
        )
