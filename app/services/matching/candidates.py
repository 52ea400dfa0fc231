"""Transfer candidate generation between debits and credits."""

import logging
from dataclasses import dataclass
from decimal import Decimal

from app.config import settings
from app.models.ledger import Transaction
from app.services.rates import ExchangeRate, RateKey

from .confidence import AmountMatchType, ConfidenceFactors, ConfidenceScorer

logger = logging.getLogger(__name__)


@dataclass
class TransferMatch:
    """Scored pairing of one debit and one credit believed to be a single transfer."""

    debit: Transaction
    credit: Transaction
    confidence_score: int
    factors: ConfidenceFactors
    is_cross_company: bool
    exchange_rate: ExchangeRate | None = None

    @property
    def exchange_rate_used(self) -> Decimal | None:
        return self.exchange_rate.rate if self.exchange_rate else None

    @property
    def exchange_rate_source(self) -> str | None:
        return self.exchange_rate.source if self.exchange_rate else None

    def is_auto_linkable(self, threshold: int) -> bool:
        """Score reaches the threshold and both sides belong to one company."""
        return self.confidence_score >= threshold and not self.is_cross_company

    def to_record(self, batch_id: str | None = None) -> dict:
        """Row values for the review queue."""
        return {
            "batch_id": batch_id,
            "from_transaction_id": self.debit.id,
            "to_transaction_id": self.credit.id,
            "amount_from": self.debit.effective_amount,
            "amount_to": self.credit.effective_amount,
            "currency_from": self.debit.effective_currency,
            "currency_to": self.credit.effective_currency,
            "exchange_rate_used": self.exchange_rate_used,
            "exchange_rate_source": self.exchange_rate_source,
            "date_from": self.debit.effective_date,
            "date_to": self.credit.effective_date,
            "date_diff_days": self.factors.date_diff_days,
            "from_account_id": self.debit.bank_account_id,
            "to_account_id": self.credit.bank_account_id,
            "from_company_id": self.debit.effective_company_id,
            "to_company_id": self.credit.effective_company_id,
            "is_cross_company": self.is_cross_company,
            "confidence_score": self.confidence_score,
            "confidence_factors": self.factors.to_dict(),
            "status": "pending",
        }


class CandidateGenerator:
    """Evaluates debit/credit pairs across different bank accounts.

    Amount compatibility:
    - Same currency: exact when within 0.1% of the debit amount
    - Different currency: debit converted at the debit date's rate,
      within 1% (forex_1pct) or 2% (forex_2pct) of the credit
    """

    EXACT_TOLERANCE = Decimal("0.001")
    FOREX_1PCT = Decimal("1")
    FOREX_2PCT = Decimal("2")

    def __init__(
        self,
        scorer: ConfidenceScorer | None = None,
        date_tolerance_days: int | None = None,
    ):
        self.scorer = scorer or ConfidenceScorer()
        self.date_tolerance_days = (
            settings.date_tolerance_days if date_tolerance_days is None else date_tolerance_days
        )

    @staticmethod
    def date_diff(debit: Transaction, credit: Transaction) -> int:
        return abs((debit.effective_date - credit.effective_date).days)

    def is_eligible(self, debit: Transaction, credit: Transaction) -> bool:
        """Different accounts, neither side linked, dates within the window."""
        if debit.bank_account_id == credit.bank_account_id:
            return False
        if debit.linked_to or credit.linked_to:
            return False
        return self.date_diff(debit, credit) <= self.date_tolerance_days

    def rate_key(self, debit: Transaction, credit: Transaction) -> RateKey:
        return debit.effective_date, debit.effective_currency, credit.effective_currency

    def rate_keys(self, debits: list[Transaction], credits: list[Transaction]) -> list[RateKey]:
        """Every conversion any eligible cross-currency pair could need."""
        keys: dict[RateKey, None] = {}
        for debit in debits:
            for credit in credits:
                if debit.effective_currency == credit.effective_currency:
                    continue
                if self.is_eligible(debit, credit):
                    keys[self.rate_key(debit, credit)] = None
        return list(keys)

    def classify_amount(
        self,
        debit_amount: Decimal,
        credit_amount: Decimal,
        rate: Decimal | None = None,
        same_currency: bool = True,
    ) -> AmountMatchType:
        """Classify amount agreement for a pair."""
        if same_currency:
            if abs(debit_amount - credit_amount) <= debit_amount * self.EXACT_TOLERANCE:
                return AmountMatchType.EXACT
            return AmountMatchType.NO_MATCH

        if rate is None:
            return AmountMatchType.NO_MATCH

        expected = debit_amount * rate
        if expected <= 0:
            return AmountMatchType.NO_MATCH

        diff_percent = abs(credit_amount - expected) / expected * 100
        if diff_percent <= self.FOREX_1PCT:
            return AmountMatchType.FOREX_1PCT
        if diff_percent <= self.FOREX_2PCT:
            return AmountMatchType.FOREX_2PCT
        return AmountMatchType.NO_MATCH

    def evaluate(
        self,
        debit: Transaction,
        credit: Transaction,
        rates: dict[RateKey, ExchangeRate | None],
    ) -> TransferMatch | None:
        """Score one pair, or None when it cannot be a transfer."""
        if not self.is_eligible(debit, credit):
            return None

        same_currency = debit.effective_currency == credit.effective_currency
        exchange_rate = None
        if not same_currency:
            exchange_rate = rates.get(self.rate_key(debit, credit))
            if exchange_rate is None:
                return None

        amount_match = self.classify_amount(
            debit.effective_amount,
            credit.effective_amount,
            rate=exchange_rate.rate if exchange_rate else None,
            same_currency=same_currency,
        )
        if amount_match == AmountMatchType.NO_MATCH:
            return None

        debit_company = debit.effective_company_id
        # Two unknown companies are not treated as the same company
        same_company = debit_company is not None and debit_company == credit.effective_company_id

        factors = ConfidenceFactors(
            amount_match_type=amount_match,
            date_diff_days=self.date_diff(debit, credit),
            same_company=same_company,
            has_transfer_keywords=self.scorer.has_transfer_keywords(
                debit.description, credit.description
            ),
        )

        return TransferMatch(
            debit=debit,
            credit=credit,
            confidence_score=self.scorer.score_factors(factors),
            factors=factors,
            is_cross_company=not same_company,
            exchange_rate=exchange_rate,
        )
