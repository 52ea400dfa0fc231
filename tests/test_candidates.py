"""Tests for transfer candidate generation."""

from datetime import date
from decimal import Decimal

import pytest

from app.services.matching import AmountMatchType, CandidateGenerator
from app.services.rates import ExchangeRate


@pytest.fixture
def generator():
    return CandidateGenerator(date_tolerance_days=3)


class TestClassifyAmount:
    """Tests for amount classification."""

    def test_exact_at_boundary_is_inclusive(self, generator):
        """A difference of exactly 0.1% still counts as exact."""
        result = generator.classify_amount(Decimal("1000.00"), Decimal("1001.00"))
        assert result == AmountMatchType.EXACT

    def test_just_over_boundary(self, generator):
        result = generator.classify_amount(Decimal("1000.00"), Decimal("1001.01"))
        assert result == AmountMatchType.NO_MATCH

    def test_forex_1pct(self, generator):
        result = generator.classify_amount(
            Decimal("1000.00"), Decimal("1350.00"), rate=Decimal("1.35"), same_currency=False
        )
        assert result == AmountMatchType.FOREX_1PCT

    def test_forex_2pct_boundary(self, generator):
        result = generator.classify_amount(
            Decimal("1000.00"), Decimal("1377.00"), rate=Decimal("1.35"), same_currency=False
        )
        assert result == AmountMatchType.FOREX_2PCT

    def test_forex_beyond_tolerance(self, generator):
        result = generator.classify_amount(
            Decimal("1000.00"), Decimal("1400.00"), rate=Decimal("1.35"), same_currency=False
        )
        assert result == AmountMatchType.NO_MATCH

    def test_forex_without_rate(self, generator):
        result = generator.classify_amount(
            Decimal("1000.00"), Decimal("1350.00"), rate=None, same_currency=False
        )
        assert result == AmountMatchType.NO_MATCH

    def test_forex_zero_rate(self, generator):
        result = generator.classify_amount(
            Decimal("1000.00"), Decimal("0.00"), rate=Decimal("0"), same_currency=False
        )
        assert result == AmountMatchType.NO_MATCH


class TestEvaluate:
    """Tests for pair evaluation."""

    def test_same_company_exact_pair(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["a"], "1000.00", "debit")
        credit = build_tx(memory_accounts["b"], "1000.00", "credit")

        match = generator.evaluate(debit, credit, {})

        assert match is not None
        assert match.confidence_score == 90
        assert match.factors.amount_match_type == AmountMatchType.EXACT
        assert match.factors.same_company is True
        assert match.is_cross_company is False
        assert match.exchange_rate is None

    def test_same_account_never_proposed(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["a"], "1000.00", "debit", description="TRANSFER")
        credit = build_tx(memory_accounts["a"], "1000.00", "credit", description="TRANSFER")

        assert generator.evaluate(debit, credit, {}) is None

    def test_date_tolerance_inclusive(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["a"], "1000.00", "debit", day=0)
        credit = build_tx(memory_accounts["b"], "1000.00", "credit", day=3)

        match = generator.evaluate(debit, credit, {})

        assert match is not None
        assert match.factors.date_diff_days == 3

    def test_date_tolerance_exceeded(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["a"], "1000.00", "debit", day=0)
        credit = build_tx(memory_accounts["b"], "1000.00", "credit", day=4)

        assert generator.evaluate(debit, credit, {}) is None

    def test_posting_date_preferred(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["a"], "1000.00", "debit", day=0, posting_date=date(2026, 1, 20))
        credit = build_tx(memory_accounts["b"], "1000.00", "credit", day=5)

        match = generator.evaluate(debit, credit, {})

        assert match is not None
        assert match.factors.date_diff_days == 0

    def test_linked_transaction_skipped(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["a"], "1000.00", "debit", linked_to="elsewhere")
        credit = build_tx(memory_accounts["b"], "1000.00", "credit")

        assert generator.evaluate(debit, credit, {}) is None

    def test_cross_company_never_auto_linkable(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["a"], "1000.00", "debit", description="TRANSFER OUT")
        credit = build_tx(memory_accounts["other"], "1000.00", "credit")

        match = generator.evaluate(debit, credit, {})

        assert match is not None
        assert match.is_cross_company is True
        assert match.confidence_score == 80
        assert not match.is_auto_linkable(0)

    def test_unknown_companies_are_not_same_company(self, generator, memory_accounts, build_tx):
        orphan_debit = build_tx(memory_accounts["orphan"], "1000.00", "debit")
        orphan_credit = build_tx(memory_accounts["orphan"], "1000.00", "credit")
        orphan_credit.bank_account_id = "acct-z2"

        match = generator.evaluate(orphan_debit, orphan_credit, {})

        assert match is not None
        assert match.is_cross_company is True

    def test_cross_currency_uses_rate(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["usd"], "1000.00", "debit")
        credit = build_tx(memory_accounts["a"], "1350.00", "credit")
        key = generator.rate_key(debit, credit)
        rates = {key: ExchangeRate(rate=Decimal("1.35"), source="boc")}

        match = generator.evaluate(debit, credit, rates)

        assert key == (date(2026, 1, 15), "USD", "CAD")
        assert match is not None
        assert match.factors.amount_match_type == AmountMatchType.FOREX_1PCT
        assert match.confidence_score == 85
        assert match.exchange_rate_used == Decimal("1.35")
        assert match.exchange_rate_source == "boc"

    def test_cross_currency_without_rate_dropped(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["usd"], "1000.00", "debit")
        credit = build_tx(memory_accounts["a"], "1350.00", "credit")

        assert generator.evaluate(debit, credit, {}) is None

    def test_transaction_currency_overrides_account(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["a"], "1000.00", "debit", currency="usd")
        credit = build_tx(memory_accounts["b"], "1000.00", "credit")

        assert generator.rate_key(debit, credit) == (date(2026, 1, 15), "USD", "CAD")
        assert generator.evaluate(debit, credit, {}) is None


class TestRateKeys:
    """Tests for rate key collection."""

    def test_only_eligible_cross_currency_pairs(self, generator, memory_accounts, build_tx):
        usd_debit = build_tx(memory_accounts["usd"], "1000.00", "debit")
        cad_debit = build_tx(memory_accounts["a"], "1000.00", "debit")
        far_debit = build_tx(memory_accounts["usd"], "1000.00", "debit", day=10)
        credit = build_tx(memory_accounts["b"], "1350.00", "credit")

        keys = generator.rate_keys([usd_debit, cad_debit, far_debit], [credit])

        assert keys == [(date(2026, 1, 15), "USD", "CAD")]

    def test_keys_deduplicated(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["usd"], "1000.00", "debit")
        credits = [
            build_tx(memory_accounts["a"], "1350.00", "credit"),
            build_tx(memory_accounts["b"], "1350.00", "credit"),
        ]

        assert len(generator.rate_keys([debit], credits)) == 1


class TestTransferMatchRecord:
    """Tests for review queue records."""

    def test_to_record(self, generator, memory_accounts, build_tx):
        debit = build_tx(memory_accounts["a"], "1000.00", "debit", id="tx-debit")
        credit = build_tx(memory_accounts["b"], "1000.00", "credit", day=1, id="tx-credit")

        record = generator.evaluate(debit, credit, {}).to_record("batch-1")

        assert record["batch_id"] == "batch-1"
        assert record["from_transaction_id"] == "tx-debit"
        assert record["to_transaction_id"] == "tx-credit"
        assert record["amount_from"] == Decimal("1000.00")
        assert record["currency_from"] == "CAD"
        assert record["date_diff_days"] == 1
        assert record["from_company_id"] == "company-x"
        assert record["confidence_score"] == 80
        assert record["confidence_factors"]["amount_match_type"] == "exact"
        assert record["status"] == "pending"
