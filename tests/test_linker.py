"""Tests for transfer linking and the review queue."""

import pytest
from sqlalchemy import Update, func, select

from app.models.ledger import Category, ReanalyzeBatch, TransferCandidate
from app.services.linker import LinkPersistError, TransferLinker
from app.services.matching import CandidateGenerator


async def count_candidates(session) -> int:
    return await session.scalar(select(func.count()).select_from(TransferCandidate))


@pytest.fixture
def generator():
    return CandidateGenerator(date_tolerance_days=3)


class TestLinkPair:
    """Tests for TransferLinker.link_pair."""

    @pytest.mark.asyncio
    async def test_links_both_sides(
        self, async_session, accounts, transfer_category, make_transaction
    ):
        debit = await make_transaction(accounts["a"], "1000.00", "debit")
        credit = await make_transaction(accounts["b"], "1000.00", "credit")

        linker = TransferLinker(async_session, transfer_category.id)
        await linker.link_pair(debit.id, credit.id)
        await async_session.commit()

        await async_session.refresh(debit)
        await async_session.refresh(credit)
        assert debit.linked_to == credit.id
        assert debit.link_type == "transfer_out"
        assert credit.linked_to == debit.id
        assert credit.link_type == "transfer_in"
        assert debit.category_id == credit.category_id == transfer_category.id
        assert debit.needs_review is False
        assert credit.transfer_status == "matched"

    @pytest.mark.asyncio
    async def test_failed_side_rolls_back_other(
        self, async_session, accounts, transfer_category, make_transaction
    ):
        """A credit already linked elsewhere leaves the debit untouched."""
        debit = await make_transaction(accounts["a"], "1000.00", "debit")
        credit = await make_transaction(accounts["b"], "1000.00", "credit", linked_to="elsewhere")

        linker = TransferLinker(async_session, transfer_category.id)
        with pytest.raises(LinkPersistError):
            await linker.link_pair(debit.id, credit.id)
        await async_session.commit()

        await async_session.refresh(debit)
        await async_session.refresh(credit)
        assert debit.linked_to is None
        assert debit.category_id is None
        assert credit.linked_to == "elsewhere"

    @pytest.mark.asyncio
    async def test_without_transfer_category_keeps_existing(
        self, async_session, accounts, make_transaction
    ):
        async_session.add(Category(id="cat-rent", code="rent", name="Rent"))
        debit = await make_transaction(accounts["a"], "1000.00", "debit", category_id="cat-rent")
        credit = await make_transaction(accounts["b"], "1000.00", "credit")

        await TransferLinker(async_session).link_pair(debit.id, credit.id)
        await async_session.commit()

        await async_session.refresh(debit)
        await async_session.refresh(credit)
        assert debit.linked_to == credit.id
        assert debit.category_id == "cat-rent"
        assert credit.category_id is None

    @pytest.mark.asyncio
    async def test_missing_transaction(self, async_session, accounts, make_transaction):
        debit = await make_transaction(accounts["a"], "1000.00", "debit")

        with pytest.raises(LinkPersistError, match="missing or already linked"):
            await TransferLinker(async_session).link_pair(debit.id, "does-not-exist")


class TestProcess:
    """Tests for TransferLinker.process."""

    @pytest.mark.asyncio
    async def test_auto_link_and_queue(
        self, async_session, accounts, transfer_category, make_transaction, generator
    ):
        debit = await make_transaction(accounts["a"], "1000.00", "debit", description="TRANSFER")
        credit = await make_transaction(accounts["b"], "1000.00", "credit")
        other_debit = await make_transaction(accounts["a"], "250.00", "debit")
        other_credit = await make_transaction(accounts["other"], "250.00", "credit")

        confident = generator.evaluate(debit, credit, {})
        cross_company = generator.evaluate(other_debit, other_credit, {})

        linker = TransferLinker(async_session, transfer_category.id)
        outcome = await linker.process([confident, cross_company], 95, batch_id="batch-1")
        await async_session.commit()

        assert outcome.auto_linked == [confident]
        assert outcome.pending_hitl == [cross_company]

        queued = (await async_session.execute(select(TransferCandidate))).scalars().all()
        assert len(queued) == 1
        assert queued[0].from_transaction_id == other_debit.id
        assert queued[0].batch_id == "batch-1"
        assert queued[0].is_cross_company is True
        assert queued[0].status == "pending"
        assert queued[0].confidence_factors["same_company"] is False

    @pytest.mark.asyncio
    async def test_link_failure_demotes_to_review(
        self, async_session, accounts, transfer_category, make_transaction, generator
    ):
        debit = await make_transaction(accounts["a"], "1000.00", "debit", description="TRANSFER")
        credit = await make_transaction(accounts["b"], "1000.00", "credit")
        match = generator.evaluate(debit, credit, {})

        # Linked by someone else after the candidate was scored
        await TransferLinker(async_session).link_pair(credit.id, debit.id)
        await async_session.commit()

        outcome = await TransferLinker(async_session, transfer_category.id).process([match], 95)
        await async_session.commit()

        assert outcome.auto_linked == []
        assert outcome.pending_hitl == [match]
        assert await count_candidates(async_session) == 1

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(
        self, async_session, accounts, transfer_category, make_transaction, generator
    ):
        debit = await make_transaction(accounts["a"], "1000.00", "debit", description="TRANSFER")
        credit = await make_transaction(accounts["b"], "1000.00", "credit")
        review = await make_transaction(accounts["other"], "1000.00", "credit")

        matches = [generator.evaluate(debit, credit, {}), generator.evaluate(debit, review, {})]
        outcome = await TransferLinker(async_session, transfer_category.id).process(
            matches, 95, dry_run=True
        )

        assert len(outcome.auto_linked) == 1
        assert len(outcome.pending_hitl) == 1
        assert await count_candidates(async_session) == 0
        await async_session.refresh(debit)
        assert debit.linked_to is None

    @pytest.mark.asyncio
    async def test_queue_is_idempotent(
        self, async_session, accounts, make_transaction, generator
    ):
        debit = await make_transaction(accounts["a"], "1000.00", "debit")
        credit = await make_transaction(accounts["other"], "1000.00", "credit")
        match = generator.evaluate(debit, credit, {})
        linker = TransferLinker(async_session)

        await linker.queue_for_review([match], "batch-1")
        await linker.queue_for_review([match], "batch-2")
        await async_session.commit()

        rows = (await async_session.execute(select(TransferCandidate))).scalars().all()
        assert len(rows) == 1
        assert rows[0].batch_id == "batch-1"

    @pytest.mark.asyncio
    async def test_queue_empty(self, async_session):
        assert await TransferLinker(async_session).queue_for_review([], None) == 0


class TestReportBatch:
    """Tests for batch counter updates."""

    @pytest.mark.asyncio
    async def test_counters_written(self, async_session):
        async_session.add(ReanalyzeBatch(id="batch-1"))
        await async_session.commit()

        ok = await TransferLinker(async_session).report_batch(
            "batch-1", detected=5, auto_linked=2, pending_hitl=3
        )
        await async_session.commit()

        assert ok is True
        batch = await async_session.get(ReanalyzeBatch, "batch-1")
        await async_session.refresh(batch)
        assert batch.transfers_detected == 5
        assert batch.transfers_auto_linked == 2
        assert batch.transfers_pending_hitl == 3

    @pytest.mark.asyncio
    async def test_missing_batch_is_not_fatal(self, async_session):
        ok = await TransferLinker(async_session).report_batch(
            "missing", detected=1, auto_linked=0, pending_hitl=1
        )
        assert ok is False

    @pytest.mark.asyncio
    async def test_database_error_is_not_fatal(self, async_session, failing_execute):
        """A failing batch update is logged and reported, not raised."""
        async_session.add(ReanalyzeBatch(id="batch-1"))
        await async_session.commit()
        failing_execute(
            lambda stmt: isinstance(stmt, Update) and stmt.table.name == ReanalyzeBatch.__tablename__
        )

        ok = await TransferLinker(async_session).report_batch(
            "batch-1", detected=1, auto_linked=0, pending_hitl=1
        )
        await async_session.commit()

        assert ok is False
        batch = await async_session.get(ReanalyzeBatch, "batch-1")
        await async_session.refresh(batch)
        assert batch.transfers_detected == 0
