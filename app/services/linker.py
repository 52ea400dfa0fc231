"""Applies link decisions: auto-links confident pairs, queues the rest for review."""

import logging
from dataclasses import dataclass, field
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ledger import ReanalyzeBatch, Transaction, TransferCandidate
from app.services.loader import LinkPersistError
from app.services.matching.candidates import TransferMatch

logger = logging.getLogger(__name__)


@dataclass
class LinkOutcome:
    """Candidates split by what happened to them."""

    auto_linked: list[TransferMatch] = field(default_factory=list)
    pending_hitl: list[TransferMatch] = field(default_factory=list)


class TransferLinker:
    """Writes transfer links, review queue rows and batch counters."""

    def __init__(self, session: AsyncSession, transfer_category_id: str | None = None):
        self.session = session
        self.transfer_category_id = transfer_category_id

    async def process(
        self,
        candidates: list[TransferMatch],
        auto_link_threshold: int,
        batch_id: str | None = None,
        dry_run: bool = False,
    ) -> LinkOutcome:
        """Auto-link or queue every candidate.

        A candidate is auto-linked only when its score reaches the threshold
        and both sides belong to the same company. A failed link write
        demotes the candidate to the review queue.
        """
        outcome = LinkOutcome()

        for candidate in candidates:
            if not candidate.is_auto_linkable(auto_link_threshold):
                outcome.pending_hitl.append(candidate)
                continue

            if dry_run:
                outcome.auto_linked.append(candidate)
                continue

            try:
                await self.link_pair(candidate.debit.id, candidate.credit.id)
                outcome.auto_linked.append(candidate)
            except LinkPersistError as e:
                logger.error(f"Link failed, queueing for review: {e}")
                outcome.pending_hitl.append(candidate)

        if not dry_run:
            await self.queue_for_review(outcome.pending_hitl, batch_id)

        return outcome

    async def link_pair(self, debit_id: str, credit_id: str) -> None:
        """Link a debit and a credit to each other, both sides or neither.

        Raises:
            LinkPersistError: If either side cannot be updated
        """
        try:
            async with self.session.begin_nested():
                await self._link_side(debit_id, credit_id, "transfer_out")
                await self._link_side(credit_id, debit_id, "transfer_in")
        except SQLAlchemyError as e:
            raise LinkPersistError(f"Failed to link {debit_id} -> {credit_id}: {e}") from e

        logger.info(f"Linked transfer {debit_id} -> {credit_id}")

    async def _link_side(self, transaction_id: str, peer_id: str, link_type: str) -> None:
        values = {
            "linked_to": peer_id,
            "link_type": link_type,
            "transfer_status": "matched",
            "needs_review": False,
        }
        # Without a transfer category the existing one is kept
        if self.transfer_category_id is not None:
            values["category_id"] = self.transfer_category_id

        result = await self.session.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.linked_to.is_(None))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise LinkPersistError(f"Transaction {transaction_id} is missing or already linked")

    async def queue_for_review(self, matches: list[TransferMatch], batch_id: str | None) -> int:
        """Insert review rows, ignoring pairs that are already queued."""
        if not matches:
            return 0

        records = [{"id": str(uuid4()), **m.to_record(batch_id)} for m in matches]
        dialect = self.session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(TransferCandidate).values(records)
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["from_transaction_id", "to_transaction_id"]
        )

        await self.session.execute(stmt)
        await self.session.flush()

        logger.info(f"Queued {len(records)} transfer candidates for review")
        return len(records)

    async def report_batch(
        self,
        batch_id: str,
        detected: int,
        auto_linked: int,
        pending_hitl: int,
    ) -> bool:
        """Write transfer counters onto the reanalysis batch. Best effort."""
        try:
            async with self.session.begin_nested():
                result = await self.session.execute(
                    update(ReanalyzeBatch)
                    .where(ReanalyzeBatch.id == batch_id)
                    .values(
                        transfers_detected=detected,
                        transfers_auto_linked=auto_linked,
                        transfers_pending_hitl=pending_hitl,
                    )
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to update batch {batch_id}: {e}")
            return False

        if result.rowcount == 0:
            logger.warning(f"Reanalyze batch {batch_id} not found")
            return False
        return True
