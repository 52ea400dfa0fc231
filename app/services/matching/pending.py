"""Matching of bank transactions against operator-declared pending transfers."""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.ledger import PendingTransfer, Transaction
from app.services.loader import LinkPersistError

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("pending", "partial")


@dataclass
class PendingAssignment:
    """A transaction placed into one slot of a pending transfer."""

    pending_transfer_id: str
    transaction_id: str
    side: str  # from, to
    completed: bool = False
    counterpart_id: str | None = None


@dataclass
class PendingMatchResult:
    """Outcome of pending transfer matching for one run."""

    matched: int = 0
    partial: int = 0
    assignments: list[PendingAssignment] = field(default_factory=list)
    # Transactions already sitting in a slot of an open pending transfer
    reserved_ids: set[str] = field(default_factory=set)

    @property
    def claimed_ids(self) -> set[str]:
        """Transactions now reserved by a pending transfer."""
        claimed = set(self.reserved_ids)
        claimed.update(a.transaction_id for a in self.assignments)
        claimed.update(a.counterpart_id for a in self.assignments if a.counterpart_id)
        return claimed


def plan_pending_matches(
    transactions: list[Transaction],
    pending_transfers: list[PendingTransfer],
    default_tolerance_days: int | None = None,
    default_tolerance_amount: Decimal | None = None,
    unavailable_ids: set[str] | None = None,
) -> PendingMatchResult:
    """Decide slot assignments without touching the database.

    Each transaction fills at most one slot: the first open pending transfer
    whose account, direction, date window and amount tolerance all fit.
    A pending transfer whose earlier slot occupant is in `unavailable_ids`
    (already linked elsewhere) cannot be completed and is passed over.
    """
    unavailable_ids = unavailable_ids or set()
    if default_tolerance_days is None:
        default_tolerance_days = settings.pending_tolerance_days
    if default_tolerance_amount is None:
        default_tolerance_amount = Decimal(settings.pending_tolerance_amount)

    result = PendingMatchResult()
    slots = {
        p.id: {"from": p.from_transaction_id, "to": p.to_transaction_id} for p in pending_transfers
    }
    occupied = {tx_id for slot in slots.values() for tx_id in slot.values() if tx_id}
    result.reserved_ids = set(occupied)

    for txn in transactions:
        if txn.linked_to or txn.id in occupied:
            continue

        txn_date = txn.effective_date
        txn_amount = txn.effective_amount

        for pending in pending_transfers:
            if pending.from_account_id == txn.bank_account_id:
                side, expected_type = "from", "debit"
            elif pending.to_account_id == txn.bank_account_id:
                side, expected_type = "to", "credit"
            else:
                continue

            days = pending.match_tolerance_days
            if days is None:
                days = default_tolerance_days
            window = timedelta(days=days)
            if not pending.transfer_date - window <= txn_date <= pending.transfer_date + window:
                continue

            tolerance = pending.match_tolerance_amount
            if tolerance is None:
                tolerance = default_tolerance_amount
            if abs(Decimal(pending.amount) - txn_amount) > tolerance:
                continue

            if txn.transaction_type != expected_type:
                continue

            slot = slots[pending.id]
            if slot[side]:
                continue

            other_side = "to" if side == "from" else "from"
            counterpart = slot[other_side]
            if counterpart in unavailable_ids:
                logger.warning(
                    f"Pending transfer {pending.id} skipped: {counterpart} is already linked"
                )
                continue

            slot[side] = txn.id
            occupied.add(txn.id)

            assignment = PendingAssignment(
                pending_transfer_id=pending.id,
                transaction_id=txn.id,
                side=side,
                completed=counterpart is not None,
                counterpart_id=counterpart,
            )
            result.assignments.append(assignment)

            if assignment.completed:
                result.matched += 1
                logger.info(f"Pending transfer {pending.id} matched: {txn.id} <-> {counterpart}")
            else:
                result.partial += 1
                logger.info(f"Pending transfer {pending.id} partially matched ({side} side)")

            # One pending transfer per transaction
            break

    return result


class PendingTransferMatcher:
    """Reconciles loaded transactions with open pending transfers."""

    def __init__(self, session: AsyncSession, transfer_category_id: str | None = None):
        self.session = session
        self.transfer_category_id = transfer_category_id

    async def load_open(self, account_ids: set[str]) -> list[PendingTransfer]:
        """Open pending transfers touching any of the given accounts."""
        if not account_ids:
            return []

        result = await self.session.execute(
            select(PendingTransfer)
            .where(
                PendingTransfer.status.in_(OPEN_STATUSES),
                or_(
                    PendingTransfer.from_account_id.in_(account_ids),
                    PendingTransfer.to_account_id.in_(account_ids),
                ),
            )
            .order_by(PendingTransfer.created_at, PendingTransfer.id)
        )
        return list(result.scalars().all())

    async def match(
        self, transactions: list[Transaction], dry_run: bool = False
    ) -> PendingMatchResult:
        """Match transactions to pending transfers, writing results unless dry run."""
        logger.info(f"Checking {len(transactions)} transactions against pending transfers")

        pending_transfers = await self.load_open({t.bank_account_id for t in transactions})
        if not pending_transfers:
            return PendingMatchResult()

        occupant_ids = {
            tx_id
            for p in pending_transfers
            for tx_id in (p.from_transaction_id, p.to_transaction_id)
            if tx_id
        }
        linked_ids = await self._linked_among(occupant_ids)

        result = plan_pending_matches(transactions, pending_transfers, unavailable_ids=linked_ids)

        if not dry_run and result.assignments:
            await self._apply(result, {p.id: p for p in pending_transfers})

        logger.info(
            f"Pending transfer matching complete: {result.matched} matched, "
            f"{result.partial} partial"
        )
        return result

    async def _linked_among(self, transaction_ids: set[str]) -> set[str]:
        if not transaction_ids:
            return set()
        result = await self.session.execute(
            select(Transaction.id).where(
                Transaction.id.in_(transaction_ids), Transaction.linked_to.is_not(None)
            )
        )
        return set(result.scalars().all())

    async def _apply(
        self, result: PendingMatchResult, pending_by_id: dict[str, PendingTransfer]
    ) -> None:
        """Persist slot assignments and link completed pairs."""
        for assignment in list(result.assignments):
            pending = pending_by_id[assignment.pending_transfer_id]

            if assignment.completed:
                try:
                    async with self.session.begin_nested():
                        await self._link(assignment.transaction_id, assignment.counterpart_id)
                        await self._link(assignment.counterpart_id, assignment.transaction_id)
                except LinkPersistError as e:
                    logger.error(f"Pending transfer {pending.id} not completed: {e}")
                    result.assignments.remove(assignment)
                    result.matched -= 1
                    continue
                pending.status = "matched"
                pending.matched_at = datetime.now(UTC)
            else:
                pending.status = "partial"
                values = {"needs_review": False}
                if self.transfer_category_id is not None:
                    values["category_id"] = self.transfer_category_id
                await self.session.execute(
                    update(Transaction)
                    .where(Transaction.id == assignment.transaction_id)
                    .values(**values)
                )

            if assignment.side == "from":
                pending.from_transaction_id = assignment.transaction_id
            else:
                pending.to_transaction_id = assignment.transaction_id

        await self.session.flush()

    async def _link(self, transaction_id: str, peer_id: str) -> None:
        values = {
            "linked_to": peer_id,
            "link_type": "transfer",
            "transfer_status": "matched",
            "needs_review": False,
        }
        if self.transfer_category_id is not None:
            values["category_id"] = self.transfer_category_id

        result = await self.session.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id, Transaction.linked_to.is_(None))
            .values(**values)
        )
        if result.rowcount != 1:
            raise LinkPersistError(f"Transaction {transaction_id} is missing or already linked")
