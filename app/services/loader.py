"""Loads the candidate transaction set for a detection run."""

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.ledger import Category, Transaction

logger = logging.getLogger(__name__)

DIRECTIONS = ("debit", "credit")


class TransferDetectionError(Exception):
    """Base exception for transfer detection errors."""

    pass


class InvalidRequestError(TransferDetectionError):
    """Request does not name exactly one way to select transactions."""

    pass


class LoadFailureError(TransferDetectionError):
    """Transactions could not be read."""

    pass


class LinkPersistError(TransferDetectionError):
    """One side of a transfer link could not be written."""

    pass


@dataclass
class TransactionFilter:
    """Filter-mode selection of transactions."""

    statement_import_id: str | None = None
    bank_account_id: str | None = None
    date_from: date | None = None
    date_to: date | None = None

    def is_empty(self) -> bool:
        return not any(
            (self.statement_import_id, self.bank_account_id, self.date_from, self.date_to)
        )


def validate_selection(
    transaction_ids: list[str] | None, filter: TransactionFilter | None
) -> None:
    """Require exactly one of a non-empty id list or a non-empty filter.

    Raises:
        InvalidRequestError: If neither or both are given
    """
    has_ids = bool(transaction_ids)
    has_filter = filter is not None and not filter.is_empty()

    if has_ids and has_filter:
        raise InvalidRequestError("Provide either transaction_ids or filter, not both")
    if not has_ids and not has_filter:
        raise InvalidRequestError("Must provide transaction_ids or filter")


class TransactionLoader:
    """Reads debit and credit transactions with their bank account."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load(
        self,
        transaction_ids: list[str] | None = None,
        filter: TransactionFilter | None = None,
    ) -> list[Transaction]:
        """Load transactions by id list or by filter.

        Args:
            transaction_ids: Explicit transaction ids
            filter: Statement, account and date range filter

        Returns:
            Transactions ordered by date, account eagerly loaded

        Raises:
            InvalidRequestError: If the selection is ambiguous or missing
            LoadFailureError: If the database read fails
        """
        validate_selection(transaction_ids, filter)

        query = (
            select(Transaction)
            .options(selectinload(Transaction.bank_account))
            .where(Transaction.transaction_type.in_(DIRECTIONS))
        )

        if transaction_ids:
            query = query.where(Transaction.id.in_(transaction_ids))
        else:
            if filter.statement_import_id:
                query = query.where(Transaction.statement_import_id == filter.statement_import_id)
            if filter.bank_account_id:
                query = query.where(Transaction.bank_account_id == filter.bank_account_id)
            if filter.date_from:
                query = query.where(Transaction.transaction_date >= filter.date_from)
            if filter.date_to:
                query = query.where(Transaction.transaction_date <= filter.date_to)

        # Links written by earlier runs in this session bypass the identity map
        query = query.order_by(Transaction.transaction_date, Transaction.id).execution_options(
            populate_existing=True
        )

        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            raise LoadFailureError(f"Failed to load transactions: {e}") from e

        transactions = list(result.scalars().all())
        logger.info(f"Loaded {len(transactions)} transactions")
        return transactions


async def lookup_category_id(session: AsyncSession, code: str) -> str | None:
    """Category id for a code, or None if the category does not exist."""
    result = await session.execute(select(Category.id).where(Category.code == code))
    category_id = result.scalar_one_or_none()
    if category_id is None:
        logger.warning(f"Category '{code}' not found; transfers will be left uncategorised")
    return category_id
