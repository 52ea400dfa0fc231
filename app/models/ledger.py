"""SQLAlchemy models for ledger transactions and transfer reconciliation."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.config import settings


def _uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class BankAccount(Base):
    """Bank account owned by a company."""

    __tablename__ = "bank_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    bank_name: Mapped[str | None] = mapped_column(String(255))
    nickname: Mapped[str | None] = mapped_column(String(255))
    currency: Mapped[str | None] = mapped_column(String(3), default="CAD")
    company_id: Mapped[str | None] = mapped_column(String(36))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<BankAccount {self.id} {self.currency}>"


class Category(Base):
    """Transaction category, looked up by code."""

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class Transaction(Base):
    """Posted bank-ledger entry."""

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Signed amount plus the precomputed absolute total
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2))

    transaction_type: Mapped[str | None] = mapped_column(String(10))  # debit/credit
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    posting_date: Mapped[date | None] = mapped_column(Date)

    bank_account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False
    )
    company_id: Mapped[str | None] = mapped_column(String(36))
    currency: Mapped[str | None] = mapped_column(String(3))
    statement_import_id: Mapped[str | None] = mapped_column(String(36))

    # Categorisation and transfer linkage
    category_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id", ondelete="SET NULL")
    )
    needs_review: Mapped[bool] = mapped_column(Boolean, default=True)
    linked_to: Mapped[str | None] = mapped_column(String(36))
    link_type: Mapped[str | None] = mapped_column(String(20))  # transfer, transfer_out, transfer_in
    transfer_status: Mapped[str | None] = mapped_column(String(20))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    bank_account: Mapped[BankAccount | None] = relationship("BankAccount")

    __table_args__ = (
        Index("idx_transactions_account_date", "bank_account_id", "transaction_date"),
        Index("idx_transactions_statement", "statement_import_id"),
    )

    @property
    def effective_amount(self) -> Decimal:
        """Absolute amount, preferring the precomputed total."""
        return abs(self.total_amount or self.amount)

    @property
    def effective_date(self) -> date:
        """Posting date when known, otherwise the transaction date."""
        return self.posting_date or self.transaction_date

    @property
    def effective_currency(self) -> str:
        """Transaction currency, falling back to the account's."""
        if self.currency:
            return self.currency.upper()
        if self.bank_account is not None and self.bank_account.currency:
            return self.bank_account.currency.upper()
        return settings.default_currency

    @property
    def effective_company_id(self) -> str | None:
        """Owning company, inherited from the account when absent."""
        if self.company_id:
            return self.company_id
        if self.bank_account is not None:
            return self.bank_account.company_id
        return None

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.transaction_type} {self.amount}>"


class TransferCandidate(Base):
    """Proposed debit/credit pairing awaiting human review."""

    __tablename__ = "transfer_candidates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    batch_id: Mapped[str | None] = mapped_column(String(36))

    from_transaction_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )
    to_transaction_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False
    )

    amount_from: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    amount_to: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency_from: Mapped[str] = mapped_column(String(3), nullable=False)
    currency_to: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate_used: Mapped[Decimal | None] = mapped_column(Numeric(18, 8))
    exchange_rate_source: Mapped[str | None] = mapped_column(String(100))

    date_from: Mapped[date] = mapped_column(Date, nullable=False)
    date_to: Mapped[date] = mapped_column(Date, nullable=False)
    date_diff_days: Mapped[int] = mapped_column(Integer, nullable=False)

    from_account_id: Mapped[str] = mapped_column(String(36), nullable=False)
    to_account_id: Mapped[str] = mapped_column(String(36), nullable=False)
    from_company_id: Mapped[str | None] = mapped_column(String(36))
    to_company_id: Mapped[str | None] = mapped_column(String(36))
    is_cross_company: Mapped[bool] = mapped_column(Boolean, default=False)

    confidence_score: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence_factors: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    status: Mapped[str] = mapped_column(
        String(20), default="pending"
    )  # pending, confirmed, rejected
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "from_transaction_id", "to_transaction_id", name="uq_transfer_candidates_pair"
        ),
        Index("idx_transfer_candidates_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<TransferCandidate {self.from_transaction_id}->{self.to_transaction_id} "
            f"{self.confidence_score}>"
        )


class PendingTransfer(Base):
    """Operator-declared transfer awaiting bank confirmation."""

    __tablename__ = "pending_transfers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    from_account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False
    )
    to_account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    transfer_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    status: Mapped[str] = mapped_column(
        String(20), default="pending"
    )  # pending, partial, matched, cancelled
    from_transaction_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("transactions.id", ondelete="SET NULL")
    )
    to_transaction_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("transactions.id", ondelete="SET NULL")
    )

    match_tolerance_days: Mapped[int | None] = mapped_column(Integer, default=5)
    match_tolerance_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(15, 2), default=Decimal("0.50")
    )

    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_pending_transfers_from_account", "from_account_id", "status"),
        Index("idx_pending_transfers_to_account", "to_account_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<PendingTransfer {self.id} {self.amount} {self.status}>"


class ExchangeRateCache(Base):
    """Same-day conversion rate between two currencies."""

    __tablename__ = "exchange_rates_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rate_date: Mapped[date] = mapped_column(Date, nullable=False)
    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    to_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)
    source: Mapped[str] = mapped_column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("rate_date", "from_currency", "to_currency", name="uq_exchange_rate_day"),
    )


class ReanalyzeBatch(Base):
    """Parent reanalysis job whose transfer counters are filled in by a run."""

    __tablename__ = "reanalyze_batches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    status: Mapped[str] = mapped_column(String(20), default="running")
    transfers_detected: Mapped[int] = mapped_column(Integer, default=0)
    transfers_auto_linked: Mapped[int] = mapped_column(Integer, default=0)
    transfers_pending_hitl: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
