"""Create transfer reconciliation tables.

Revision ID: 001
Revises:
Create Date: 2026-01-07

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("bank_name", sa.String(255), nullable=True),
        sa.Column("nickname", sa.String(255), nullable=True),
        sa.Column("currency", sa.String(3), server_default="CAD"),
        sa.Column("company_id", sa.String(36), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("transaction_type", sa.String(10), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("posting_date", sa.Date(), nullable=True),
        sa.Column(
            "bank_account_id",
            sa.String(36),
            sa.ForeignKey("bank_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("company_id", sa.String(36), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("statement_import_id", sa.String(36), nullable=True),
        sa.Column(
            "category_id",
            sa.String(36),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("needs_review", sa.Boolean(), server_default="true"),
        sa.Column("linked_to", sa.String(36), nullable=True),
        sa.Column("link_type", sa.String(20), nullable=True),
        sa.Column("transfer_status", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "idx_transactions_account_date", "transactions", ["bank_account_id", "transaction_date"]
    )
    op.create_index("idx_transactions_statement", "transactions", ["statement_import_id"])

    op.create_table(
        "transfer_candidates",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("batch_id", sa.String(36), nullable=True),
        sa.Column(
            "from_transaction_id",
            sa.String(36),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "to_transaction_id",
            sa.String(36),
            sa.ForeignKey("transactions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount_from", sa.Numeric(15, 2), nullable=False),
        sa.Column("amount_to", sa.Numeric(15, 2), nullable=False),
        sa.Column("currency_from", sa.String(3), nullable=False),
        sa.Column("currency_to", sa.String(3), nullable=False),
        sa.Column("exchange_rate_used", sa.Numeric(18, 8), nullable=True),
        sa.Column("exchange_rate_source", sa.String(100), nullable=True),
        sa.Column("date_from", sa.Date(), nullable=False),
        sa.Column("date_to", sa.Date(), nullable=False),
        sa.Column("date_diff_days", sa.Integer(), nullable=False),
        sa.Column("from_account_id", sa.String(36), nullable=False),
        sa.Column("to_account_id", sa.String(36), nullable=False),
        sa.Column("from_company_id", sa.String(36), nullable=True),
        sa.Column("to_company_id", sa.String(36), nullable=True),
        sa.Column("is_cross_company", sa.Boolean(), server_default="false"),
        sa.Column("confidence_score", sa.Integer(), nullable=False),
        sa.Column("confidence_factors", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "from_transaction_id", "to_transaction_id", name="uq_transfer_candidates_pair"
        ),
    )
    op.create_index("idx_transfer_candidates_status", "transfer_candidates", ["status"])

    op.create_table(
        "pending_transfers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "from_account_id",
            sa.String(36),
            sa.ForeignKey("bank_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "to_account_id",
            sa.String(36),
            sa.ForeignKey("bank_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("transfer_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "from_transaction_id",
            sa.String(36),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "to_transaction_id",
            sa.String(36),
            sa.ForeignKey("transactions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("match_tolerance_days", sa.Integer(), server_default="5"),
        sa.Column("match_tolerance_amount", sa.Numeric(15, 2), server_default="0.50"),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="ck_pending_transfers_amount"),
        sa.CheckConstraint("from_account_id != to_account_id", name="ck_pending_transfers_accounts"),
    )
    op.create_index(
        "idx_pending_transfers_from_account",
        "pending_transfers",
        ["from_account_id", "status"],
        postgresql_where=sa.text("status IN ('pending', 'partial')"),
    )
    op.create_index(
        "idx_pending_transfers_to_account",
        "pending_transfers",
        ["to_account_id", "status"],
        postgresql_where=sa.text("status IN ('pending', 'partial')"),
    )

    op.create_table(
        "exchange_rates_cache",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("rate_date", sa.Date(), nullable=False),
        sa.Column("from_currency", sa.String(3), nullable=False),
        sa.Column("to_currency", sa.String(3), nullable=False),
        sa.Column("rate", sa.Numeric(18, 8), nullable=False),
        sa.Column("source", sa.String(100), nullable=False),
        sa.UniqueConstraint(
            "rate_date", "from_currency", "to_currency", name="uq_exchange_rate_day"
        ),
    )

    op.create_table(
        "reanalyze_batches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("status", sa.String(20), server_default="running"),
        sa.Column("transfers_detected", sa.Integer(), server_default="0"),
        sa.Column("transfers_auto_linked", sa.Integer(), server_default="0"),
        sa.Column("transfers_pending_hitl", sa.Integer(), server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("reanalyze_batches")
    op.drop_table("exchange_rates_cache")
    op.drop_table("pending_transfers")
    op.drop_table("transfer_candidates")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_table("bank_accounts")
