# ruff: noqa: I001
"""SMS correlation working table.

Revision ID: 0001_sms_context
Revises: None
Create Date: 2026-10-17
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_sms_context"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "sms_context",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("sender", sa.Text(), nullable=False),
        sa.Column("sms_text", sa.Text(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("direction", sa.String(8), nullable=True),
        sa.Column("account_ending", sa.String(4), nullable=True),
        sa.Column("ledger_transaction_id", sa.Text(), nullable=True),
        sa.Column("ledger_account_id", sa.Text(), nullable=True),
        sa.Column("import_id", sa.String(36), nullable=True),
        sa.Column(
            "is_primary",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.Column(
            "correlated_with",
            sa.String(36),
            sa.ForeignKey("sms_context.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "fee_applied",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint(
            "direction IS NULL OR direction in ('inflow','outflow')",
            name="ck_sms_context_direction",
        ),
    )
    op.create_index(
        "ix_sms_context_match",
        "sms_context",
        ["sender", "is_primary", "fee_applied", "received_at"],
    )
    op.create_index("ix_sms_context_created_at", "sms_context", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_sms_context_created_at", table_name="sms_context")
    op.drop_index("ix_sms_context_match", table_name="sms_context")
    op.drop_table("sms_context")
