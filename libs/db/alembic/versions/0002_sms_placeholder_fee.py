# ruff: noqa: I001
"""Record the estimated fee posted for a primary SMS.

Revision ID: 0002_sms_placeholder_fee
Revises: 0001_sms_context
Create Date: 2026-10-17
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_sms_placeholder_fee"
down_revision: str | None = "0001_sms_context"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column("sms_context", sa.Column("placeholder_fee", sa.Numeric(15, 2), nullable=True))


def downgrade() -> None:
    op.drop_column("sms_context", "placeholder_fee")
