from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------
# Working memory: sms_context
# ---------------------------


class SmsContext(Base):
    """Recently posted SMS transactions kept for follow-up correlation.

    Rows are short-lived: a periodic sweep deletes anything older than the
    retention window whether or not it was ever correlated.
    """

    __tablename__ = "sms_context"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    sender: Mapped[str] = mapped_column(Text, nullable=False)
    sms_text: Mapped[str] = mapped_column(Text, nullable=False)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    direction: Mapped[str | None] = mapped_column(String(8), nullable=True)
    account_ending: Mapped[str | None] = mapped_column(String(4), nullable=True)
    ledger_transaction_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    ledger_account_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    import_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    # Set on a follow-up row: the primary it completed.
    correlated_with: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("sms_context.id", ondelete="SET NULL"), nullable=True
    )
    fee_applied: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    # Estimated fee already posted for this primary, credited against the real one.
    placeholder_fee: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("now()")
    )

    __table_args__ = (
        CheckConstraint(
            "direction IS NULL OR direction in ('inflow','outflow')",
            name="ck_sms_context_direction",
        ),
        Index(
            "ix_sms_context_match",
            "sender",
            "is_primary",
            "fee_applied",
            "received_at",
        ),
        Index("ix_sms_context_created_at", "created_at"),
    )


__all__ = [
    "Base",
    "SmsContext",
]
