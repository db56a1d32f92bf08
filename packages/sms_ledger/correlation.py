"""Short-lived correlation memory for split transactions.

Some providers report one transfer in two SMS: a debit notice without the
recipient's network, then a second message naming the recipient's phone number
but no amount. Each posted primary transaction is remembered here so the second
message can be matched back to it and the transfer fee attached after the fact.

Records are working memory, not an audit log: :meth:`CorrelationStore.sweep_older_than`
deletes everything past the retention window, correlated or not.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal

from db.client import get_sessionmaker, session_scope
from db.models.sms import SmsContext
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import CorrelationError
from .fees import to_decimal
from .logging_setup import get_logger

DEFAULT_WINDOW_MINUTES = 5

_logger = get_logger("sms_ledger.correlation")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


@dataclass(frozen=True, slots=True)
class CorrelationRecord:
    sender: str
    sms_text: str
    received_at: datetime
    amount: Decimal | None = None
    direction: str | None = None
    account_ending: str | None = None
    ledger_transaction_id: str | None = None
    ledger_account_id: str | None = None
    import_id: str | None = None
    is_primary: bool = True
    correlated_with: str | None = None
    fee_applied: bool = False
    placeholder_fee: Decimal | None = None
    id: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: SmsContext) -> CorrelationRecord:
        return cls(
            id=row.id,
            sender=row.sender,
            sms_text=row.sms_text,
            received_at=_as_utc(row.received_at),
            amount=row.amount,
            direction=row.direction,
            account_ending=row.account_ending,
            ledger_transaction_id=row.ledger_transaction_id,
            ledger_account_id=row.ledger_account_id,
            import_id=row.import_id,
            is_primary=row.is_primary,
            correlated_with=row.correlated_with,
            fee_applied=row.fee_applied,
            placeholder_fee=row.placeholder_fee,
            created_at=_as_utc(row.created_at) if row.created_at else None,
        )


class CorrelationStore:
    """Persistence for :class:`CorrelationRecord` rows.

    Parameters
    ----------
    session_factory:
        SQLAlchemy ``sessionmaker`` bound to the correlation database.
    clock:
        Returns the current aware UTC time; used for ``created_at`` and as the
        default reference for match windows and sweeps.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._factory = session_factory
        self._clock = clock

    @classmethod
    def from_url(
        cls, database_url: str, *, clock: Callable[[], datetime] = _utcnow
    ) -> CorrelationStore:
        return cls(get_sessionmaker(database_url=database_url), clock=clock)

    def store(self, record: CorrelationRecord) -> CorrelationRecord:
        """Insert ``record`` and return it with ``id`` and ``created_at`` filled in."""

        now = self._clock()
        row = SmsContext(
            sender=record.sender,
            sms_text=record.sms_text,
            received_at=_as_utc(record.received_at),
            amount=to_decimal(record.amount) if record.amount is not None else None,
            direction=record.direction,
            account_ending=record.account_ending,
            ledger_transaction_id=record.ledger_transaction_id,
            ledger_account_id=record.ledger_account_id,
            import_id=record.import_id,
            is_primary=record.is_primary,
            correlated_with=record.correlated_with,
            fee_applied=record.fee_applied,
            placeholder_fee=(
                to_decimal(record.placeholder_fee)
                if record.placeholder_fee is not None
                else None
            ),
            created_at=now,
            updated_at=now,
        )
        if record.id is not None:
            row.id = record.id
        try:
            with session_scope(factory=self._factory) as session:
                session.add(row)
                session.flush()
                stored_id = row.id
        except SQLAlchemyError as e:
            raise CorrelationError("failed to store correlation record", detail=str(e)) from e
        _logger.debug(
            "correlation:stored id=%s sender=%s is_primary=%s",
            stored_id,
            record.sender,
            record.is_primary,
        )
        return replace(record, id=stored_id, created_at=now)

    def find_match(
        self,
        sender: str,
        amount: Decimal | int | float | str | None = None,
        within_minutes: float = DEFAULT_WINDOW_MINUTES,
        *,
        now: datetime | None = None,
    ) -> CorrelationRecord | None:
        """Most recent uncorrelated primary from ``sender`` inside the window.

        When ``amount`` is given an exact amount match is preferred; otherwise
        (or when nothing matches the amount) the most recent candidate wins.
        """

        reference = _as_utc(now) if now is not None else self._clock()
        cutoff = reference - timedelta(minutes=within_minutes)
        stmt = (
            select(SmsContext)
            .where(func.lower(SmsContext.sender) == (sender or "").lower())
            .where(SmsContext.is_primary.is_(True))
            .where(SmsContext.fee_applied.is_(False))
            .where(SmsContext.received_at >= cutoff)
            .order_by(SmsContext.received_at.desc())
        )
        try:
            with session_scope(factory=self._factory) as session:
                candidates = [CorrelationRecord.from_row(r) for r in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise CorrelationError("failed to query correlation records", detail=str(e)) from e

        if not candidates:
            _logger.info("correlation:no_match sender=%s window_min=%s", sender, within_minutes)
            return None
        if amount is not None:
            wanted = to_decimal(amount)
            for cand in candidates:
                if cand.amount is not None and cand.amount == wanted:
                    return cand
        return candidates[0]

    def mark_fee_applied(self, record_id: str) -> None:
        self._update(record_id, fee_applied=True)

    def record_placeholder_fee(self, record_id: str, fee: Decimal) -> None:
        """Remember the estimated fee already posted for a primary."""

        self._update(record_id, placeholder_fee=to_decimal(fee))

    def link_correlation(self, follow_up_id: str, primary_id: str) -> None:
        """Point the follow-up row at the primary it completed."""

        self._update(follow_up_id, correlated_with=primary_id)

    def sweep_older_than(self, age: timedelta, *, now: datetime | None = None) -> int:
        """Delete records created more than ``age`` ago; return how many went."""

        reference = _as_utc(now) if now is not None else self._clock()
        cutoff = reference - age
        expired = select(SmsContext.id).where(SmsContext.created_at < cutoff)
        try:
            with session_scope(factory=self._factory) as session:
                # Unlink survivors first so the self reference never dangles.
                session.execute(
                    update(SmsContext)
                    .where(SmsContext.correlated_with.in_(expired))
                    .values(correlated_with=None)
                    .execution_options(synchronize_session=False)
                )
                result = session.execute(
                    delete(SmsContext)
                    .where(SmsContext.created_at < cutoff)
                    .execution_options(synchronize_session=False)
                )
                deleted = result.rowcount or 0
        except SQLAlchemyError as e:
            raise CorrelationError("failed to sweep correlation records", detail=str(e)) from e
        _logger.info("correlation:swept deleted=%d cutoff=%s", deleted, cutoff.isoformat())
        return deleted

    def get(self, record_id: str) -> CorrelationRecord | None:
        try:
            with session_scope(factory=self._factory) as session:
                row = session.get(SmsContext, record_id)
                return CorrelationRecord.from_row(row) if row is not None else None
        except SQLAlchemyError as e:
            raise CorrelationError("failed to load correlation record", detail=str(e)) from e

    def _update(self, record_id: str, **values: object) -> None:
        stmt = (
            update(SmsContext)
            .where(SmsContext.id == record_id)
            .values(**values, updated_at=self._clock())
        )
        try:
            with session_scope(factory=self._factory) as session:
                result = session.execute(stmt)
                if not result.rowcount:
                    raise CorrelationError(f"correlation record {record_id} not found")
        except SQLAlchemyError as e:
            raise CorrelationError("failed to update correlation record", detail=str(e)) from e


__all__ = [
    "CorrelationRecord",
    "CorrelationStore",
    "DEFAULT_WINDOW_MINUTES",
]
