"""Ingestion orchestrator: one SMS in, zero or more ledger entries out.

:meth:`IngestionPipeline.process` runs a fixed sequence for each message and
always returns an :class:`IngestResult` with status ``posted``, ``skipped`` or
``failed``:

1. refresh the directory when stale and classify the message;
2. skip non-transactions;
3. follow-ups: attach the transfer fee to a recently posted primary;
4. require an amount and a direction;
5. route to an account;
6. resolve category and payee against the directory (never creating either);
7. mint the idempotency key;
8. post the primary entry (uncleared, unapproved);
9. remember it for follow-up correlation;
10. post transfer, placeholder and notification fees.

Steps 9 and 10 are best-effort. Their failures are logged and surface in the
result (``FeeOutcome.error``) without undoing the primary entry. Every entry's
key derives from the message fingerprint, so redelivering a message makes the
ledger report duplicates instead of creating new entries.

A placeholder estimate posted with a primary is remembered on its correlation
record. A follow-up for that primary posts only the part of the real transfer
fee the estimate did not already cover.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta, timezone, tzinfo
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .classifier import Classifier
from .config import DEFAULT_CORRELATION_WINDOW_MINUTES
from .correlation import CorrelationRecord, CorrelationStore
from .directory import DirectoryCache
from .errors import ClassificationError, CorrelationError, DirectoryError, LedgerError
from .fees import (
    FeeSchedule,
    Provider,
    TransferType,
    infer_transfer_type,
    sender_to_provider,
)
from .keys import KeyKind, derive_key, make_key, to_milliunits
from .ledger import LedgerClient, NewTransaction
from .logging_setup import get_logger, message_context
from .models import Direction, ExtractionResult, InboundMessage
from .prompting import ClassificationContext, local_time_of_day
from .routing import AccountRouter, extract_account_ending

FALLBACK_MEMO_CHARS = 200
DEFAULT_LOCAL_TZ = timezone(timedelta(hours=2))

_logger = get_logger("sms_ledger.pipeline")


class IngestStatus(StrEnum):
    POSTED = "posted"
    SKIPPED = "skipped"
    FAILED = "failed"


class FeeKind(StrEnum):
    TRANSFER = "transfer"
    PLACEHOLDER = "placeholder"
    NOTIFICATION = "notification"


_FEE_KEY_KIND: dict[FeeKind, KeyKind] = {
    FeeKind.TRANSFER: KeyKind.TRANSFER_FEE,
    FeeKind.PLACEHOLDER: KeyKind.PLACEHOLDER_FEE,
    FeeKind.NOTIFICATION: KeyKind.NOTIFICATION_FEE,
}


class FeeOutcome(BaseModel):
    """What happened to one fee entry. ``error`` is set when posting failed."""

    model_config = ConfigDict(extra="forbid")

    kind: FeeKind
    amount: Decimal
    payee: str | None = None
    category: str | None = None
    transfer_type: TransferType | None = None
    import_id: str
    memo: str
    transaction_id: str | None = None
    duplicate: bool = False
    error: str | None = None

    @property
    def posted(self) -> bool:
        return self.error is None


class IngestResult(BaseModel):
    """Per-message outcome, meant for logs and debugging."""

    model_config = ConfigDict(extra="forbid")

    status: IngestStatus
    reason: str | None = None
    detail: str | None = None
    sender: str
    source: str = "unknown"
    received_at: datetime
    account: str | None = None
    account_id: str | None = None
    routing_source: str | None = None
    category: str | None = None
    payee: str | None = None
    payee_matched: bool = False
    payee_extracted: str | None = None
    memo: str | None = None
    amount: Decimal | None = None
    direction: Direction | None = None
    import_id: str | None = None
    transaction_ids: list[str] = Field(default_factory=list)
    duplicate_import_ids: list[str] = Field(default_factory=list)
    fee: FeeOutcome | None = None
    placeholder_fee: FeeOutcome | None = None
    notification_fee: FeeOutcome | None = None
    correlated_with: str | None = None
    extraction: ExtractionResult | None = None
    raw_response: str | None = None

    @property
    def posted(self) -> bool:
        return self.status is IngestStatus.POSTED

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass(frozen=True, slots=True)
class _Resolved:
    """A name looked up in the directory: ``id`` is ``None`` when unmatched."""

    name: str | None
    id: str | None = None

    @property
    def matched(self) -> bool:
        return self.id is not None


class IngestionPipeline:
    """Sequence classification, routing, posting and fees for one message at a time.

    Parameters
    ----------
    ledger:
        Ledger client used for every read and write.
    classifier:
        Extraction service.
    directory:
        Shared directory cache (process lifetime).
    router:
        Account router bound to the same directory.
    fees:
        Fee tables.
    correlation:
        Optional correlation store; without it follow-ups are skipped and
        primaries are not remembered.
    local_tz:
        Offset used for the entry date and the fallback time of day.
    correlation_window_minutes:
        How far back a follow-up may reach for its primary.
    """

    def __init__(
        self,
        *,
        ledger: LedgerClient,
        classifier: Classifier,
        directory: DirectoryCache,
        router: AccountRouter,
        fees: FeeSchedule,
        correlation: CorrelationStore | None = None,
        local_tz: tzinfo = DEFAULT_LOCAL_TZ,
        correlation_window_minutes: float = DEFAULT_CORRELATION_WINDOW_MINUTES,
    ) -> None:
        self._ledger = ledger
        self._classifier = classifier
        self._directory = directory
        self._router = router
        self._fees = fees
        self._correlation = correlation
        self._tz = local_tz
        self._window = correlation_window_minutes

    # ---- Entry point ----------------------------------------------------------

    def process(self, message: InboundMessage) -> IngestResult:
        with message_context(message.sender, message.source):
            return self._process(message)

    def _process(self, message: InboundMessage) -> IngestResult:
        base: dict[str, Any] = {
            "sender": message.sender,
            "source": message.source,
            "received_at": message.received_at,
        }
        _logger.info(
            "pipeline:start sender=%s source=%s received_at=%s",
            message.sender,
            message.source,
            message.received_at.isoformat(),
        )

        try:
            self._directory.ensure_fresh(self._ledger)
        except DirectoryError as e:
            return self._failed("directory unavailable", base, detail=str(e))

        # 1. Classify
        context = ClassificationContext(
            categories=self._directory.list_category_names(),
            payees=self._directory.list_payee_names(),
            sender=message.sender,
            fallback_time=local_time_of_day(message.received_at, self._tz),
        )
        try:
            classification = self._classifier.classify(message.text, context)
        except ClassificationError as e:
            return self._failed(
                "classification error", base, detail=str(e), raw_response=e.raw_response
            )
        ex = classification.extraction
        base["extraction"] = ex
        base["raw_response"] = classification.raw_response

        # 2. Filter non-transactions
        if not ex.is_transaction:
            return self._skipped("not a transaction", base, detail=ex.reason)

        # 3. Follow-up branch
        if ex.is_follow_up:
            return self._process_follow_up(message, ex, base)

        # 4. Validate completeness
        if ex.amount is None or ex.direction is None:
            missing = [
                name
                for name, value in (("amount", ex.amount), ("direction", ex.direction))
                if value is None
            ]
            return self._failed(
                "incomplete extraction", base, detail=f"missing {', '.join(missing)}"
            )
        amount: Decimal = ex.amount
        direction: Direction = ex.direction

        # 5. Route
        routing = self._router.resolve(message.text, message.sender, self._ledger)
        base.update(account=routing.account_name, routing_source=str(routing.source))
        if routing.account_id is None:
            return self._failed("no account", base, detail=routing.error)
        account_id: str = routing.account_id
        base["account_id"] = account_id

        # 6. Category and payee
        category = self._resolve_category(ex.category)
        payee = self._resolve_payee(ex.payee)
        base.update(
            category=category.name if category.matched else None,
            payee=payee.name if payee.matched else None,
            payee_matched=payee.matched,
            payee_extracted=ex.payee,
            memo=self._primary_memo(message, ex, payee),
            amount=amount,
            direction=direction,
        )

        # 7. Idempotency key
        import_id = make_key(
            sender=message.sender,
            full_timestamp=message.received_at,
            amount_minor_units=to_milliunits(amount),
            raw_text=message.text,
        )
        base["import_id"] = import_id
        entry_date = self._local_date(message.received_at)

        # 8. Primary entry
        entry = NewTransaction(
            account_id=account_id,
            date=entry_date,
            amount=direction.sign * to_milliunits(amount),
            import_id=import_id,
            memo=base["memo"],
            payee_id=payee.id,
            category_id=category.id,
        )
        try:
            saved = self._ledger.create_transaction(entry)
        except LedgerError as e:
            return self._failed("ledger error", base, detail=str(e))
        if import_id in saved.duplicate_import_ids:
            _logger.info("pipeline:primary_duplicate import_id=%s", import_id)

        result = IngestResult(
            status=IngestStatus.POSTED,
            transaction_ids=list(saved.transaction_ids),
            duplicate_import_ids=list(saved.duplicate_import_ids),
            **base,
        )

        # 9. Remember the primary for follow-ups
        primary = self._remember_primary(message, result)

        # 10. Fees
        provider = sender_to_provider(message.sender)
        ref = ex.transaction_ref or import_id
        result.fee = self._transfer_fee(provider, ex, result, entry_date, ref)
        if result.fee is not None and result.fee.posted and primary is not None:
            self._mark_fee_applied(primary)
        if result.fee is None:
            result.placeholder_fee = self._placeholder_fee(provider, ex, result, entry_date)
            if result.placeholder_fee is not None and result.placeholder_fee.posted:
                self._record_placeholder(primary, result.placeholder_fee.amount)
        result.notification_fee = self._notification_fee(provider, result, entry_date, ref)
        return self._finish(result)

    # ---- Follow-ups -------------------------------------------------------------

    def _process_follow_up(
        self, message: InboundMessage, ex: ExtractionResult, base: dict[str, Any]
    ) -> IngestResult:
        store = self._correlation
        if store is None:
            return self._skipped(
                "no primary to correlate", base, detail="correlation store not configured"
            )
        try:
            primary = store.find_match(
                message.sender, ex.amount, self._window, now=message.received_at
            )
        except CorrelationError as e:
            return self._failed("correlation error", base, detail=str(e))
        if primary is None or primary.id is None:
            return self._skipped("no primary to correlate", base)
        primary_id: str = primary.id
        base.update(
            correlated_with=primary_id,
            account_id=primary.ledger_account_id,
            amount=primary.amount,
            direction=primary.direction,
            import_id=primary.import_id,
        )

        # Classifier tag first, then the recipient's phone number.
        provider = sender_to_provider(message.sender)
        transfer_type = ex.transfer_type
        if transfer_type is None or transfer_type is TransferType.UNKNOWN:
            transfer_type = infer_transfer_type(message.text, provider)
        if transfer_type is None:
            return self._skipped(
                "correlated, no fee due", base, detail="transfer type unresolved"
            )
        if primary.amount is None or not primary.ledger_account_id or not primary.import_id:
            return self._skipped("correlated, no fee due", base, detail="primary incomplete")

        quote = self._fees.calculate_fee(provider, transfer_type, primary.amount)
        if not quote.is_due or quote.fee is None:
            return self._skipped(
                "correlated, no fee due", base, detail=f"fee status {quote.status}"
            )

        # An estimate posted with the primary counts toward the real fee.
        estimated = primary.placeholder_fee or Decimal("0")
        balance = quote.fee - estimated
        if balance <= 0:
            self._link_follow_up(store, message, ex, primary, primary_id)
            return self._skipped(
                "correlated, no fee due",
                base,
                detail=f"covered by estimated fee K{estimated.normalize():f}",
            )

        ref = ex.transaction_ref or primary.import_id
        memo = f"Transaction Fee ({transfer_type}): Ref: {ref}"
        if estimated > 0:
            memo = f"{memo} (balance after K{estimated.normalize():f} estimate)"
        outcome = self._post_fee(
            FeeKind.TRANSFER,
            fee=balance,
            payee_name=quote.payee,
            category_name=quote.category,
            account_id=primary.ledger_account_id,
            entry_date=self._local_date(primary.received_at),
            parent_key=primary.import_id,
            memo=memo,
            transfer_type=transfer_type,
        )
        if not outcome.posted:
            return self._failed("ledger error", base, detail=outcome.error, fee=outcome)

        self._link_follow_up(store, message, ex, primary, primary_id)
        return self._finish(
            IngestResult(
                status=IngestStatus.POSTED,
                fee=outcome,
                transaction_ids=[outcome.transaction_id] if outcome.transaction_id else [],
                duplicate_import_ids=[outcome.import_id] if outcome.duplicate else [],
                **base,
            )
        )

    @staticmethod
    def _link_follow_up(
        store: CorrelationStore,
        message: InboundMessage,
        ex: ExtractionResult,
        primary: CorrelationRecord,
        primary_id: str,
    ) -> None:
        try:
            follow_up = store.store(
                CorrelationRecord(
                    sender=message.sender,
                    sms_text=message.text,
                    received_at=message.received_at,
                    amount=ex.amount,
                    direction=str(ex.direction) if ex.direction else None,
                    account_ending=extract_account_ending(message.text),
                    ledger_account_id=primary.ledger_account_id,
                    is_primary=False,
                )
            )
            store.mark_fee_applied(primary_id)
            if follow_up.id is not None:
                store.link_correlation(follow_up.id, primary_id)
        except CorrelationError as e:
            _logger.error("pipeline:correlation_link_failed primary_id=%s error=%s", primary_id, e)

    # ---- Resolution helpers -----------------------------------------------------

    def _resolve_category(self, name: str | None) -> _Resolved:
        if not name:
            return _Resolved(None)
        category = self._directory.find_category_by_name(name)
        if category is None:
            _logger.info("pipeline:category_dropped category=%s", name)
            return _Resolved(name)
        return _Resolved(category.name, category.id)

    def _resolve_payee(self, name: str | None) -> _Resolved:
        if not name:
            return _Resolved(None)
        payee = self._directory.find_payee_by_name(name)
        if payee is None:
            _logger.info("pipeline:payee_unmatched payee=%s", name)
            return _Resolved(name)
        return _Resolved(payee.name, payee.id)

    @staticmethod
    def _primary_memo(message: InboundMessage, ex: ExtractionResult, payee: _Resolved) -> str:
        memo = ex.memo or message.text[:FALLBACK_MEMO_CHARS]
        # An unmatched payee survives only as memo text.
        if payee.name and not payee.matched and payee.name.casefold() not in memo.casefold():
            memo = f"{memo} | {payee.name}"
        return memo

    def _local_date(self, ts: datetime) -> date:
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=UTC)
        return ts.astimezone(self._tz).date()

    # ---- Best-effort side effects -----------------------------------------------

    def _remember_primary(
        self, message: InboundMessage, result: IngestResult
    ) -> CorrelationRecord | None:
        if self._correlation is None:
            return None
        try:
            return self._correlation.store(
                CorrelationRecord(
                    sender=message.sender,
                    sms_text=message.text,
                    received_at=message.received_at,
                    amount=result.amount,
                    direction=str(result.direction) if result.direction else None,
                    account_ending=extract_account_ending(message.text),
                    ledger_transaction_id=(
                        result.transaction_ids[0] if result.transaction_ids else None
                    ),
                    ledger_account_id=result.account_id,
                    import_id=result.import_id,
                    is_primary=True,
                )
            )
        except CorrelationError as e:
            _logger.error("pipeline:correlation_store_failed sender=%s error=%s", message.sender, e)
            return None

    def _mark_fee_applied(self, primary: CorrelationRecord) -> None:
        if self._correlation is None or primary.id is None:
            return
        try:
            self._correlation.mark_fee_applied(primary.id)
        except CorrelationError as e:
            _logger.error("pipeline:correlation_mark_failed id=%s error=%s", primary.id, e)

    def _record_placeholder(self, primary: CorrelationRecord | None, fee: Decimal) -> None:
        if self._correlation is None or primary is None or primary.id is None:
            return
        try:
            self._correlation.record_placeholder_fee(primary.id, fee)
        except CorrelationError as e:
            _logger.error("pipeline:correlation_placeholder_failed id=%s error=%s", primary.id, e)

    def _transfer_fee(
        self,
        provider: Provider,
        ex: ExtractionResult,
        result: IngestResult,
        entry_date: date,
        ref: str,
    ) -> FeeOutcome | None:
        transfer_type = ex.transfer_type
        if result.direction is not Direction.OUTFLOW or result.amount is None:
            return None
        if transfer_type is None or transfer_type is TransferType.UNKNOWN:
            return None
        quote = self._fees.calculate_fee(provider, transfer_type, result.amount)
        if not quote.is_due or quote.fee is None:
            _logger.info(
                "pipeline:no_transfer_fee provider=%s transfer_type=%s status=%s",
                provider,
                transfer_type,
                quote.status,
            )
            return None
        return self._post_fee(
            FeeKind.TRANSFER,
            fee=quote.fee,
            payee_name=quote.payee,
            category_name=quote.category,
            account_id=result.account_id or "",
            entry_date=entry_date,
            parent_key=result.import_id or "",
            memo=f"Transaction Fee: Ref: {ref}",
            transfer_type=transfer_type,
        )

    def _placeholder_fee(
        self,
        provider: Provider,
        ex: ExtractionResult,
        result: IngestResult,
        entry_date: date,
    ) -> FeeOutcome | None:
        placeholder = self._fees.placeholder_fee(provider)
        if placeholder is None or result.direction is not Direction.OUTFLOW:
            return None
        if ex.transfer_type not in (None, TransferType.UNKNOWN):
            return None
        estimate = f"{placeholder.fee.normalize():f}"
        return self._post_fee(
            FeeKind.PLACEHOLDER,
            fee=placeholder.fee,
            payee_name=placeholder.payee,
            category_name=placeholder.category,
            account_id=result.account_id or "",
            entry_date=entry_date,
            parent_key=result.import_id or "",
            memo=f"Transfer Fee (estimated K{estimate}) - verify & adjust amount",
        )

    def _notification_fee(
        self,
        provider: Provider,
        result: IngestResult,
        entry_date: date,
        ref: str,
    ) -> FeeOutcome | None:
        quote = self._fees.notification_fee(provider)
        if not quote.is_due or quote.fee is None:
            return None
        return self._post_fee(
            FeeKind.NOTIFICATION,
            fee=quote.fee,
            payee_name=quote.payee,
            category_name=quote.category,
            account_id=result.account_id or "",
            entry_date=entry_date,
            parent_key=result.import_id or "",
            memo=f"SMS Notification Fee: Ref: {ref}",
        )

    def _post_fee(
        self,
        kind: FeeKind,
        *,
        fee: Decimal,
        payee_name: str | None,
        category_name: str | None,
        account_id: str,
        entry_date: date,
        parent_key: str,
        memo: str,
        transfer_type: TransferType | None = None,
    ) -> FeeOutcome:
        """Post one fee entry; failures are logged and returned, never raised."""

        import_id = derive_key(parent_key, _FEE_KEY_KIND[kind])
        payee = self._resolve_payee(payee_name)
        category = self._resolve_category(category_name)
        outcome = FeeOutcome(
            kind=kind,
            amount=fee,
            payee=payee_name,
            category=category_name,
            transfer_type=transfer_type,
            import_id=import_id,
            memo=memo,
        )
        entry = NewTransaction(
            account_id=account_id,
            date=entry_date,
            amount=-abs(to_milliunits(fee)),
            import_id=import_id,
            memo=memo,
            payee_id=payee.id,
            category_id=category.id,
        )
        try:
            saved = self._ledger.create_transaction(entry)
        except LedgerError as e:
            _logger.error(
                "pipeline:fee_post_failed kind=%s import_id=%s error=%s", kind, import_id, e
            )
            return outcome.model_copy(update={"error": str(e)})
        _logger.info("pipeline:fee_posted kind=%s amount=%s import_id=%s", kind, fee, import_id)
        return outcome.model_copy(
            update={
                "transaction_id": saved.transaction_ids[0] if saved.transaction_ids else None,
                "duplicate": import_id in saved.duplicate_import_ids,
            }
        )

    # ---- Terminal results -------------------------------------------------------

    def _skipped(self, reason: str, base: dict[str, Any], **fields: Any) -> IngestResult:
        return self._finish(
            IngestResult(status=IngestStatus.SKIPPED, reason=reason, **{**base, **fields})
        )

    def _failed(self, reason: str, base: dict[str, Any], **fields: Any) -> IngestResult:
        return self._finish(
            IngestResult(status=IngestStatus.FAILED, reason=reason, **{**base, **fields})
        )

    @staticmethod
    def _finish(result: IngestResult) -> IngestResult:
        if result.status is IngestStatus.FAILED:
            _logger.error(
                "pipeline:failed reason=%s sender=%s detail=%s raw=%s",
                result.reason,
                result.sender,
                result.detail,
                result.raw_response,
            )
        elif result.status is IngestStatus.SKIPPED:
            _logger.info(
                "pipeline:skipped reason=%s sender=%s detail=%s",
                result.reason,
                result.sender,
                result.detail,
            )
        else:
            _logger.info(
                "pipeline:posted sender=%s account=%s amount=%s import_id=%s",
                result.sender,
                result.account,
                result.amount,
                result.import_id,
            )
        return result


__all__ = [
    "FeeKind",
    "FeeOutcome",
    "IngestResult",
    "IngestStatus",
    "IngestionPipeline",
]
