"""Data models shared across the ingestion pipeline.

- :class:`InboundMessage` is the normalised inbound SMS (immutable).
- :class:`ExtractionResult` is the classifier's structured opinion of one
  message, validated with pydantic so malformed payloads fail loudly.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, StrictBool, ValidationInfo, field_validator

from .fees import TransferType


class Direction(StrEnum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.INFLOW else -1


def normalize_timestamp(raw: Any, *, now: datetime | None = None) -> datetime:
    """Best-effort parse of a caller-supplied receipt time into aware UTC.

    Accepts ``datetime`` objects, ISO-8601 strings (``Z`` suffix included) and
    epoch seconds or milliseconds. Anything else yields ``now`` (the processing
    instant). Naive values are taken to be UTC.
    """

    fallback = now or datetime.now(UTC)
    parsed: datetime | None = None
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, bool):
        parsed = None
    elif isinstance(raw, int | float):
        seconds = raw / 1000 if raw > 1e11 else raw
        try:
            parsed = datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            parsed = None
    elif isinstance(raw, str) and raw.strip():
        text = raw.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
    if parsed is None:
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """One SMS as delivered by the transport layer."""

    sender: str
    text: str
    received_at: datetime
    source: str = "unknown"

    @classmethod
    def from_payload(
        cls, payload: Mapping[str, Any], *, now: datetime | None = None
    ) -> InboundMessage:
        """Build a message from a loosely-shaped webhook payload.

        ``text`` values that are not strings are JSON-encoded; ``sender`` and
        ``source`` default to ``"unknown"``; the timestamp is read from
        ``received_at`` or ``receivedAt``.
        """

        raw_text = payload.get("text")
        if raw_text is None:
            text = ""
        elif isinstance(raw_text, str):
            text = raw_text
        else:
            text = json.dumps(raw_text)
        sender = str(payload.get("sender") or "unknown")
        source = str(payload.get("source") or "unknown")
        raw_ts = payload.get("received_at", payload.get("receivedAt"))
        return cls(
            sender=sender,
            text=text,
            received_at=normalize_timestamp(raw_ts, now=now),
            source=source,
        )


class ExtractionResult(BaseModel):
    """Structured classification of one message.

    Only ``is_transaction`` is mandatory and it must be a real JSON boolean.
    Empty strings are treated as absent, negative amounts are folded to their
    magnitude (direction carries the sign) and unrecognised transfer types
    collapse to ``unknown``.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)

    is_transaction: StrictBool
    reason: str = ""
    amount: Decimal | None = None
    direction: Direction | None = None
    payee: str | None = None
    is_new_payee: bool = True
    category: str | None = None
    memo: str | None = None
    transaction_ref: str | None = None
    transfer_type: TransferType | None = None
    is_follow_up: bool = False

    @field_validator("reason", mode="before")
    @classmethod
    def _reason_text(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("payee", "category", "memo", "transaction_ref", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("direction", mode="before")
    @classmethod
    def _direction_lower(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().lower()
            return v or None
        return v

    @field_validator("transfer_type", mode="before")
    @classmethod
    def _transfer_type_known(cls, v: Any) -> Any:
        if v is None:
            return None
        if isinstance(v, str):
            key = v.strip().lower().replace("-", "_").replace(" ", "_")
            if not key:
                return None
            if key in {t.value for t in TransferType}:
                return key
        return TransferType.UNKNOWN

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.replace(",", "").strip()
            return v or None
        return v

    @field_validator("amount", mode="after")
    @classmethod
    def _amount_magnitude(cls, v: Decimal | None) -> Decimal | None:
        if v is None:
            return None
        v = abs(v)
        return v if v > 0 else None

    @field_validator("is_new_payee", "is_follow_up", mode="before")
    @classmethod
    def _flag_default(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            return info.field_name == "is_new_payee"
        return v


__all__ = [
    "Direction",
    "ExtractionResult",
    "InboundMessage",
    "normalize_timestamp",
]
