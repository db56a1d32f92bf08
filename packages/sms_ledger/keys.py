"""Idempotency keys for ledger entries.

A key is ``"<tag>:<hex>"`` where ``<hex>`` is the first 32 hex characters of a
SHA-256 digest over ``sender|timestamp|amount|text``. The timestamp is the
full receipt instant, time of day included, so two identical transfers on the
same day stay distinct while a replayed message maps to the same key.

Fee entries reuse their parent's digest under a different tag, which keeps
every entry minted from one message unique and tied to its primary entry.
"""

from __future__ import annotations

import hashlib
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import StrEnum

from .fees import to_decimal

KEY_HASH_LENGTH = 32
# Ledger limit on import ids.
MAX_KEY_LENGTH = 36
_DELIMITER = "|"


class KeyKind(StrEnum):
    PRIMARY = "sms"
    TRANSFER_FEE = "fee"
    NOTIFICATION_FEE = "ntf"
    PLACEHOLDER_FEE = "plt"


_KNOWN_TAGS = frozenset(k.value for k in KeyKind)


def to_milliunits(amount: Decimal | int | float | str) -> int:
    """Convert currency-major units to ledger milliunits (``12.34 -> 12340``)."""

    scaled = to_decimal(amount) * 1000
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_full_timestamp(ts: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. ``2024-05-01T08:15:00.000Z``."""

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    utc = ts.astimezone(UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def make_key(
    *,
    sender: str,
    full_timestamp: datetime | str,
    amount_minor_units: int,
    raw_text: str,
    kind: KeyKind = KeyKind.PRIMARY,
) -> str:
    """Return the deterministic idempotency key for one message."""

    ts = (
        format_full_timestamp(full_timestamp)
        if isinstance(full_timestamp, datetime)
        else full_timestamp
    )
    fingerprint = _DELIMITER.join([sender, ts, str(int(amount_minor_units)), raw_text])
    digest = hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()[:KEY_HASH_LENGTH]
    return f"{KeyKind(kind)}:{digest}"


def derive_key(key: str, kind: KeyKind) -> str:
    """Swap the tag of an existing key, keeping its digest.

    Raises ``ValueError`` when ``key`` does not carry a known tag.
    """

    tag, sep, digest = key.partition(":")
    if not sep or not digest:
        raise ValueError(f"not an idempotency key: {key!r}")
    if tag not in _KNOWN_TAGS:
        raise ValueError(f"unknown idempotency key tag: {tag!r}")
    return f"{KeyKind(kind)}:{digest}"


__all__ = [
    "KEY_HASH_LENGTH",
    "KeyKind",
    "MAX_KEY_LENGTH",
    "derive_key",
    "format_full_timestamp",
    "make_key",
    "to_milliunits",
]
