"""Provider fee schedules.

Pure lookups from ``(provider, transfer type, amount)`` to the flat fee a
provider charges, plus the per-alert notification fee some banks bill and the
estimated placeholder fee used for providers whose messages never say what
kind of transfer happened.

Three outcomes are kept apart on purpose:

- no rule for the pair: ``FeeStatus.UNCONFIGURED`` and ``fee is None``;
- a rule with no tiers: ``FeeStatus.FREE`` and ``fee == 0``;
- a rule with tiers but no tier containing the amount:
  ``FeeStatus.OUT_OF_RANGE`` and ``fee is None``.

Tiers are half-open below: a tier ``(min, max]`` contains ``amount`` when
``min < amount <= max``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from types import MappingProxyType


class Provider(StrEnum):
    AIRTEL = "airtel"
    MTN = "mtn"
    ZAMTEL = "zamtel"
    ABSA = "absa"
    STANCHART = "stanchart"
    UNKNOWN = "unknown"


class TransferType(StrEnum):
    SAME_NETWORK = "same_network"
    CROSS_NETWORK = "cross_network"
    TO_BANK = "to_bank"
    TO_MOBILE = "to_mobile"
    WITHDRAWAL = "withdrawal"
    AIRTIME = "airtime"
    BILL_PAYMENT = "bill_payment"
    POS = "pos"
    UNKNOWN = "unknown"


class FeeStatus(StrEnum):
    UNCONFIGURED = "unconfigured"
    FREE = "free"
    CHARGED = "charged"
    OUT_OF_RANGE = "out_of_range"


MOBILE_MONEY_PROVIDERS: frozenset[Provider] = frozenset(
    {Provider.AIRTEL, Provider.MTN, Provider.ZAMTEL}
)

# First match wins; matched as case-insensitive substrings of the sender.
_PROVIDER_KEYWORDS: tuple[tuple[Provider, tuple[str, ...]], ...] = (
    (Provider.AIRTEL, ("airtel",)),
    (Provider.MTN, ("mtn", "momo")),
    (Provider.ZAMTEL, ("zamtel", "zampay")),
    (Provider.ABSA, ("absa",)),
    (Provider.STANCHART, ("stanchart", "standard chartered")),
)

# Two leading digits of the nine-digit national mobile number.
_NETWORK_PREFIXES: Mapping[str, Provider] = MappingProxyType(
    {
        "97": Provider.AIRTEL,
        "77": Provider.AIRTEL,
        "96": Provider.MTN,
        "76": Provider.MTN,
        "95": Provider.ZAMTEL,
        "75": Provider.ZAMTEL,
    }
)

# Optional trunk "0" or country code "260", then the national number.
_PHONE_RE = re.compile(r"(?<!\d)(?:\+?260|0)?([79][5-7]\d{7})(?!\d)")


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Coerce a money value to ``Decimal`` without binary float artefacts."""

    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def sender_to_provider(sender: str) -> Provider:
    """Map a free-form sender id (``"AirtelMoney"``, ``"ABSA_ZM"``) to a provider."""

    lowered = (sender or "").lower()
    for provider, keywords in _PROVIDER_KEYWORDS:
        if any(k in lowered for k in keywords):
            return provider
    return Provider.UNKNOWN


def recipient_network(text: str) -> Provider | None:
    """Return the mobile network of the first recognisable phone number in ``text``."""

    for match in _PHONE_RE.finditer(text or ""):
        network = _NETWORK_PREFIXES.get(match.group(1)[:2])
        if network is not None:
            return network
    return None


def infer_transfer_type(text: str, provider: Provider) -> TransferType | None:
    """Infer a transfer type from a recipient phone number in the message body.

    A mobile number seen in a bank alert means a bank-to-mobile transfer. For a
    mobile-money provider the number's network decides between a same-network
    and a cross-network send. ``None`` when no mobile number is present.
    """

    network = recipient_network(text)
    if network is None:
        return None
    if provider in MOBILE_MONEY_PROVIDERS:
        return TransferType.SAME_NETWORK if network is provider else TransferType.CROSS_NETWORK
    return TransferType.TO_MOBILE


@dataclass(frozen=True, slots=True)
class FeeTier:
    min: Decimal
    max: Decimal
    fee: Decimal

    def contains(self, amount: Decimal) -> bool:
        return self.min < amount <= self.max


@dataclass(frozen=True, slots=True)
class FeeRule:
    """Fee tiers for one ``(provider, transfer type)``; empty tiers mean free."""

    payee: str
    tiers: tuple[FeeTier, ...] = ()
    category: str | None = None


@dataclass(frozen=True, slots=True)
class NotificationFee:
    fee: Decimal
    payee: str
    category: str | None = None


@dataclass(frozen=True, slots=True)
class PlaceholderFee:
    """Estimated fee posted when a provider's alerts never name a transfer type."""

    fee: Decimal
    payee: str
    category: str | None = None


@dataclass(frozen=True, slots=True)
class FeeQuote:
    status: FeeStatus
    fee: Decimal | None = None
    payee: str | None = None
    category: str | None = None

    @property
    def configured(self) -> bool:
        return self.status is not FeeStatus.UNCONFIGURED

    @property
    def is_due(self) -> bool:
        """True when there is a positive fee to post."""

        return self.fee is not None and self.fee > 0


_UNCONFIGURED = FeeQuote(status=FeeStatus.UNCONFIGURED)


@dataclass(frozen=True)
class FeeSchedule:
    """Immutable fee tables keyed by provider and transfer type.

    Parameters
    ----------
    rules:
        ``(provider, transfer type) -> FeeRule``. Pairs that are absent are
        reported as unconfigured.
    notification_fees:
        ``provider -> NotificationFee`` for banks that bill each SMS alert.
    placeholder_fees:
        ``provider -> PlaceholderFee`` for providers whose outflow alerts never
        carry a transfer type.
    """

    rules: Mapping[tuple[Provider, TransferType], FeeRule] = field(default_factory=dict)
    notification_fees: Mapping[Provider, NotificationFee] = field(default_factory=dict)
    placeholder_fees: Mapping[Provider, PlaceholderFee] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", MappingProxyType(dict(self.rules)))
        object.__setattr__(
            self, "notification_fees", MappingProxyType(dict(self.notification_fees))
        )
        object.__setattr__(self, "placeholder_fees", MappingProxyType(dict(self.placeholder_fees)))

    def calculate_fee(
        self,
        provider: Provider,
        transfer_type: TransferType,
        amount: Decimal | int | float | str,
    ) -> FeeQuote:
        rule = self.rules.get((Provider(provider), TransferType(transfer_type)))
        if rule is None:
            return _UNCONFIGURED
        if not rule.tiers:
            return FeeQuote(
                status=FeeStatus.FREE, fee=Decimal("0"), payee=rule.payee, category=rule.category
            )
        value = to_decimal(amount)
        for tier in rule.tiers:
            if tier.contains(value):
                return FeeQuote(
                    status=FeeStatus.CHARGED,
                    fee=tier.fee,
                    payee=rule.payee,
                    category=rule.category,
                )
        return FeeQuote(status=FeeStatus.OUT_OF_RANGE, payee=rule.payee, category=rule.category)

    def notification_fee(self, provider: Provider) -> FeeQuote:
        entry = self.notification_fees.get(Provider(provider))
        if entry is None:
            return _UNCONFIGURED
        status = FeeStatus.CHARGED if entry.fee > 0 else FeeStatus.FREE
        return FeeQuote(status=status, fee=entry.fee, payee=entry.payee, category=entry.category)

    def placeholder_fee(self, provider: Provider) -> PlaceholderFee | None:
        return self.placeholder_fees.get(Provider(provider))


def _tiers(rows: Iterable[tuple[str, str, str]]) -> tuple[FeeTier, ...]:
    return tuple(FeeTier(Decimal(lo), Decimal(hi), Decimal(fee)) for lo, hi, fee in rows)


_AIRTEL_SAME_NETWORK = (
    ("0", "150", "0.58"),
    ("150", "300", "1.10"),
    ("300", "500", "1.20"),
    ("500", "1000", "2.00"),
    ("1000", "3000", "3.60"),
    ("3000", "5000", "5.00"),
    ("5000", "10000", "7.00"),
)

_MTN_SAME_NETWORK = (
    ("0", "150", "0.58"),
    ("150", "300", "1.10"),
    ("300", "500", "1.20"),
    ("500", "1000", "2.00"),
    ("1000", "3000", "3.80"),
    ("3000", "5000", "5.00"),
    ("5000", "10000", "7.00"),
)


def default_fee_schedule(fee_category: str | None = None) -> FeeSchedule:
    """Built-in tables for Airtel, MTN, Zamtel, Absa and Standard Chartered.

    ``fee_category`` is attached to every generated fee entry.
    """

    def rule(payee: str, rows: Iterable[tuple[str, str, str]] = ()) -> FeeRule:
        return FeeRule(payee=payee, tiers=_tiers(rows), category=fee_category)

    rules: dict[tuple[Provider, TransferType], FeeRule] = {
        (Provider.AIRTEL, TransferType.SAME_NETWORK): rule("Airtel", _AIRTEL_SAME_NETWORK),
        (Provider.MTN, TransferType.SAME_NETWORK): rule("MTN", _MTN_SAME_NETWORK),
        (Provider.ZAMTEL, TransferType.SAME_NETWORK): rule("Zamtel"),
        (Provider.ABSA, TransferType.TO_MOBILE): rule("Absa", [("0", "1000000", "10.00")]),
        (Provider.ABSA, TransferType.WITHDRAWAL): rule("Absa", [("0", "1000000", "20.00")]),
        (Provider.ABSA, TransferType.BILL_PAYMENT): rule("Absa"),
    }
    for free_type in (
        TransferType.CROSS_NETWORK,
        TransferType.TO_BANK,
        TransferType.WITHDRAWAL,
        TransferType.BILL_PAYMENT,
        TransferType.AIRTIME,
    ):
        rules[(Provider.AIRTEL, free_type)] = rule("Airtel")

    return FeeSchedule(
        rules=rules,
        notification_fees={
            Provider.ABSA: NotificationFee(
                fee=Decimal("0.50"), payee="Absa", category=fee_category
            )
        },
        placeholder_fees={
            Provider.ABSA: PlaceholderFee(
                fee=Decimal("10.00"), payee="Absa Bank", category=fee_category
            )
        },
    )


__all__ = [
    "FeeQuote",
    "FeeRule",
    "FeeSchedule",
    "FeeStatus",
    "FeeTier",
    "MOBILE_MONEY_PROVIDERS",
    "NotificationFee",
    "PlaceholderFee",
    "Provider",
    "TransferType",
    "default_fee_schedule",
    "infer_transfer_type",
    "recipient_network",
    "sender_to_provider",
    "to_decimal",
]
