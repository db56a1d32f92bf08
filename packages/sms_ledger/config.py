"""Runtime configuration.

Two layers, both immutable once built:

- :class:`Settings` collects environment-driven knobs (credentials, database
  URL, time offsets, TTLs). Build it once per process with
  :meth:`Settings.from_env`.
- :class:`RoutingConfig` and the :class:`~sms_ledger.fees.FeeSchedule` hold the
  static lookup tables (sender to account, ending hints, fee tiers). Built-in
  defaults cover the supported Zambian providers; a JSON file named by
  ``SMS_LEDGER_CONFIG`` can replace any table. The file is validated with
  pydantic and unknown keys are rejected.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta, timezone
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .directory import DEFAULT_RESERVED_PREFIXES, DEFAULT_TTL_SECONDS
from .errors import ConfigError
from .fees import (
    FeeRule,
    FeeSchedule,
    FeeTier,
    NotificationFee,
    PlaceholderFee,
    Provider,
    TransferType,
    default_fee_schedule,
)

DEFAULT_MODEL = "gpt-5-mini"
DEFAULT_UTC_OFFSET_HOURS = 2.0
DEFAULT_CORRELATION_WINDOW_MINUTES = 5
DEFAULT_RETENTION_MINUTES = 60
DEFAULT_FALLBACK_ACCOUNT = "Unknown Imports"

F = TypeVar("F", NotificationFee, PlaceholderFee)

DEFAULT_SENDER_ACCOUNTS: Mapping[str, str] = MappingProxyType(
    {
        "airtelmoney": "Airtel Money",
        "momo": "MTN MoMo",
        "115": "Zamtel Money",
        "absa": "Absa Current",
        "absa_zm": "Absa Current",
        "stanchart": "Stanchart Current",
        "stanchartzm": "Stanchart Current",
    }
)


@dataclass(frozen=True, slots=True)
class RoutingConfig:
    """Static routing tables. Sender keys are matched case-insensitively."""

    sender_accounts: Mapping[str, str] = field(default_factory=lambda: DEFAULT_SENDER_ACCOUNTS)
    ending_hints: Mapping[str, str] = field(default_factory=dict)
    fallback_account: str = DEFAULT_FALLBACK_ACCOUNT
    fallback_account_type: str = "checking"

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "sender_accounts",
            MappingProxyType({k.strip().lower(): v for k, v in self.sender_accounts.items()}),
        )
        object.__setattr__(
            self,
            "ending_hints",
            MappingProxyType({k.strip(): v for k, v in self.ending_hints.items()}),
        )

    def account_for_sender(self, sender: str) -> str | None:
        return self.sender_accounts.get((sender or "").strip().lower())

    def account_for_ending(self, ending: str) -> str | None:
        return self.ending_hints.get(ending)


# ---- Configuration file ------------------------------------------------------


class _FileModel(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class _TierFile(_FileModel):
    min: Decimal
    max: Decimal
    fee: Decimal

    @field_validator("max")
    @classmethod
    def _max_above_min(cls, v: Decimal, info: ValidationInfo) -> Decimal:
        lo = info.data.get("min")
        if lo is not None and v <= lo:
            raise ValueError("tier max must be greater than min")
        return v


class _FeeRuleFile(_FileModel):
    payee: str
    category: str | None = None
    tiers: list[_TierFile] = Field(default_factory=list)


class _FlatFeeFile(_FileModel):
    fee: Decimal
    payee: str
    category: str | None = None


class ConfigFile(_FileModel):
    """Shape of the optional JSON configuration file."""

    sender_accounts: dict[str, str] | None = None
    ending_hints: dict[str, str] | None = None
    fallback_account: str | None = None
    fee_schedules: dict[Provider, dict[TransferType, _FeeRuleFile]] | None = None
    notification_fees: dict[Provider, _FlatFeeFile] | None = None
    placeholder_fees: dict[Provider, _FlatFeeFile] | None = None
    reserved_name_prefixes: list[str] | None = None

    @field_validator("ending_hints")
    @classmethod
    def _four_digit_endings(cls, v: dict[str, str] | None) -> dict[str, str] | None:
        if v is None:
            return v
        bad = [k for k in v if not (len(k) == 4 and k.isdigit())]
        if bad:
            raise ValueError(f"ending hints must be 4-digit keys: {bad}")
        return v


@dataclass(frozen=True, slots=True)
class LoadedConfig:
    routing: RoutingConfig
    fees: FeeSchedule
    reserved_prefixes: tuple[str, ...]


def _flat_fees(
    kind: type[F], entries: dict[Provider, _FlatFeeFile], fee_category: str | None
) -> dict[Provider, F]:
    return {
        provider: kind(
            fee=entry.fee,
            payee=entry.payee,
            category=entry.category if entry.category is not None else fee_category,
        )
        for provider, entry in entries.items()
    }


def _fee_schedule_from_file(
    cfg: ConfigFile, base: FeeSchedule, fee_category: str | None
) -> FeeSchedule:
    rules = dict(base.rules)
    if cfg.fee_schedules is not None:
        rules = {
            (provider, ttype): FeeRule(
                payee=rule.payee,
                tiers=tuple(FeeTier(t.min, t.max, t.fee) for t in rule.tiers),
                category=rule.category if rule.category is not None else fee_category,
            )
            for provider, by_type in cfg.fee_schedules.items()
            for ttype, rule in by_type.items()
        }
    notification = dict(base.notification_fees)
    if cfg.notification_fees is not None:
        notification = _flat_fees(NotificationFee, cfg.notification_fees, fee_category)
    placeholder = dict(base.placeholder_fees)
    if cfg.placeholder_fees is not None:
        placeholder = _flat_fees(PlaceholderFee, cfg.placeholder_fees, fee_category)
    return FeeSchedule(rules=rules, notification_fees=notification, placeholder_fees=placeholder)


def load_config(
    path: str | os.PathLike[str] | None, *, fee_category: str | None = None
) -> LoadedConfig:
    """Return routing and fee tables, applying the JSON file at ``path`` if given.

    Raises ``ConfigError`` when the file is unreadable, not JSON, or fails
    validation.
    """

    base_fees = default_fee_schedule(fee_category)
    if path is None:
        return LoadedConfig(
            routing=RoutingConfig(),
            fees=base_fees,
            reserved_prefixes=DEFAULT_RESERVED_PREFIXES,
        )

    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"cannot read config file {p}", detail=str(e)) from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"config file {p} is not valid JSON", detail=str(e)) from e

    try:
        cfg = ConfigFile.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"invalid config file {p}", detail=str(e)) from e

    routing = RoutingConfig(
        sender_accounts=(
            cfg.sender_accounts if cfg.sender_accounts is not None else DEFAULT_SENDER_ACCOUNTS
        ),
        ending_hints=cfg.ending_hints or {},
        fallback_account=cfg.fallback_account or DEFAULT_FALLBACK_ACCOUNT,
    )
    reserved = (
        tuple(cfg.reserved_name_prefixes)
        if cfg.reserved_name_prefixes is not None
        else DEFAULT_RESERVED_PREFIXES
    )
    return LoadedConfig(
        routing=routing,
        fees=_fee_schedule_from_file(cfg, base_fees, fee_category),
        reserved_prefixes=reserved,
    )


# ---- Environment settings ------------------------------------------------------


def _env_str(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_number(name: str, default: float) -> float:
    value = _env_str(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number", detail=value) from e


@dataclass(frozen=True, slots=True)
class Settings:
    """Environment-driven settings; see :meth:`from_env` for variable names."""

    ynab_token: str | None = None
    ynab_budget_id: str | None = None
    model: str = DEFAULT_MODEL
    database_url: str | None = None
    fee_category: str | None = None
    config_path: str | None = None
    utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS
    directory_ttl_seconds: float = DEFAULT_TTL_SECONDS
    correlation_window_minutes: int = DEFAULT_CORRELATION_WINDOW_MINUTES
    retention_minutes: int = DEFAULT_RETENTION_MINUTES

    @classmethod
    def from_env(cls) -> Settings:
        """Read ``YNAB_TOKEN``, ``YNAB_BUDGET_ID``, ``DATABASE_URL``,
        ``FEE_CATEGORY_NAME`` and the ``SMS_LEDGER_*`` variables."""

        return cls(
            ynab_token=_env_str("YNAB_TOKEN"),
            ynab_budget_id=_env_str("YNAB_BUDGET_ID"),
            model=_env_str("SMS_LEDGER_MODEL") or DEFAULT_MODEL,
            database_url=_env_str("DATABASE_URL"),
            fee_category=_env_str("FEE_CATEGORY_NAME"),
            config_path=_env_str("SMS_LEDGER_CONFIG"),
            utc_offset_hours=_env_number("SMS_LEDGER_UTC_OFFSET_HOURS", DEFAULT_UTC_OFFSET_HOURS),
            directory_ttl_seconds=_env_number(
                "SMS_LEDGER_DIRECTORY_TTL_SECONDS", DEFAULT_TTL_SECONDS
            ),
            correlation_window_minutes=int(
                _env_number(
                    "SMS_LEDGER_CORRELATION_WINDOW_MINUTES", DEFAULT_CORRELATION_WINDOW_MINUTES
                )
            ),
            retention_minutes=int(
                _env_number("SMS_LEDGER_RETENTION_MINUTES", DEFAULT_RETENTION_MINUTES)
            ),
        )

    @property
    def local_tz(self) -> timezone:
        return timezone(timedelta(hours=self.utc_offset_hours))

    def require_ledger_credentials(self) -> tuple[str, str]:
        if not self.ynab_token or not self.ynab_budget_id:
            raise ConfigError("YNAB_TOKEN and YNAB_BUDGET_ID must be set")
        return self.ynab_token, self.ynab_budget_id


__all__ = [
    "ConfigFile",
    "DEFAULT_SENDER_ACCOUNTS",
    "LoadedConfig",
    "RoutingConfig",
    "Settings",
    "load_config",
]
