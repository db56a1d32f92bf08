"""Account routing: decide which ledger account a message belongs to.

Resolution order, first hit wins:

1. an ``ending NNNN`` hint in the body mapped to an account name;
2. the sender id mapped to an account name;
3. the catch-all fallback account, reused when it exists and created
   (checking, zero balance) when it does not.

A configured name that does not resolve in the directory falls through to the
next step. Decisions are computed per message and never cached.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from .config import RoutingConfig
from .directory import DirectoryCache
from .errors import LedgerError
from .ledger import LedgerClient
from .logging_setup import get_logger

_ENDING_RE = re.compile(r"ending\s+(\d{4})", re.IGNORECASE)

_logger = get_logger("sms_ledger.routing")


class RoutingSource(StrEnum):
    ENDING_HINT = "ending_hint"
    SENDER_MAPPING = "sender_mapping"
    FALLBACK_EXISTING = "fallback_existing"
    FALLBACK_CREATED = "fallback_created"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RoutingDecision:
    account_id: str | None
    account_name: str | None
    source: RoutingSource
    error: str | None = None

    @property
    def resolved(self) -> bool:
        return self.account_id is not None


def extract_account_ending(text: str) -> str | None:
    """Return the 4-digit suffix from ``"... ending 1234 ..."`` or ``None``."""

    match = _ENDING_RE.search(text or "")
    return match.group(1) if match else None


class AccountRouter:
    def __init__(self, config: RoutingConfig, directory: DirectoryCache) -> None:
        self._config = config
        self._directory = directory

    def resolve(self, message_body: str, sender: str, ledger: LedgerClient) -> RoutingDecision:
        ending = extract_account_ending(message_body)
        if ending is not None:
            name = self._config.account_for_ending(ending)
            account = self._directory.find_account_by_name(name)
            if account is not None:
                return RoutingDecision(account.id, account.name, RoutingSource.ENDING_HINT)
            if name is not None:
                _logger.warning(
                    "routing:ending_hint_unresolved ending=%s account_name=%s", ending, name
                )

        name = self._config.account_for_sender(sender)
        account = self._directory.find_account_by_name(name)
        if account is not None:
            return RoutingDecision(account.id, account.name, RoutingSource.SENDER_MAPPING)
        if name is not None:
            _logger.warning(
                "routing:sender_mapping_unresolved sender=%s account_name=%s", sender, name
            )

        return self._fallback(sender, ledger)

    def _fallback(self, sender: str, ledger: LedgerClient) -> RoutingDecision:
        fallback = self._config.fallback_account
        account = self._directory.find_account_by_name(fallback)
        if account is not None:
            _logger.info("routing:fallback_existing sender=%s account=%s", sender, account.name)
            return RoutingDecision(account.id, account.name, RoutingSource.FALLBACK_EXISTING)

        try:
            created = ledger.create_account(
                name=fallback, account_type=self._config.fallback_account_type, balance=0
            )
        except LedgerError as e:
            _logger.error("routing:fallback_create_failed account=%s error=%s", fallback, e)
            return RoutingDecision(None, fallback, RoutingSource.FAILED, error=str(e))

        # The cached snapshot predates the new account.
        self._directory.invalidate()
        _logger.info("routing:fallback_created sender=%s account=%s", sender, created.name)
        return RoutingDecision(created.id, created.name, RoutingSource.FALLBACK_CREATED)


__all__ = [
    "AccountRouter",
    "RoutingDecision",
    "RoutingSource",
    "extract_account_ending",
]
