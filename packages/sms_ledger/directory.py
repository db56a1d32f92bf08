"""Time-bounded cache of the ledger's accounts, categories and payees.

The cache holds one immutable :class:`DirectorySnapshot`. ``ensure_fresh``
refetches all three collections concurrently when the snapshot is older than
the TTL (or missing) and swaps the new snapshot in with a single assignment,
so readers never observe a half-updated directory. Concurrent refreshes are
coalesced behind a lock: a caller that waited on an in-flight refresh reuses
its result instead of fetching again.

Name lookups are case-insensitive exact matches and never return soft-deleted
entries.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TypeVar

from .errors import DirectoryError
from .ledger import Account, Category, CategoryGroup, LedgerClient, Payee
from .logging_setup import get_logger
from .pmap import p_map

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_RESERVED_PREFIXES: tuple[str, ...] = (
    "Internal",
    "Starting Balance",
    "Manual Balance Adjustment",
    "Reconciliation Balance Adjustment",
)

_logger = get_logger("sms_ledger.directory")

E = TypeVar("E", Account, Category, Payee)


def _key(name: str) -> str:
    return name.strip().casefold()


@dataclass(frozen=True, slots=True)
class DirectorySnapshot:
    accounts: tuple[Account, ...]
    categories: tuple[Category, ...]
    payees: tuple[Payee, ...]
    fetched_at: float
    _accounts_by_name: dict[str, Account] = field(init=False, repr=False, compare=False)
    _categories_by_name: dict[str, Category] = field(init=False, repr=False, compare=False)
    _payees_by_name: dict[str, Payee] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_accounts_by_name", _index(self.accounts))
        object.__setattr__(self, "_categories_by_name", _index(self.categories))
        object.__setattr__(self, "_payees_by_name", _index(self.payees))

    def find_account(self, name: str) -> Account | None:
        return self._accounts_by_name.get(_key(name))

    def find_category(self, name: str) -> Category | None:
        return self._categories_by_name.get(_key(name))

    def find_payee(self, name: str) -> Payee | None:
        return self._payees_by_name.get(_key(name))


def _index(entries: Iterable[E]) -> dict[str, E]:
    # First live entry wins when two share a name.
    out: dict[str, E] = {}
    for entry in entries:
        if entry.deleted:
            continue
        out.setdefault(_key(entry.name), entry)
    return out


def flatten_categories(groups: Iterable[CategoryGroup]) -> list[Category]:
    """Flatten grouped categories, stamping each with its group name."""

    out: list[Category] = []
    for group in groups:
        for cat in group.categories:
            out.append(
                cat.model_copy(
                    update={
                        "category_group_name": group.name,
                        "deleted": cat.deleted or group.deleted,
                        "hidden": cat.hidden or group.hidden,
                    }
                )
            )
    return out


class DirectoryCache:
    """Injectable, process-lifetime directory cache.

    Parameters
    ----------
    ttl_seconds:
        Maximum snapshot age before ``ensure_fresh`` refetches.
    clock:
        Monotonic clock returning seconds; tests pass a controllable one.
    reserved_prefixes:
        Names starting with any of these (case-insensitive) are left out of
        the classifier name lists. Lookups still see them.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        reserved_prefixes: Iterable[str] = DEFAULT_RESERVED_PREFIXES,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._reserved = tuple(p.casefold() for p in reserved_prefixes)
        self._snapshot: DirectorySnapshot | None = None
        self._stale = False
        self._refresh_lock = threading.Lock()

    @property
    def snapshot(self) -> DirectorySnapshot | None:
        return self._snapshot

    def is_fresh(self) -> bool:
        snap = self._snapshot
        if snap is None or self._stale:
            return False
        return (self._clock() - snap.fetched_at) < self._ttl

    def invalidate(self) -> None:
        """Mark the snapshot stale so the next ``ensure_fresh`` refetches.

        Lookups keep answering from the current snapshot until then.
        """

        self._stale = True

    def ensure_fresh(self, ledger: LedgerClient) -> None:
        """Refetch from ``ledger`` when stale; raise ``DirectoryError`` on failure."""

        if self.is_fresh():
            return
        with self._refresh_lock:
            if self.is_fresh():
                _logger.debug("directory:refresh_coalesced")
                return
            self._snapshot = self._fetch(ledger)
            self._stale = False

    def _fetch(self, ledger: LedgerClient) -> DirectorySnapshot:
        t0 = time.perf_counter()
        fetchers: list[Callable[[], list]] = [
            ledger.list_accounts,
            ledger.list_categories,
            ledger.list_payees,
        ]
        try:
            accounts, groups, payees = p_map(fetchers, lambda fetch: fetch(), concurrency=3)
        except Exception as e:  # noqa: BLE001
            _logger.error("directory:refresh_failed error=%s", e)
            raise DirectoryError("directory refresh failed", detail=str(e)) from e

        snap = DirectorySnapshot(
            accounts=tuple(accounts),
            categories=tuple(flatten_categories(groups)),
            payees=tuple(payees),
            fetched_at=self._clock(),
        )
        _logger.info(
            "directory:refreshed accounts=%d categories=%d payees=%d latency_ms=%.2f",
            len(snap.accounts),
            len(snap.categories),
            len(snap.payees),
            (time.perf_counter() - t0) * 1000.0,
        )
        return snap

    # ---- Lookups ------------------------------------------------------------

    def find_account_by_name(self, name: str | None) -> Account | None:
        snap = self._snapshot
        if snap is None or not name:
            return None
        return snap.find_account(name)

    def find_category_by_name(self, name: str | None) -> Category | None:
        snap = self._snapshot
        if snap is None or not name:
            return None
        return snap.find_category(name)

    def find_payee_by_name(self, name: str | None) -> Payee | None:
        snap = self._snapshot
        if snap is None or not name:
            return None
        return snap.find_payee(name)

    def account_id(self, name: str | None) -> str | None:
        account = self.find_account_by_name(name)
        return account.id if account else None

    def category_id(self, name: str | None) -> str | None:
        category = self.find_category_by_name(name)
        return category.id if category else None

    def payee_id(self, name: str | None) -> str | None:
        payee = self.find_payee_by_name(name)
        return payee.id if payee else None

    # ---- Classifier context -------------------------------------------------

    def _is_reserved(self, name: str | None) -> bool:
        return bool(name) and name.casefold().startswith(self._reserved)

    def list_category_names(self) -> list[str]:
        snap = self._snapshot
        if snap is None:
            return []
        return [
            c.name
            for c in snap.categories
            if not c.deleted
            and not c.hidden
            and not self._is_reserved(c.name)
            and not self._is_reserved(c.category_group_name)
        ]

    def list_payee_names(self) -> list[str]:
        snap = self._snapshot
        if snap is None:
            return []
        return [
            p.name
            for p in snap.payees
            if not p.deleted and p.transfer_account_id is None and not self._is_reserved(p.name)
        ]


__all__ = [
    "DEFAULT_RESERVED_PREFIXES",
    "DEFAULT_TTL_SECONDS",
    "DirectoryCache",
    "DirectorySnapshot",
    "flatten_categories",
]
