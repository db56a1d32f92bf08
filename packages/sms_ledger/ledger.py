"""Budget ledger contract and a thin YNAB HTTP client.

The pipeline only depends on :class:`LedgerClient`; tests substitute a fake.
:class:`YnabClient` is the production implementation: plain JSON over
``urllib`` with a bearer token, one budget per client. Calls are never retried
here; every transport failure or non-2xx response raises
:class:`~sms_ledger.errors.LedgerError`.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import LedgerError
from .logging_setup import get_logger

YNAB_API_URL = "https://api.youneedabudget.com/v1"
_TIMEOUT_SEC = 30.0

_logger = get_logger("sms_ledger.ledger")

M = TypeVar("M", bound=BaseModel)


class _LedgerModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class Account(_LedgerModel):
    id: str
    name: str
    type: str = ""
    deleted: bool = False
    closed: bool = False


class Category(_LedgerModel):
    id: str
    name: str
    hidden: bool = False
    deleted: bool = False
    category_group_name: str | None = None


class CategoryGroup(_LedgerModel):
    id: str
    name: str
    hidden: bool = False
    deleted: bool = False
    categories: list[Category] = Field(default_factory=list)


class Payee(_LedgerModel):
    id: str
    name: str
    deleted: bool = False
    transfer_account_id: str | None = None


class SaveResult(_LedgerModel):
    transaction_ids: list[str] = Field(default_factory=list)
    duplicate_import_ids: list[str] = Field(default_factory=list)


class ClearedState(StrEnum):
    CLEARED = "cleared"
    UNCLEARED = "uncleared"
    RECONCILED = "reconciled"


@dataclass(frozen=True, slots=True)
class NewTransaction:
    """A ledger entry to create. ``amount`` is signed milliunits."""

    account_id: str
    date: date
    amount: int
    import_id: str
    memo: str | None = None
    payee_id: str | None = None
    payee_name: str | None = None
    category_id: str | None = None
    cleared: ClearedState = ClearedState.UNCLEARED
    approved: bool = False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "account_id": self.account_id,
            "date": self.date.isoformat(),
            "amount": self.amount,
            "import_id": self.import_id,
            "cleared": str(self.cleared),
            "approved": self.approved,
        }
        for key in ("memo", "payee_id", "payee_name", "category_id"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


class LedgerClient(Protocol):
    def list_accounts(self) -> list[Account]: ...

    def list_categories(self) -> list[CategoryGroup]: ...

    def list_payees(self) -> list[Payee]: ...

    def create_account(
        self, *, name: str, account_type: str = "checking", balance: int = 0
    ) -> Account: ...

    def create_transaction(self, tx: NewTransaction) -> SaveResult: ...


class YnabClient:
    """YNAB REST client bound to one budget.

    Parameters
    ----------
    token:
        Personal access token sent as ``Authorization: Bearer``.
    budget_id:
        Budget UUID (or ``"last-used"``).
    base_url:
        API root, overridable for tests or proxies.
    timeout:
        Socket timeout per request in seconds.
    """

    def __init__(
        self,
        *,
        token: str,
        budget_id: str,
        base_url: str = YNAB_API_URL,
        timeout: float = _TIMEOUT_SEC,
    ) -> None:
        if not token:
            raise ValueError("token must be a non-empty string")
        if not budget_id:
            raise ValueError("budget_id must be a non-empty string")
        self._token = token
        self._budget_path = f"/budgets/{budget_id}"
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def list_accounts(self) -> list[Account]:
        data = self._request("GET", f"{self._budget_path}/accounts")
        return _parse_list(Account, data.get("accounts"), "accounts")

    def list_categories(self) -> list[CategoryGroup]:
        data = self._request("GET", f"{self._budget_path}/categories")
        return _parse_list(CategoryGroup, data.get("category_groups"), "category_groups")

    def list_payees(self) -> list[Payee]:
        data = self._request("GET", f"{self._budget_path}/payees")
        return _parse_list(Payee, data.get("payees"), "payees")

    def create_account(
        self, *, name: str, account_type: str = "checking", balance: int = 0
    ) -> Account:
        body = {"account": {"name": name, "type": account_type, "balance": balance}}
        data = self._request("POST", f"{self._budget_path}/accounts", body)
        try:
            return Account.model_validate(data.get("account"))
        except ValidationError as e:
            raise LedgerError("ledger returned an unexpected account payload", body=str(e)) from e

    def create_transaction(self, tx: NewTransaction) -> SaveResult:
        body = {"transactions": [tx.to_payload()]}
        data = self._request("POST", f"{self._budget_path}/transactions", body)
        try:
            return SaveResult.model_validate(data)
        except ValidationError as e:
            raise LedgerError("ledger returned an unexpected save payload", body=str(e)) from e

    def _request(
        self, method: str, path: str, body: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(url, data=data, method=method)
        req.add_header("Authorization", f"Bearer {self._token}")
        req.add_header("Accept", "application/json")
        if data is not None:
            req.add_header("Content-Type", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            try:
                err_body = e.read().decode("utf-8", errors="replace")
            except Exception:  # noqa: BLE001
                err_body = ""
            _logger.error(
                "ledger:http_error method=%s path=%s status=%s", method, path, e.code
            )
            raise LedgerError(
                f"ledger API error {e.code} {e.reason}", status_code=e.code, body=err_body
            ) from e
        except (urllib.error.URLError, TimeoutError) as e:
            _logger.error("ledger:transport_error method=%s path=%s error=%s", method, path, e)
            raise LedgerError(f"ledger API unreachable: {e}") from e

        try:
            decoded = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise LedgerError("ledger API returned invalid JSON") from e
        payload = decoded.get("data") if isinstance(decoded, dict) else None
        if not isinstance(payload, dict):
            raise LedgerError("ledger API response is missing the 'data' envelope")
        return payload


def _parse_list(model: type[M], items: Any, field: str) -> list[M]:
    if not isinstance(items, list):
        raise LedgerError(f"ledger API response is missing '{field}'")
    try:
        return [model.model_validate(item) for item in items]
    except ValidationError as e:
        raise LedgerError(f"ledger API returned malformed '{field}'", body=str(e)) from e


__all__ = [
    "Account",
    "Category",
    "CategoryGroup",
    "ClearedState",
    "LedgerClient",
    "NewTransaction",
    "Payee",
    "SaveResult",
    "YNAB_API_URL",
    "YnabClient",
]
