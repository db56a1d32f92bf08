from __future__ import annotations

import io
import json
import urllib.error
from datetime import date
from typing import Any

import pytest

from sms_ledger import ledger as ledger_mod
from sms_ledger.errors import LedgerError
from sms_ledger.ledger import NewTransaction, YnabClient


class _Response:
    def __init__(self, payload: Any) -> None:
        self._raw = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._raw

    def __enter__(self) -> _Response:
        return self

    def __exit__(self, *exc: object) -> None:
        return None


@pytest.fixture
def http(monkeypatch: pytest.MonkeyPatch):
    """Queue of canned responses; each ``urlopen`` pops one and records the request."""

    state: dict[str, list[Any]] = {"responses": [], "requests": []}

    def fake_urlopen(req, timeout=None):
        state["requests"].append(req)
        nxt = state["responses"].pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return _Response(nxt)

    monkeypatch.setattr(ledger_mod.urllib.request, "urlopen", fake_urlopen)
    return state


def _client() -> YnabClient:
    return YnabClient(token="tok", budget_id="budget-1", base_url="https://ynab.test/v1/")


def test_list_accounts_parses_envelope(http):
    http["responses"].append(
        {"data": {"accounts": [{"id": "a1", "name": "Airtel Money", "balance": 100}]}}
    )
    (account,) = _client().list_accounts()
    assert account.id == "a1"
    assert account.name == "Airtel Money"
    req = http["requests"][0]
    assert req.full_url == "https://ynab.test/v1/budgets/budget-1/accounts"
    assert req.get_method() == "GET"
    assert req.get_header("Authorization") == "Bearer tok"


def test_create_transaction_sends_one_entry(http):
    http["responses"].append({"data": {"transaction_ids": ["t1"], "duplicate_import_ids": []}})
    tx = NewTransaction(
        account_id="a1",
        date=date(2024, 5, 1),
        amount=-580,
        import_id="fee:abc",
        memo="Transaction Fee: Ref: X",
    )

    saved = _client().create_transaction(tx)

    assert saved.transaction_ids == ["t1"]
    body = json.loads(http["requests"][0].data)
    assert body == {
        "transactions": [
            {
                "account_id": "a1",
                "date": "2024-05-01",
                "amount": -580,
                "import_id": "fee:abc",
                "cleared": "uncleared",
                "approved": False,
                "memo": "Transaction Fee: Ref: X",
            }
        ]
    }


def test_http_error_becomes_ledger_error(http):
    http["responses"].append(
        urllib.error.HTTPError(
            "https://ynab.test", 409, "Conflict", {}, io.BytesIO(b'{"error":"dup"}')
        )
    )
    with pytest.raises(LedgerError) as exc:
        _client().list_payees()
    assert exc.value.status_code == 409
    assert "dup" in (exc.value.body or "")


def test_unreachable_api_becomes_ledger_error(http):
    http["responses"].append(urllib.error.URLError("connection refused"))
    with pytest.raises(LedgerError, match="unreachable"):
        _client().list_categories()


def test_missing_envelope_is_rejected(http):
    http["responses"].append({"accounts": []})
    with pytest.raises(LedgerError, match="envelope"):
        _client().list_accounts()


def test_requires_credentials():
    with pytest.raises(ValueError):
        YnabClient(token="", budget_id="b")
