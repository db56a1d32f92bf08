from __future__ import annotations

import pytest

from sms_ledger.config import RoutingConfig
from sms_ledger.directory import DirectoryCache
from sms_ledger.ledger import Account
from sms_ledger.routing import AccountRouter, RoutingSource, extract_account_ending
from tests.helpers.clock import FakeMonotonic
from tests.helpers.fake_ledger import FakeLedger

_CONFIG = RoutingConfig(
    sender_accounts={"ABSA": "Absa Current", "AirtelMoney": "Airtel Money"},
    ending_hints={"1234": "Absa Savings", "9999": "Missing Account"},
)


def _router(ledger: FakeLedger, config: RoutingConfig = _CONFIG) -> AccountRouter:
    directory = DirectoryCache(clock=FakeMonotonic())
    directory.ensure_fresh(ledger)
    return AccountRouter(config, directory)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(
        accounts=[
            Account(id="acc-cur", name="Absa Current"),
            Account(id="acc-sav", name="Absa Savings"),
            Account(id="acc-airtel", name="Airtel Money"),
        ]
    )


def test_ending_hint_beats_sender_mapping(ledger):
    decision = _router(ledger).resolve("Debit on acc ending 1234 of ZMW 50", "ABSA", ledger)
    assert decision.account_id == "acc-sav"
    assert decision.account_name == "Absa Savings"
    assert decision.source is RoutingSource.ENDING_HINT


def test_unresolved_ending_hint_falls_back_to_sender(ledger):
    decision = _router(ledger).resolve("Debit on acc ending 9999", "ABSA", ledger)
    assert decision.account_id == "acc-cur"
    assert decision.source is RoutingSource.SENDER_MAPPING


def test_unmapped_ending_uses_sender(ledger):
    decision = _router(ledger).resolve("Debit on acc ending 5555", "absa", ledger)
    assert decision.account_id == "acc-cur"
    assert decision.source is RoutingSource.SENDER_MAPPING


def test_sender_keys_are_case_insensitive(ledger):
    decision = _router(ledger).resolve("Money sent", "AIRTELMONEY", ledger)
    assert decision.account_id == "acc-airtel"


def test_existing_fallback_account_is_reused(ledger):
    ledger.accounts.append(Account(id="acc-unk", name="Unknown Imports"))
    decision = _router(ledger).resolve("hello", "RandomBank", ledger)
    assert decision.account_id == "acc-unk"
    assert decision.source is RoutingSource.FALLBACK_EXISTING
    assert ledger.created_accounts == []


def test_missing_fallback_account_is_created_once(ledger):
    directory = DirectoryCache(clock=FakeMonotonic())
    directory.ensure_fresh(ledger)
    router = AccountRouter(_CONFIG, directory)
    decision = router.resolve("hello", "RandomBank", ledger)

    assert decision.source is RoutingSource.FALLBACK_CREATED
    assert decision.account_name == "Unknown Imports"
    assert decision.resolved
    assert ledger.created_accounts == [
        {"name": "Unknown Imports", "type": "checking", "balance": 0}
    ]

    # The next refresh sees the new account, so it is reused.
    assert not directory.is_fresh()
    directory.ensure_fresh(ledger)
    again = router.resolve("hello again", "RandomBank", ledger)
    assert again.source is RoutingSource.FALLBACK_EXISTING
    assert again.account_id == decision.account_id
    assert len(ledger.created_accounts) == 1


def test_fallback_creation_failure_is_reported(ledger):
    ledger.fail_create_account = True
    decision = _router(ledger).resolve("hello", "RandomBank", ledger)
    assert decision.source is RoutingSource.FAILED
    assert decision.account_id is None
    assert not decision.resolved
    assert decision.error


def test_custom_fallback_name(ledger):
    config = RoutingConfig(sender_accounts={}, fallback_account="Inbox")
    decision = _router(ledger, config).resolve("x", "ABSA", ledger)
    assert decision.account_name == "Inbox"
    assert ledger.created_accounts[0]["name"] == "Inbox"


@pytest.mark.parametrize(
    ("text", "ending"),
    [
        ("Acc ending 1234 debited", "1234"),
        ("card ENDING   0042.", "0042"),
        ("ending 12", None),
        ("nothing", None),
    ],
)
def test_extract_account_ending(text, ending):
    assert extract_account_ending(text) == ending
