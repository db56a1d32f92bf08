from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest
from db.client import get_sessionmaker

from sms_ledger.correlation import CorrelationRecord, CorrelationStore
from sms_ledger.errors import CorrelationError
from tests.helpers.clock import FakeUtcClock
from tests.helpers.db import bootstrap_sqlite_db

_T0 = datetime(2024, 5, 1, 8, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> FakeUtcClock:
    return FakeUtcClock(_T0)


@pytest.fixture
def store(tmp_path: Path, clock: FakeUtcClock) -> CorrelationStore:
    url = bootstrap_sqlite_db(tmp_path / "sms.db")
    return CorrelationStore(get_sessionmaker(database_url=url), clock=clock)


def _primary(**overrides) -> CorrelationRecord:
    fields = {
        "sender": "Absa",
        "sms_text": "Debit ZMW 500.00 on acc ending 1234",
        "received_at": _T0,
        "amount": Decimal("500.00"),
        "direction": "outflow",
        "account_ending": "1234",
        "ledger_transaction_id": "tx-1",
        "ledger_account_id": "acc-absa",
        "import_id": "sms:" + "a" * 32,
    }
    fields.update(overrides)
    return CorrelationRecord(**fields)


def test_store_assigns_id_and_round_trips(store, clock):
    saved = store.store(_primary())
    assert saved.id
    assert saved.created_at == clock.now

    loaded = store.get(saved.id)
    assert loaded is not None
    assert loaded.received_at == _T0
    assert loaded.amount == Decimal("500.00")
    assert loaded.import_id == "sms:" + "a" * 32
    assert loaded.is_primary is True
    assert loaded.fee_applied is False
    assert loaded.correlated_with is None


def test_get_unknown_id_returns_none(store):
    assert store.get("nope") is None


def test_find_match_within_window_ignores_sender_case(store):
    saved = store.store(_primary())
    match = store.find_match("ABSA", within_minutes=5, now=_T0 + timedelta(minutes=4))
    assert match is not None
    assert match.id == saved.id


def test_find_match_outside_window_is_none(store):
    store.store(_primary())
    assert store.find_match("Absa", within_minutes=5, now=_T0 + timedelta(minutes=6)) is None


def test_find_match_defaults_to_clock(store, clock):
    store.store(_primary())
    clock.advance(minutes=2)
    assert store.find_match("Absa") is not None
    clock.advance(minutes=10)
    assert store.find_match("Absa") is None


def test_find_match_skips_other_senders_follow_ups_and_applied(store):
    store.store(_primary(sender="AirtelMoney"))
    store.store(_primary(is_primary=False))
    applied = store.store(_primary())
    store.mark_fee_applied(applied.id)
    assert store.find_match("Absa", now=_T0) is None


def test_find_match_prefers_exact_amount_then_most_recent(store):
    older = store.store(_primary(amount=Decimal("120.00")))
    newer = store.store(
        _primary(amount=Decimal("80.00"), received_at=_T0 + timedelta(minutes=1))
    )
    now = _T0 + timedelta(minutes=2)

    assert store.find_match("Absa", Decimal("120"), now=now).id == older.id
    assert store.find_match("Absa", "80.00", now=now).id == newer.id
    assert store.find_match("Absa", Decimal("999"), now=now).id == newer.id
    assert store.find_match("Absa", now=now).id == newer.id


def test_link_correlation_and_mark_fee_applied(store):
    primary = store.store(_primary())
    follow_up = store.store(_primary(is_primary=False, amount=None, ledger_transaction_id=None))

    store.mark_fee_applied(primary.id)
    store.link_correlation(follow_up.id, primary.id)

    assert store.get(primary.id).fee_applied is True
    assert store.get(follow_up.id).correlated_with == primary.id


def test_record_placeholder_fee_keeps_primary_matchable(store):
    primary = store.store(_primary())
    assert primary.placeholder_fee is None

    store.record_placeholder_fee(primary.id, Decimal("10.00"))

    loaded = store.get(primary.id)
    assert loaded.placeholder_fee == Decimal("10.00")
    assert loaded.fee_applied is False
    assert store.find_match("Absa", now=_T0).id == primary.id


def test_updating_missing_record_raises(store):
    with pytest.raises(CorrelationError):
        store.mark_fee_applied("missing")


def test_sweep_deletes_expired_rows_and_unlinks_survivors(store, clock):
    primary = store.store(_primary())
    clock.advance(minutes=50)
    follow_up = store.store(_primary(is_primary=False, received_at=clock.now))
    store.link_correlation(follow_up.id, primary.id)

    clock.advance(minutes=20)
    deleted = store.sweep_older_than(timedelta(minutes=60))

    assert deleted == 1
    assert store.get(primary.id) is None
    survivor = store.get(follow_up.id)
    assert survivor is not None
    assert survivor.correlated_with is None


def test_sweep_with_nothing_expired(store):
    store.store(_primary())
    assert store.sweep_older_than(timedelta(minutes=60), now=_T0 + timedelta(minutes=1)) == 0


def test_from_url_shares_the_cached_engine(tmp_path):
    url = bootstrap_sqlite_db(tmp_path / "other.db")
    store = CorrelationStore.from_url(url)
    saved = store.store(_primary())
    assert store.get(saved.id) is not None
