"""Pytest configuration for test isolation.

Puts the workspace packages (``packages/``, ``libs/db/src``) and the repo root
(for ``tests.helpers``) on ``sys.path`` and scrubs every environment variable
the package reads, so a developer's ``.env`` or shell never leaks into a test.
Cached SQLAlchemy engines are disposed after each test because every test gets
its own SQLite file.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

from db.client import dispose_engines  # noqa: E402

_ENV_VARS = (
    "YNAB_TOKEN",
    "YNAB_BUDGET_ID",
    "DATABASE_URL",
    "FEE_CATEGORY_NAME",
    "OPENAI_API_KEY",
    "SMS_LEDGER_MODEL",
    "SMS_LEDGER_CONFIG",
    "SMS_LEDGER_LOG_LEVEL",
    "SMS_LEDGER_LOG_FORMAT",
    "SMS_LEDGER_UTC_OFFSET_HOURS",
    "SMS_LEDGER_DIRECTORY_TTL_SECONDS",
    "SMS_LEDGER_CORRELATION_WINDOW_MINUTES",
    "SMS_LEDGER_RETENTION_MINUTES",
)


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Clear package settings and run each test from its own directory."""

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # The CLI loads ./.env; keep it pointed at an empty directory.
    monkeypatch.chdir(tmp_path)
    yield
    dispose_engines()
