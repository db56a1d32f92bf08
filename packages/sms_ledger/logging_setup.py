"""Logging for the ``sms_ledger`` package.

Hosts call :func:`configure_logging` once; library modules only call
``get_logger("sms_ledger.<module>")``. Until the package is configured its
root logger carries a ``NullHandler`` and stays silent.

Every record emitted while a message is being ingested is tagged with that
message's sender and transport (``%(sms)s`` in the format), so interleaved
webhook deliveries can be told apart in one log stream. The tag comes from
:func:`message_context`, which the pipeline enters around each message.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import IO

PACKAGE_LOGGER = "sms_ledger"
LEVEL_ENV = "SMS_LEDGER_LOG_LEVEL"
FORMAT_ENV = "SMS_LEDGER_LOG_FORMAT"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s [%(sms)s] %(message)s"
NO_MESSAGE = "-"

_current_message: ContextVar[str] = ContextVar("sms_ledger_message", default=NO_MESSAGE)
_configured = False


class MessageContextFilter(logging.Filter):
    """Stamp ``record.sms`` with the message currently being ingested."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.sms = _current_message.get()
        return True


@contextmanager
def message_context(sender: str, source: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``sender@source``."""

    token = _current_message.set(f"{sender}@{source}")
    try:
        yield
    finally:
        _current_message.reset(token)


def resolve_level(level: int | str | None) -> int:
    """Turn an int, a level name or a numeric string into a level.

    ``None`` or an unknown name falls back to ``SMS_LEDGER_LOG_LEVEL`` and then
    to ``INFO``.
    """

    for candidate in (level, os.getenv(LEVEL_ENV)):
        if isinstance(candidate, int):
            return candidate
        if not candidate:
            continue
        name = candidate.strip().upper()
        if name.isdigit():
            return int(name)
        value = logging.getLevelName(name)
        if isinstance(value, int):
            return value
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach the package's single ``StreamHandler`` (first call only).

    Parameters
    ----------
    level:
        Level or level name; see :func:`resolve_level`.
    fmt:
        Format string. Defaults to ``SMS_LEDGER_LOG_FORMAT`` when set, else
        :data:`DEFAULT_FORMAT`.
    stream:
        Destination stream.
    """

    global _configured
    if _configured:
        return

    logger = logging.getLogger(PACKAGE_LOGGER)
    for h in [h for h in logger.handlers if isinstance(h, logging.NullHandler)]:
        logger.removeHandler(h)

    resolved = resolve_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.addFilter(MessageContextFilter())
    handler.setFormatter(logging.Formatter(fmt or os.getenv(FORMAT_ENV) or DEFAULT_FORMAT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    logger.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if not _configured and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = [
    "DEFAULT_FORMAT",
    "MessageContextFilter",
    "configure_logging",
    "get_logger",
    "message_context",
    "resolve_level",
]
