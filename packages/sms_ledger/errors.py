"""Exception hierarchy for ``sms_ledger``.

Every error raised on purpose by this package derives from
:class:`SmsLedgerError`, so hosts can catch one type at the boundary. The
ingestion pipeline itself turns these into ``failed`` results instead of
letting them escape ``process()``.
"""

from __future__ import annotations


class SmsLedgerError(Exception):
    """Base class for package errors."""

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message


class ConfigError(SmsLedgerError):
    """Invalid configuration file or a missing required setting."""


class ClassificationError(SmsLedgerError):
    """The extraction service failed or returned an unusable payload.

    ``raw_response`` keeps whatever text came back so it can be logged for
    diagnosis.
    """

    def __init__(
        self,
        message: str,
        *,
        raw_response: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message, detail=detail)
        self.raw_response = raw_response


class LedgerError(SmsLedgerError):
    """A ledger API call failed (transport error or non-2xx response)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message, detail=body)
        self.status_code = status_code
        self.body = body


class DirectoryError(SmsLedgerError):
    """Refreshing the directory snapshot from the ledger failed."""


class CorrelationError(SmsLedgerError):
    """The correlation store could not be read or written."""


__all__ = [
    "ClassificationError",
    "ConfigError",
    "CorrelationError",
    "DirectoryError",
    "LedgerError",
    "SmsLedgerError",
]
