"""Public entry points for the ``sms_ledger`` package.

:func:`build_pipeline` wires the production collaborators (YNAB ledger client,
OpenAI classifier, SQL correlation store) from :class:`~sms_ledger.config.Settings`;
any of them can be injected instead. :func:`ingest_message` runs one inbound
payload through a pipeline.

The directory cache is meant to outlive a single message. Hosts that handle
many messages should build one pipeline at startup and pass it to every
:func:`ingest_message` call; a pipeline built per call refetches the directory
each time.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from .classifier import Classifier, OpenAIClassifier
from .config import Settings, load_config
from .correlation import CorrelationStore
from .directory import DirectoryCache
from .errors import ConfigError
from .ledger import LedgerClient, YnabClient
from .logging_setup import get_logger
from .models import InboundMessage
from .pipeline import IngestionPipeline, IngestResult
from .routing import AccountRouter

_logger = get_logger("sms_ledger.api")


def build_pipeline(
    settings: Settings,
    *,
    ledger: LedgerClient | None = None,
    classifier: Classifier | None = None,
    correlation: CorrelationStore | None = None,
    directory: DirectoryCache | None = None,
) -> IngestionPipeline:
    """Assemble an :class:`IngestionPipeline` from ``settings``.

    Missing collaborators are built from settings: the ledger needs
    ``YNAB_TOKEN``/``YNAB_BUDGET_ID`` (``ConfigError`` otherwise) and the
    correlation store is only created when ``DATABASE_URL`` is set.
    """

    loaded = load_config(settings.config_path, fee_category=settings.fee_category)

    if ledger is None:
        token, budget_id = settings.require_ledger_credentials()
        ledger = YnabClient(token=token, budget_id=budget_id)
    if classifier is None:
        classifier = OpenAIClassifier(model=settings.model)
    if correlation is None and settings.database_url:
        correlation = CorrelationStore.from_url(settings.database_url)
    if correlation is None:
        _logger.warning("api:correlation_disabled reason=no_database_url")
    if directory is None:
        directory = DirectoryCache(
            ttl_seconds=settings.directory_ttl_seconds,
            reserved_prefixes=loaded.reserved_prefixes,
        )

    return IngestionPipeline(
        ledger=ledger,
        classifier=classifier,
        directory=directory,
        router=AccountRouter(loaded.routing, directory),
        fees=loaded.fees,
        correlation=correlation,
        local_tz=settings.local_tz,
        correlation_window_minutes=settings.correlation_window_minutes,
    )


def ingest_message(
    payload: Mapping[str, Any] | InboundMessage,
    *,
    settings: Settings | None = None,
    pipeline: IngestionPipeline | None = None,
) -> IngestResult:
    """Run one inbound message through the pipeline and return its outcome."""

    message = (
        payload if isinstance(payload, InboundMessage) else InboundMessage.from_payload(payload)
    )
    if pipeline is None:
        pipeline = build_pipeline(settings or Settings.from_env())
    return pipeline.process(message)


def sweep_correlations(
    settings: Settings,
    *,
    older_than_minutes: float | None = None,
    store: CorrelationStore | None = None,
) -> int:
    """Delete correlation records past the retention window; return the count."""

    if store is None:
        if not settings.database_url:
            raise ConfigError("DATABASE_URL must be set to sweep correlation records")
        store = CorrelationStore.from_url(settings.database_url)
    minutes = older_than_minutes if older_than_minutes is not None else settings.retention_minutes
    return store.sweep_older_than(timedelta(minutes=minutes))


__all__ = ["build_pipeline", "ingest_message", "sweep_correlations"]
