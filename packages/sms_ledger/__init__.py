"""Public interface for the ``sms_ledger`` package.

This module exposes the package's API functions and public models/types as the
stable import surface. There is no runtime logic here, only symbol re-exports.
"""

from .api import build_pipeline, ingest_message, sweep_correlations
from .config import Settings
from .errors import (
    ClassificationError,
    ConfigError,
    CorrelationError,
    DirectoryError,
    LedgerError,
    SmsLedgerError,
)
from .models import Direction, ExtractionResult, InboundMessage
from .pipeline import FeeOutcome, IngestionPipeline, IngestResult, IngestStatus

__all__ = [
    # API
    "build_pipeline",
    "ingest_message",
    "sweep_correlations",
    # Pipeline
    "IngestionPipeline",
    "IngestResult",
    "IngestStatus",
    "FeeOutcome",
    # Models / types
    "Direction",
    "ExtractionResult",
    "InboundMessage",
    "Settings",
    # Errors
    "ClassificationError",
    "ConfigError",
    "CorrelationError",
    "DirectoryError",
    "LedgerError",
    "SmsLedgerError",
]
