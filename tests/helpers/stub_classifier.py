"""Scripted ``Classifier`` that skips the OpenAI call entirely."""

from __future__ import annotations

import json
from typing import Any

from sms_ledger.classifier import Classification
from sms_ledger.errors import ClassificationError
from sms_ledger.models import ExtractionResult
from sms_ledger.prompting import ClassificationContext


class StubClassifier:
    """Return a canned extraction per message.

    Parameters
    ----------
    outputs:
        Either one payload used for every message or a mapping from message
        text to payload. A payload that is an exception instance is raised.
    """

    def __init__(self, outputs: dict[str, Any] | Exception) -> None:
        self._outputs = outputs
        self.calls: list[tuple[str, ClassificationContext]] = []

    def classify(self, text: str, context: ClassificationContext) -> Classification:
        self.calls.append((text, context))
        payload: Any = self._outputs
        if isinstance(payload, dict) and text in payload:
            payload = payload[text]
        if isinstance(payload, Exception):
            raise payload
        if not isinstance(payload, dict):
            raise ClassificationError("stub has no output for message", raw_response=None)
        raw = json.dumps(payload)
        return Classification(extraction=ExtractionResult.model_validate(payload), raw_response=raw)
