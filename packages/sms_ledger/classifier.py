"""SMS classification through the OpenAI Responses API.

One call per message. HTTP 429 and 5xx responses are retried on a short fixed
schedule with jitter; anything else (including output that is not JSON or
lacks the mandatory ``is_transaction`` boolean) fails immediately with
:class:`~sms_ledger.errors.ClassificationError` carrying the raw text.
"""

from __future__ import annotations

import json
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Protocol

from openai import OpenAI
from openai.types.responses import ResponseTextConfigParam
from pydantic import ValidationError

from . import prompting
from .config import DEFAULT_MODEL
from .errors import ClassificationError
from .logging_setup import get_logger
from .models import ExtractionResult
from .prompting import ClassificationContext

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)

_logger = get_logger("sms_ledger.classifier")


@dataclass(frozen=True, slots=True)
class Classification:
    extraction: ExtractionResult
    raw_response: str


class Classifier(Protocol):
    def classify(self, text: str, context: ClassificationContext) -> Classification: ...


def _response_text(resp: Any) -> str:
    """Locate the text output of a Responses SDK result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text``.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except Exception:  # noqa: BLE001 - tolerate SDK shape differences
            text = None
    if not text or not isinstance(text, str):
        raise ClassificationError("unexpected Responses API shape; no text output")
    return text


def parse_extraction(raw: str) -> ExtractionResult:
    """Decode model output into an :class:`ExtractionResult`.

    Markdown code fences around the JSON are tolerated.
    """

    cleaned = _FENCE_RE.sub("", raw).strip()
    try:
        decoded = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ClassificationError(
            "classifier output is not valid JSON", raw_response=raw, detail=str(e)
        ) from e
    if not isinstance(decoded, dict) or not isinstance(decoded.get("is_transaction"), bool):
        raise ClassificationError(
            "classifier output is missing the is_transaction boolean", raw_response=raw
        )
    try:
        return ExtractionResult.model_validate(decoded)
    except ValidationError as e:
        raise ClassificationError(
            "classifier output failed validation", raw_response=raw, detail=str(e)
        ) from e


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def _create_client() -> OpenAI:
    return OpenAI()


class OpenAIClassifier:
    """:class:`Classifier` backed by an OpenAI model.

    Parameters
    ----------
    model:
        Responses API model name.
    client:
        Optional pre-built client; one is created lazily otherwise (reading
        ``OPENAI_API_KEY`` from the environment).
    """

    def __init__(self, *, model: str = DEFAULT_MODEL, client: OpenAI | None = None) -> None:
        self._model = model
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = _create_client()
        return self._client

    def classify(self, text: str, context: ClassificationContext) -> Classification:
        instructions = prompting.build_system_instructions()
        user_content = prompting.build_prompt(text, context)
        text_cfg: ResponseTextConfigParam = {"format": prompting.build_response_format()}
        client = self._get_client()

        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = client.responses.create(
                    model=self._model,
                    instructions=instructions,
                    input=user_content,
                    text=text_cfg,
                )
                raw = _response_text(resp)
            except ClassificationError:
                raise
            except Exception as e:  # noqa: BLE001
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                    _logger.error(
                        "classifier:call_failed_terminal attempt=%d latency_ms=%.2f error=%s",
                        attempt,
                        dt_ms,
                        e.__class__.__name__,
                    )
                    raise ClassificationError(
                        "classification call failed", detail=str(e)
                    ) from e
                _logger.warning(
                    "classifier:call_retry attempt=%d latency_ms=%.2f error=%s",
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                _sleep_backoff(attempt)
                attempt += 1
                continue

            try:
                extraction = parse_extraction(raw)
            except ClassificationError as e:
                _logger.error("classifier:parse_failed error=%s raw=%s", e.message, raw)
                raise
            _logger.debug("classifier:raw_response raw=%s", raw)
            _logger.info(
                "classifier:done is_transaction=%s follow_up=%s latency_ms=%.2f",
                extraction.is_transaction,
                extraction.is_follow_up,
                (time.perf_counter() - t0) * 1000.0,
            )
            return Classification(extraction=extraction, raw_response=raw)


__all__ = [
    "Classification",
    "Classifier",
    "OpenAIClassifier",
    "parse_extraction",
]
