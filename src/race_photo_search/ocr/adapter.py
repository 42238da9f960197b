"""Ordered fallback over text recognition engines."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from race_photo_search.config import RECOGNITION_TIMEOUT
from race_photo_search.ocr.engines import (
    ALNUM,
    DIGITS,
    RecognitionHints,
    RecognizedText,
    TextRecognitionEngine,
)
from race_photo_search.ocr.timeout import call_with_timeout

logger = logging.getLogger(__name__)


@dataclass
class RecognitionResult:
    """Tokens from the engine that answered, or an empty result."""

    backend: str | None
    texts: list[RecognizedText] = field(default_factory=list)
    confidence_floor: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.texts


class TextRecognitionAdapter:
    """Try engines in priority order until one returns tokens.

    This is a fallback chain, not an ensemble: the first engine with at least
    one token wins. Each invocation runs one pass per hint set and merges the
    passes by text, keeping the most confident token. An invocation that
    raises or exceeds ``timeout`` counts as empty and the next engine is tried.
    """

    def __init__(
        self,
        engines: Sequence[TextRecognitionEngine],
        timeout: float = RECOGNITION_TIMEOUT,
        passes: Sequence[RecognitionHints] = (DIGITS, ALNUM),
    ) -> None:
        if not engines:
            raise ValueError("At least one recognition engine is required")
        self.engines = list(engines)
        self.timeout = timeout
        self.passes = tuple(passes)

    def recognize(self, image_bytes: bytes) -> RecognitionResult:
        for engine in self.engines:
            texts = self._invoke(engine, image_bytes)
            if texts:
                return RecognitionResult(engine.name, texts, engine.confidence_floor)
            logger.debug("Engine %s returned no tokens, trying next", engine.name)
        return RecognitionResult(None)

    def _invoke(self, engine: TextRecognitionEngine, image_bytes: bytes) -> list[RecognizedText]:
        try:
            return call_with_timeout(self._run_passes, self.timeout, engine, image_bytes)
        except TimeoutError:
            logger.warning("Engine %s timed out after %.1fs", engine.name, self.timeout)
        except Exception as exc:
            logger.warning("Engine %s failed: %s", engine.name, exc)
        return []

    def _run_passes(
        self, engine: TextRecognitionEngine, image_bytes: bytes
    ) -> list[RecognizedText]:
        merged: dict[str, RecognizedText] = {}
        for hints in self.passes:
            for item in engine.recognize(image_bytes, hints):
                key = item.text.strip()
                if not key:
                    continue
                current = merged.get(key)
                if current is None or item.confidence > current.confidence:
                    merged[key] = item
        return list(merged.values())
