"""Bib grammar validation and cross-source deduplication of detections."""

import logging
import re

from race_photo_search.errors import InvalidBibError
from race_photo_search.models import BoundingBox, DetectionCandidate
from race_photo_search.ocr.adapter import RecognitionResult
from race_photo_search.ocr.engines import RecognizedText
from race_photo_search.ocr.preprocess import Variant
from race_photo_search.ocr.regions import RegionCrop

logger = logging.getLogger(__name__)

BIB_PATTERN = re.compile(r"[A-Z]{0,3}\d{1,5}")
MIN_NUMERIC_BIB = 1
MAX_NUMERIC_BIB = 99999

# Letters that OCR confuses with digits; only applied after the first digit so
# that prefixes such as "S" or "VIP" survive.
_DIGIT_CONFUSABLES = str.maketrans({"O": "0", "I": "1", "S": "5", "Z": "2"})
_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def normalize_bib_text(text: str) -> str:
    """Uppercase, strip separators and fix letter/digit confusions in the numeric part."""
    cleaned = _NON_ALNUM.sub("", text.upper())
    match = re.search(r"\d", cleaned)
    if match is None:
        return cleaned
    start = match.start()
    return cleaned[:start] + cleaned[start:].translate(_DIGIT_CONFUSABLES)


def is_valid_bib_number(bib: str) -> bool:
    """Check the bib grammar; pure numbers must also lie in [1, 99999]."""
    if not BIB_PATTERN.fullmatch(bib):
        return False
    if bib.isdigit():
        return MIN_NUMERIC_BIB <= int(bib) <= MAX_NUMERIC_BIB
    return True


def validate_bib_number(text: str) -> str:
    """Normalize and validate user-supplied bib text.

    Raises:
        InvalidBibError: if the normalized text is not a valid bib number.
    """
    bib = normalize_bib_text(text)
    if not is_valid_bib_number(bib):
        raise InvalidBibError(f"Invalid bib number: {text!r}")
    return bib


class DetectionAggregator:
    """Collect tokens from every (variant, region, backend) and keep the best per bib."""

    def __init__(self) -> None:
        self._best: dict[str, DetectionCandidate] = {}
        self.accepted = 0
        self.rejected = 0

    def add(
        self,
        text: RecognizedText,
        variant: Variant,
        crop: RegionCrop,
        backend: str,
        floor: float = 0.0,
    ) -> DetectionCandidate | None:
        """Validate one token and merge it; returns the candidate if it passed."""
        bib = normalize_bib_text(text.text)
        confidence = min(max(text.confidence / 100.0, 0.0), 1.0)
        if not is_valid_bib_number(bib) or confidence < floor:
            self.rejected += 1
            return None

        bbox: BoundingBox = variant.to_original_box(crop.to_variant_box(text.bbox))
        candidate = DetectionCandidate(
            bib_number=bib,
            confidence=confidence,
            bbox=bbox,
            region=crop.region,
            variant=variant.name,
            backend=backend,
        )
        self.accepted += 1
        existing = self._best.get(bib)
        if existing is None or candidate.confidence > existing.confidence:
            self._best[bib] = candidate
        return candidate

    def add_result(self, result: RecognitionResult, variant: Variant, crop: RegionCrop) -> int:
        """Merge every token of an adapter result; returns how many passed."""
        if result.backend is None:
            return 0
        passed = 0
        for text in result.texts:
            if self.add(text, variant, crop, result.backend, result.confidence_floor):
                passed += 1
        return passed

    def candidates(self) -> list[DetectionCandidate]:
        """Deduplicated candidates, most confident first (ties keep first-seen order)."""
        return sorted(self._best.values(), key=lambda c: c.confidence, reverse=True)
