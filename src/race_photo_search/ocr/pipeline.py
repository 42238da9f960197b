"""Bib detection: variants x regions x recognition, aggregated into candidates."""

import logging
from collections.abc import Sequence

from race_photo_search.config import MIN_REGION_SIZE, ROTATION_ANGLES
from race_photo_search.models import DetectionCandidate
from race_photo_search.ocr.adapter import TextRecognitionAdapter
from race_photo_search.ocr.aggregator import DetectionAggregator
from race_photo_search.ocr.preprocess import build_variants, encode_png
from race_photo_search.ocr.regions import DEFAULT_REGIONS, Region, crop_regions

logger = logging.getLogger(__name__)


class BibDetector:
    """Extract ranked bib candidates from a photo.

    Never raises for bad input: an undecodable image, a failed region or a
    silent backend all degrade to fewer (possibly zero) candidates.
    """

    def __init__(
        self,
        adapter: TextRecognitionAdapter,
        regions: Sequence[Region] = DEFAULT_REGIONS,
        angles: Sequence[float] = ROTATION_ANGLES,
        fast: bool = False,
        min_region_size: int = MIN_REGION_SIZE,
    ) -> None:
        self.adapter = adapter
        self.regions = tuple(regions)
        self.angles = tuple(angles)
        self.fast = fast
        self.min_region_size = min_region_size

    def detect(self, image_bytes: bytes) -> list[DetectionCandidate]:
        try:
            variants = build_variants(image_bytes, angles=self.angles, fast=self.fast)
        except (OSError, ValueError) as exc:
            logger.warning("Cannot decode image for bib detection: %s", exc)
            return []

        aggregator = DetectionAggregator()
        for variant in variants:
            for crop in crop_regions(variant, self.regions, self.min_region_size):
                try:
                    result = self.adapter.recognize(encode_png(crop.image))
                    aggregator.add_result(result, variant, crop)
                except (OSError, ValueError):
                    logger.warning(
                        "Region %s of variant %s failed, skipping",
                        crop.region,
                        variant.name,
                        exc_info=True,
                    )

        candidates = aggregator.candidates()
        if candidates:
            logger.info(
                "Found %d bib candidate(s): %s",
                len(candidates),
                ", ".join(f"{c.bib_number}@{c.confidence:.2f}" for c in candidates),
            )
        else:
            logger.info(
                "No bib candidates (%d variants, %d tokens rejected)",
                len(variants),
                aggregator.rejected,
            )
        return candidates
