"""Resolution-independent crop regions where bibs are usually worn."""

import logging
import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from PIL import Image

from race_photo_search.config import MIN_REGION_SIZE
from race_photo_search.errors import RegionError
from race_photo_search.models import BoundingBox
from race_photo_search.ocr.preprocess import Variant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Region:
    """A named sub-rectangle expressed as fractions of the image size."""

    name: str
    left: float
    top: float
    width: float
    height: float

    def to_pixels(self, size: tuple[int, int]) -> tuple[int, int, int, int]:
        """Return (left, top, right, bottom) in pixels for an image of ``size``."""
        w, h = size
        left = math.floor(w * self.left)
        top = math.floor(h * self.top)
        return left, top, left + math.floor(w * self.width), top + math.floor(h * self.height)


CENTER_CHEST = Region("center_chest", 0.30, 0.15, 0.40, 0.35)
LEFT_CHEST = Region("left_chest", 0.15, 0.15, 0.30, 0.35)
RIGHT_CHEST = Region("right_chest", 0.55, 0.15, 0.30, 0.35)
UPPER_BODY = Region("upper_body", 0.20, 0.10, 0.60, 0.50)

DEFAULT_REGIONS = (CENTER_CHEST, LEFT_CHEST, RIGHT_CHEST, UPPER_BODY)


@dataclass
class RegionCrop:
    """A region cut out of one variant."""

    region: str
    image: Image.Image
    offset_x: int
    offset_y: int

    def to_variant_box(self, box: BoundingBox) -> BoundingBox:
        """Translate a box from crop pixels to variant pixels."""
        return BoundingBox(
            x=box.x + self.offset_x, y=box.y + self.offset_y, width=box.width, height=box.height
        )


def crop_region(variant: Variant, region: Region, min_size: int = MIN_REGION_SIZE) -> RegionCrop:
    """Crop one region from a variant.

    Raises:
        RegionError: if the crop would be smaller than ``min_size`` pixels.
    """
    left, top, right, bottom = region.to_pixels(variant.image.size)
    if right - left < min_size or bottom - top < min_size:
        raise RegionError(
            f"Region {region.name} is {right - left}x{bottom - top}px in "
            f"variant {variant.name}, below the {min_size}px minimum"
        )
    return RegionCrop(
        region=region.name,
        image=variant.image.crop((left, top, right, bottom)),
        offset_x=left,
        offset_y=top,
    )


def crop_regions(
    variant: Variant,
    regions: Sequence[Region] = DEFAULT_REGIONS,
    min_size: int = MIN_REGION_SIZE,
) -> Iterator[RegionCrop]:
    """Yield every valid region crop of a variant, skipping invalid ones."""
    for region in regions:
        try:
            yield crop_region(variant, region, min_size)
        except RegionError as exc:
            logger.warning("Skipping region: %s", exc)
