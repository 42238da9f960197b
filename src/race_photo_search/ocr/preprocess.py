"""Deterministic image variants for bib recognition.

Bib text is small, skewed and inconsistently lit, so instead of a learned
detector each photo is turned into a fixed set of variants: a few photometric
profiles of the upright image plus rotated copies of the standard profile.
Every variant can map boxes in its own pixel space back to the original photo.
"""

import logging
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageFilter, ImageOps

from race_photo_search.config import ROTATION_ANGLES
from race_photo_search.models import BoundingBox

logger = logging.getLogger(__name__)

STANDARD = "standard"
LOW_LIGHT = "low_light"
NOISY = "noisy"
UNEVEN_LIGHT = "uneven_light"


@dataclass
class Variant:
    """One preprocessed version of a photo."""

    name: str
    image: Image.Image
    angle: float  # counter-clockwise degrees applied to the original
    source_size: tuple[int, int]

    def to_original_point(self, x: float, y: float) -> tuple[float, float]:
        """Map a point in variant pixels to original photo pixels."""
        if self.angle == 0:
            return x, y
        src_w, src_h = self.source_size
        var_w, var_h = self.image.size
        theta = math.radians(self.angle)
        cos_t, sin_t = math.cos(theta), math.sin(theta)
        dx, dy = x - var_w / 2, y - var_h / 2
        return cos_t * dx - sin_t * dy + src_w / 2, sin_t * dx + cos_t * dy + src_h / 2

    def from_original_point(self, x: float, y: float) -> tuple[float, float]:
        """Map a point in original photo pixels to variant pixels."""
        if self.angle == 0:
            return x, y
        src_w, src_h = self.source_size
        var_w, var_h = self.image.size
        theta = math.radians(self.angle)
        cos_t, sin_t = math.cos(theta), math.sin(theta)
        dx, dy = x - src_w / 2, y - src_h / 2
        return cos_t * dx + sin_t * dy + var_w / 2, -sin_t * dx + cos_t * dy + var_h / 2

    def to_original_box(self, box: BoundingBox) -> BoundingBox:
        """Envelope of the inverse-rotated box, clamped to the original photo."""
        corners = [
            self.to_original_point(x, y)
            for x in (box.x, box.x2)
            for y in (box.y, box.y2)
        ]
        src_w, src_h = self.source_size
        x1 = min(max(min(c[0] for c in corners), 0.0), src_w)
        y1 = min(max(min(c[1] for c in corners), 0.0), src_h)
        x2 = min(max(max(c[0] for c in corners), 0.0), src_w)
        y2 = min(max(max(c[1] for c in corners), 0.0), src_h)
        return BoundingBox(x=x1, y=y1, width=x2 - x1, height=y2 - y1)


def load_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes into an upright RGB image.

    Raises:
        PIL.UnidentifiedImageError: if the bytes are not a supported image.
    """
    img = Image.open(BytesIO(image_bytes))
    img = ImageOps.exif_transpose(img)
    return img.convert("RGB")


def encode_png(image: Image.Image) -> bytes:
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def _linear(img: Image.Image, gain: float, offset: float) -> Image.Image:
    return img.point(lambda p: max(0, min(255, int(p * gain + offset))))


def _binarize(img: Image.Image, threshold: int) -> Image.Image:
    return img.point(lambda p: 255 if p > threshold else 0)


def standard_profile(img: Image.Image) -> Image.Image:
    """Grayscale, normalized, sharpened and binarized."""
    gray = ImageOps.autocontrast(ImageOps.grayscale(img), cutoff=1)
    gray = gray.filter(ImageFilter.UnsharpMask(radius=1.5, percent=150, threshold=0))
    return _binarize(gray, 128)


def low_light_profile(img: Image.Image) -> Image.Image:
    """Strong linear contrast stretch for dim or washed-out photos."""
    gray = ImageOps.autocontrast(ImageOps.grayscale(img), cutoff=1)
    gray = _linear(gray, 1.5, -64)
    gray = gray.filter(ImageFilter.UnsharpMask(radius=2, percent=150, threshold=0))
    return _binarize(gray, 100)


def noisy_profile(img: Image.Image) -> Image.Image:
    """Median denoise before normalizing."""
    gray = ImageOps.grayscale(img).filter(ImageFilter.MedianFilter(3))
    gray = ImageOps.autocontrast(gray, cutoff=1)
    gray = gray.filter(ImageFilter.UnsharpMask(radius=2, percent=150, threshold=0))
    return _binarize(gray, 128)


def uneven_light_profile(img: Image.Image) -> Image.Image:
    """Mild contrast boost without binarization, for uneven lighting."""
    gray = ImageOps.autocontrast(ImageOps.grayscale(img), cutoff=1)
    gray = gray.filter(ImageFilter.UnsharpMask(radius=2, percent=150, threshold=0))
    return _linear(gray, 1.2, -25.6)


PROFILES: dict[str, Callable[[Image.Image], Image.Image]] = {
    STANDARD: standard_profile,
    LOW_LIGHT: low_light_profile,
    NOISY: noisy_profile,
    UNEVEN_LIGHT: uneven_light_profile,
}


def rotate(img: Image.Image, angle: float) -> Image.Image:
    """Rotate counter-clockwise around the centre, growing the canvas with white."""
    return img.rotate(angle, resample=Image.Resampling.BICUBIC, expand=True, fillcolor="white")


def build_variants(
    image_bytes: bytes,
    angles: Sequence[float] = ROTATION_ANGLES,
    fast: bool = False,
) -> list[Variant]:
    """Produce the preprocessed variants of a photo.

    Args:
        image_bytes: Raw encoded image.
        angles: Rotation angles applied to the standard profile.
        fast: Only build the upright standard variant.

    Returns:
        Variants in a fixed order: photometric profiles first, then rotations.
    """
    image = load_image(image_bytes)
    if fast:
        return [Variant(STANDARD, standard_profile(image), 0.0, image.size)]

    variants = [
        Variant(name, profile(image), 0.0, image.size) for name, profile in PROFILES.items()
    ]
    for angle in angles:
        if angle == 0:
            continue
        try:
            rotated = standard_profile(rotate(image, angle))
        except (ValueError, OSError):
            logger.warning("Rotation by %s degrees failed, skipping", angle, exc_info=True)
            continue
        variants.append(Variant(f"{STANDARD}@{angle:+g}", rotated, float(angle), image.size))
    return variants
