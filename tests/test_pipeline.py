"""Tests for the end-to-end bib detector."""

from conftest import FakeEngine, image_bytes, token

from race_photo_search.ocr.adapter import TextRecognitionAdapter
from race_photo_search.ocr.pipeline import BibDetector


def test_detects_bib_in_fast_mode():
    engine = FakeEngine("ocr_space", texts=[token("1234", 95), token("FINISH", 95)])
    detector = BibDetector(TextRecognitionAdapter([engine]), fast=True)

    candidates = detector.detect(image_bytes((400, 300)))

    assert [c.bib_number for c in candidates] == ["1234"]
    assert candidates[0].confidence == 0.95
    assert candidates[0].backend == "ocr_space"
    assert candidates[0].variant == "standard"


def test_every_variant_and_region_is_tried():
    engine = FakeEngine("tesseract", texts=[])
    detector = BibDetector(TextRecognitionAdapter([engine]))

    assert detector.detect(image_bytes((400, 300))) == []
    # 10 variants x 4 regions x 2 passes
    assert len(engine.calls) == 80


def test_undecodable_image_yields_nothing():
    engine = FakeEngine("tesseract", texts=[token("1234", 99)])
    assert BibDetector(TextRecognitionAdapter([engine])).detect(b"\x00garbage") == []
    assert engine.calls == []


def test_tiny_image_skips_regions():
    engine = FakeEngine("tesseract", texts=[token("1234", 99)])
    detector = BibDetector(TextRecognitionAdapter([engine]), fast=True)
    assert detector.detect(image_bytes((12, 12))) == []
    assert engine.calls == []


def test_low_confidence_tokens_rejected():
    engine = FakeEngine("tesseract", texts=[token("1234", 65)], confidence_floor=0.7)
    detector = BibDetector(TextRecognitionAdapter([engine]), fast=True)
    assert detector.detect(image_bytes((400, 300))) == []
