"""Shared test fixtures."""

import time
from io import BytesIO

import duckdb
import numpy as np
import pytest
from PIL import Image

from race_photo_search.manager.repository import insert_photo
from race_photo_search.manager.runner_repository import insert_runners
from race_photo_search.manager.schema import ensure_schema
from race_photo_search.models import BoundingBox, Photo, PhotoStatus, Runner
from race_photo_search.ocr.engines import RecognizedText


@pytest.fixture
def db_conn():
    """In-memory DuckDB connection with schema initialized."""
    conn = duckdb.connect(":memory:")
    ensure_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def sample_photo() -> Photo:
    """A single processed Photo fixture."""
    return Photo(
        id=None,
        event_id="city-marathon-2024",
        image_url="https://cdn.example.com/city-marathon-2024/finish_001.jpg",
        relative_path="city-marathon-2024/finish_001.jpg",
        original_filename="finish_001.jpg",
        width=1024,
        height=768,
        file_size_bytes=102400,
        status=PhotoStatus.PROCESSED,
        created_at=None,
    )


def make_photo(
    name: str,
    event_id: str = "city-marathon-2024",
    status: PhotoStatus = PhotoStatus.PROCESSED,
    relative_path: str | None = None,
    image_url: str | None = None,
) -> Photo:
    """Helper to create a Photo with unique fields."""
    return Photo(
        id=None,
        event_id=event_id,
        image_url=image_url,
        relative_path=relative_path if relative_path is not None else f"{event_id}/{name}.jpg",
        original_filename=f"{name}.jpg",
        width=1024,
        height=768,
        file_size_bytes=50000,
        status=status,
        created_at=None,
    )


def add_photo(conn, name: str, **kwargs) -> int:
    return insert_photo(conn, make_photo(name, **kwargs))


def make_runner(
    bib_number: str,
    full_name: str | None = None,
    event_id: str = "city-marathon-2024",
) -> Runner:
    return Runner(
        id=None,
        event_id=event_id,
        bib_number=bib_number,
        full_name=full_name or f"Runner {bib_number}",
        category=None,
        team=None,
        auto_detected=False,
        created_at=None,
    )


def add_runners(conn, *bib_numbers: str, event_id: str = "city-marathon-2024") -> None:
    insert_runners(conn, [make_runner(bib, event_id=event_id) for bib in bib_numbers])


def image_bytes(
    size: tuple[int, int] = (200, 160), color: str = "white", fmt: str = "PNG"
) -> bytes:
    """Encode a solid-colour image."""
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def token(text: str, confidence: float, box: tuple[float, float, float, float] = (1, 2, 30, 12)):
    return RecognizedText(text=text, confidence=confidence, bbox=BoundingBox(*box))


def unit_vector(dim: int, *weights: float) -> list[float]:
    """A normalized vector whose leading components are ``weights``."""
    vec = np.zeros(dim, dtype=np.float32)
    vec[: len(weights)] = weights
    return (vec / np.linalg.norm(vec)).tolist()


class FakeEngine:
    """Recognition engine returning canned tokens, optionally per hint pass."""

    def __init__(
        self,
        name: str = "fake",
        texts=None,
        by_pass: dict | None = None,
        error: Exception | None = None,
        confidence_floor: float = 0.6,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.texts = list(texts or [])
        self.by_pass = by_pass
        self.error = error
        self.confidence_floor = confidence_floor
        self.delay = delay
        self.calls: list[str | None] = []

    def recognize(self, image_bytes, hints=None):
        self.calls.append(hints.name if hints else None)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.by_pass is not None:
            return list(self.by_pass.get(hints.name if hints else None, []))
        return list(self.texts)
