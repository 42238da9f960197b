"""Populate the face embedding store from stored photos."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import duckdb
import httpx

from race_photo_search.config import BATCH_LIMIT, DATA_DIR
from race_photo_search.embedding.face_repository import FaceEmbeddingStore
from race_photo_search.errors import ValidationError
from race_photo_search.manager.downloader import load_photo_bytes
from race_photo_search.manager.repository import get_photo
from race_photo_search.models import DetectedFace

logger = logging.getLogger(__name__)


class FaceDetectionModel(Protocol):
    """Anything that turns encoded image bytes into face vectors.

    Implemented by InsightFaceEmbedder; tests pass small fakes.
    """

    model_name: str

    def detect(self, image_bytes: bytes) -> list[DetectedFace]: ...


@dataclass
class IngestReport:
    event_id: str
    photos: int = 0
    faces: int = 0
    errors: int = 0


def ingest_event_faces(
    conn: duckdb.DuckDBPyConnection,
    model: FaceDetectionModel,
    event_id: str,
    limit: int = BATCH_LIMIT,
    data_dir: Path = DATA_DIR,
    on_photo: Callable[[int], None] | None = None,
) -> IngestReport:
    """Detect faces on processed photos not yet scanned by ``model``.

    Any per-photo failure, a storage error included, is counted as an error
    and leaves the photo unscanned, so a later run retries it.
    """
    store = FaceEmbeddingStore(conn, model.model_name)
    photo_ids = store.unscanned(event_id, max(1, min(limit, BATCH_LIMIT)))
    report = IngestReport(event_id=event_id)

    for photo_id in photo_ids:
        photo = get_photo(conn, photo_id)
        try:
            if photo is None:
                raise FileNotFoundError(f"photo {photo_id} disappeared")
            detections = model.detect(load_photo_bytes(photo, data_dir))
            faces = store.replace(photo_id, detections)
        except (OSError, httpx.HTTPError, ValidationError) as exc:
            logger.warning("Photo %s: face ingestion failed: %s", photo_id, exc)
            report.errors += 1
        except duckdb.Error as exc:
            logger.error("Photo %s: failed to store faces: %s", photo_id, exc)
            report.errors += 1
        else:
            report.photos += 1
            report.faces += len(faces)
        if on_photo is not None:
            on_photo(photo_id)

    logger.info(
        "Event %s: scanned %d photo(s), %d face(s), %d error(s)",
        event_id,
        report.photos,
        report.faces,
        report.errors,
    )
    return report
