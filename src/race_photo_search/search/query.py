"""Face similarity search against DuckDB."""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

import duckdb
import numpy as np

from race_photo_search.config import (
    FACE_EMBEDDING_DIMS,
    FACE_DISTANCE_THRESHOLD,
    FACE_SEARCH_MAX_RESULTS,
)
from race_photo_search.embedding.face_repository import (
    count_event_embeddings,
    get_event_embedding_dims,
    search_event_faces,
    validate_embedding,
)
from race_photo_search.errors import EmbeddingDimensionError, ValidationError
from race_photo_search.models import BoundingBox

logger = logging.getLogger(__name__)

NO_FACE_DATA_MESSAGE = (
    "No face data available for this event. Photos may still be processing."
)


def similarity_percent(distance: float, threshold: float) -> int:
    """Map a distance below ``threshold`` to a 0-100 score (100 = identical)."""
    score = (1 - distance / threshold) * 100
    return round(min(100.0, max(0.0, score)))


@dataclass
class FaceSearchRequest:
    event_id: str
    embedding: Sequence[float] | np.ndarray
    limit: int | None = None


@dataclass
class FaceMatch:
    photo_id: int
    face_id: str
    distance: float
    similarity: int
    bbox: BoundingBox

    def to_dict(self) -> dict:
        return {
            "photoId": self.photo_id,
            "similarity": self.similarity,
            "distance": self.distance,
            "bbox": self.bbox.to_dict(),
        }


@dataclass
class FaceSearchResponse:
    photos: list[FaceMatch] = field(default_factory=list)
    message: str = ""
    searched: int = 0

    @property
    def total(self) -> int:
        return len(self.photos)

    def to_dict(self) -> dict:
        return {
            "photos": [match.to_dict() for match in self.photos],
            "total": self.total,
            "message": self.message,
        }


class FaceSearchEngine:
    """Rank an event's photos by face similarity to a query embedding.

    Read only: searches run concurrently with ingestion without locking.
    """

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        threshold: float = FACE_DISTANCE_THRESHOLD,
        max_results: int = FACE_SEARCH_MAX_RESULTS,
    ) -> None:
        if not 0 < threshold <= 2:
            raise ValueError(f"threshold must be in (0, 2], got {threshold}")
        self.conn = conn
        self.threshold = threshold
        self.max_results = max_results

    def search(self, request: FaceSearchRequest) -> FaceSearchResponse:
        """Return the best-matching photos, closest first.

        Raises:
            EmbeddingDimensionError: the query is not 128 or 512 floats, or the
                event only stores vectors of the other dimension.
            ValidationError: the event id is empty or the vector is unusable.
        """
        if not request.event_id:
            raise ValidationError("event_id is required")
        query = validate_embedding(request.embedding)
        dim = query.shape[0]

        searched = count_event_embeddings(self.conn, request.event_id)
        if searched == 0:
            logger.info("Event %s: no face embeddings stored", request.event_id)
            return FaceSearchResponse(message=NO_FACE_DATA_MESSAGE)

        stored_dims = get_event_embedding_dims(self.conn, request.event_id)
        if dim not in stored_dims:
            raise EmbeddingDimensionError(dim, tuple(sorted(stored_dims)) or FACE_EMBEDDING_DIMS)

        limit = self.max_results
        if request.limit is not None:
            limit = max(0, min(request.limit, self.max_results))

        rows = search_event_faces(self.conn, request.event_id, query, self.threshold, limit)
        matches = [
            FaceMatch(
                photo_id=photo_id,
                face_id=face_id,
                distance=distance,
                similarity=similarity_percent(distance, self.threshold),
                bbox=bbox,
            )
            for photo_id, face_id, distance, bbox in rows
        ]
        if matches:
            message = f"Found {len(matches)} matching photo(s)"
        else:
            message = "No matching faces found"
        logger.info(
            "Event %s: face search over %d embedding(s) returned %d photo(s)",
            request.event_id,
            searched,
            len(matches),
        )
        return FaceSearchResponse(photos=matches, message=message, searched=searched)
