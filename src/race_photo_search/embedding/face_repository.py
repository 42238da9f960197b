"""CRUD operations for face embeddings in DuckDB."""

import math
import uuid
from collections.abc import Sequence

import duckdb
import numpy as np

from race_photo_search.config import FACE_EMBEDDING_DIMS
from race_photo_search.db import transaction
from race_photo_search.errors import EmbeddingDimensionError, ValidationError
from race_photo_search.models import BoundingBox, DetectedFace, FaceEmbedding


def validate_embedding(vector: Sequence[float] | np.ndarray) -> np.ndarray:
    """Return the vector as float32, rejecting bad dimensions and values."""
    arr = np.asarray(vector, dtype=np.float32).flatten()
    if arr.shape[0] not in FACE_EMBEDDING_DIMS:
        raise EmbeddingDimensionError(arr.shape[0], FACE_EMBEDDING_DIMS)
    if not np.all(np.isfinite(arr)):
        raise ValidationError("Embedding contains non-finite values")
    if not np.any(arr):
        raise ValidationError("Embedding is a zero vector")
    return arr


def vector_column(dim: int) -> str:
    """Name of the column holding vectors of the given dimension."""
    if dim not in FACE_EMBEDDING_DIMS:
        raise EmbeddingDimensionError(dim, FACE_EMBEDDING_DIMS)
    return f"embedding_{dim}"


def insert_face_embeddings(
    conn: duckdb.DuckDBPyConnection,
    faces: list[FaceEmbedding],
) -> None:
    """Batch insert face embeddings. Skips existing face ids."""
    for face in faces:
        vec = validate_embedding(face.embedding)
        column = vector_column(vec.shape[0])
        conn.execute(
            f"""
            INSERT INTO face_embeddings
            (face_id, photo_id, model_name, dim, {column},
             bbox_x, bbox_y, bbox_width, bbox_height, det_score)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (face_id) DO NOTHING
            """,
            [
                face.face_id,
                face.photo_id,
                face.model_name,
                vec.shape[0],
                vec.tolist(),
                face.bbox.x,
                face.bbox.y,
                face.bbox.width,
                face.bbox.height,
                face.det_score,
            ],
        )


def faces_from_detections(
    photo_id: int, model_name: str, detections: list[DetectedFace]
) -> list[FaceEmbedding]:
    """Give detector output an identity and owning photo."""
    return [
        FaceEmbedding(
            face_id=str(uuid.uuid4()),
            photo_id=photo_id,
            model_name=model_name,
            bbox=det.bbox,
            det_score=det.det_score,
            embedding=validate_embedding(det.embedding),
        )
        for det in detections
    ]


def replace_photo_faces(
    conn: duckdb.DuckDBPyConnection,
    photo_id: int,
    model_name: str,
    faces: list[FaceEmbedding],
) -> None:
    """Swap a photo's faces for one model and mark the photo scanned."""
    with transaction(conn):
        conn.execute(
            "DELETE FROM face_embeddings WHERE photo_id = ? AND model_name = ?",
            [photo_id, model_name],
        )
        insert_face_embeddings(conn, faces)
        mark_photo_scanned(conn, photo_id, model_name, len(faces))


def get_faces_for_photo(
    conn: duckdb.DuckDBPyConnection,
    photo_id: int,
) -> list[FaceEmbedding]:
    """Return all face embeddings stored for a photo, best detection first."""
    rows = conn.execute(
        """
        SELECT face_id, photo_id, model_name, dim, embedding_128, embedding_512,
               bbox_x, bbox_y, bbox_width, bbox_height, det_score, created_at
        FROM face_embeddings
        WHERE photo_id = ?
        ORDER BY det_score DESC, face_id
        """,
        [photo_id],
    ).fetchall()
    return [_row_to_face_embedding(row) for row in rows]


def delete_faces_for_photo(conn: duckdb.DuckDBPyConnection, photo_id: int) -> None:
    conn.execute("DELETE FROM face_embeddings WHERE photo_id = ?", [photo_id])
    conn.execute("DELETE FROM face_scanned_photos WHERE photo_id = ?", [photo_id])


def count_event_embeddings(conn: duckdb.DuckDBPyConnection, event_id: str) -> int:
    """Count face embeddings on processed photos of an event."""
    row = conn.execute(
        """
        SELECT COUNT(*)
        FROM face_embeddings f
        JOIN photos p ON p.id = f.photo_id
        WHERE p.event_id = ? AND p.status = 'processed'
        """,
        [event_id],
    ).fetchone()
    return row[0] if row else 0


def get_event_embedding_dims(conn: duckdb.DuckDBPyConnection, event_id: str) -> set[int]:
    """Return the vector dimensions present for an event's processed photos."""
    rows = conn.execute(
        """
        SELECT DISTINCT f.dim
        FROM face_embeddings f
        JOIN photos p ON p.id = f.photo_id
        WHERE p.event_id = ? AND p.status = 'processed'
        """,
        [event_id],
    ).fetchall()
    return {row[0] for row in rows}


def search_event_faces(
    conn: duckdb.DuckDBPyConnection,
    event_id: str,
    query_embedding: np.ndarray,
    threshold: float,
    limit: int,
) -> list[tuple[int, str, float, BoundingBox]]:
    """Closest face per photo within ``threshold`` cosine distance.

    Returns (photo_id, face_id, distance, bbox) ordered by distance, then
    photo id.
    """
    query_vec = validate_embedding(query_embedding)
    dim = query_vec.shape[0]
    column = vector_column(dim)
    rows = conn.execute(
        f"""
        WITH scored AS (
            SELECT f.photo_id, f.face_id,
                   f.bbox_x, f.bbox_y, f.bbox_width, f.bbox_height,
                   1 - list_cosine_similarity(f.{column}, ?::FLOAT[{dim}]) AS distance
            FROM face_embeddings f
            JOIN photos p ON p.id = f.photo_id
            WHERE p.event_id = ? AND p.status = 'processed' AND f.dim = ?
        ),
        ranked AS (
            SELECT *,
                   row_number() OVER (
                       PARTITION BY photo_id ORDER BY distance, face_id
                   ) AS face_rank
            FROM scored
            WHERE distance < ?
        )
        SELECT photo_id, face_id, distance, bbox_x, bbox_y, bbox_width, bbox_height
        FROM ranked
        WHERE face_rank = 1
        ORDER BY distance, photo_id
        LIMIT ?
        """,
        [query_vec.tolist(), event_id, dim, threshold, limit],
    ).fetchall()
    results = []
    for row in rows:
        distance = float(row[2])
        if math.isnan(distance):
            continue
        results.append((row[0], row[1], distance, BoundingBox(row[3], row[4], row[5], row[6])))
    return results


def mark_photo_scanned(
    conn: duckdb.DuckDBPyConnection,
    photo_id: int,
    model_name: str,
    face_count: int,
) -> None:
    """Record that a photo has been scanned for faces."""
    conn.execute(
        """
        INSERT INTO face_scanned_photos (photo_id, model_name, face_count)
        VALUES (?, ?, ?)
        ON CONFLICT (photo_id, model_name) DO UPDATE SET
            face_count = EXCLUDED.face_count,
            scanned_at = now()
        """,
        [photo_id, model_name, face_count],
    )


def get_unscanned_photo_ids(
    conn: duckdb.DuckDBPyConnection,
    event_id: str,
    model_name: str,
    limit: int,
) -> list[int]:
    """Return processed photo ids of an event not yet scanned by the model."""
    rows = conn.execute(
        """
        SELECT p.id
        FROM photos p
        LEFT JOIN face_scanned_photos s
            ON s.photo_id = p.id AND s.model_name = ?
        WHERE p.event_id = ? AND p.status = 'processed' AND s.photo_id IS NULL
        ORDER BY p.id
        LIMIT ?
        """,
        [model_name, event_id, limit],
    ).fetchall()
    return [row[0] for row in rows]


def get_face_stats(
    conn: duckdb.DuckDBPyConnection,
    event_id: str,
    model_name: str,
) -> tuple[int, int, int]:
    """Return (processed_photos, scanned_photos, faces) for an event and model."""
    total_row = conn.execute(
        "SELECT COUNT(*) FROM photos WHERE event_id = ? AND status = 'processed'",
        [event_id],
    ).fetchone()
    total = total_row[0] if total_row else 0

    scanned_row = conn.execute(
        """
        SELECT COUNT(*)
        FROM face_scanned_photos s
        JOIN photos p ON p.id = s.photo_id
        WHERE p.event_id = ? AND s.model_name = ?
        """,
        [event_id, model_name],
    ).fetchone()
    scanned = scanned_row[0] if scanned_row else 0

    faces_row = conn.execute(
        """
        SELECT COUNT(*)
        FROM face_embeddings f
        JOIN photos p ON p.id = f.photo_id
        WHERE p.event_id = ? AND f.model_name = ?
        """,
        [event_id, model_name],
    ).fetchone()
    faces = faces_row[0] if faces_row else 0

    return total, scanned, faces


class FaceEmbeddingStore:
    """Connection-bound facade over the functions above."""

    def __init__(self, conn: duckdb.DuckDBPyConnection, model_name: str) -> None:
        self.conn = conn
        self.model_name = model_name

    def replace(self, photo_id: int, detections: list[DetectedFace]) -> list[FaceEmbedding]:
        faces = faces_from_detections(photo_id, self.model_name, detections)
        replace_photo_faces(self.conn, photo_id, self.model_name, faces)
        return faces

    def faces_for(self, photo_id: int) -> list[FaceEmbedding]:
        return get_faces_for_photo(self.conn, photo_id)

    def unscanned(self, event_id: str, limit: int) -> list[int]:
        return get_unscanned_photo_ids(self.conn, event_id, self.model_name, limit)

    def stats(self, event_id: str) -> tuple[int, int, int]:
        return get_face_stats(self.conn, event_id, self.model_name)


def _row_to_face_embedding(row: tuple) -> FaceEmbedding:
    """Convert a database row to a FaceEmbedding object."""
    dim = row[3]
    raw = row[4] if dim == 128 else row[5]
    return FaceEmbedding(
        face_id=row[0],
        photo_id=row[1],
        model_name=row[2],
        bbox=BoundingBox(row[6], row[7], row[8], row[9]),
        det_score=row[10],
        embedding=np.array(raw, dtype=np.float32),
        created_at=row[11],
    )
