"""CRUD operations for photo records in DuckDB."""

import duckdb

from race_photo_search.db import transaction
from race_photo_search.models import Photo, PhotoStatus

_PHOTO_COLUMNS = """
    id, event_id, image_url, relative_path, original_filename,
    width, height, file_size_bytes, status, created_at
"""


def insert_photo(conn: duckdb.DuckDBPyConnection, photo: Photo) -> int:
    """Insert a single photo record and return its id."""
    row = conn.execute(
        """
        INSERT INTO photos (
            event_id, image_url, relative_path, original_filename,
            width, height, file_size_bytes, status
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        [
            photo.event_id,
            photo.image_url,
            photo.relative_path,
            photo.original_filename,
            photo.width,
            photo.height,
            photo.file_size_bytes,
            PhotoStatus(photo.status).value,
        ],
    ).fetchone()
    return row[0]


def get_photo(conn: duckdb.DuckDBPyConnection, photo_id: int) -> Photo | None:
    """Look up a single photo by id."""
    result = conn.execute(
        f"SELECT {_PHOTO_COLUMNS} FROM photos WHERE id = ?", [photo_id]
    ).fetchone()
    if result is None:
        return None
    return _row_to_photo(result)


def list_photos(
    conn: duckdb.DuckDBPyConnection,
    event_id: str | None = None,
    status: PhotoStatus | None = None,
) -> list[Photo]:
    """List photos with optional filters."""
    query = f"SELECT {_PHOTO_COLUMNS} FROM photos WHERE 1=1"
    params: list = []
    if event_id is not None:
        query += " AND event_id = ?"
        params.append(event_id)
    if status is not None:
        query += " AND status = ?"
        params.append(PhotoStatus(status).value)
    query += " ORDER BY id"
    rows = conn.execute(query, params).fetchall()
    return [_row_to_photo(row) for row in rows]


def update_photo_status(
    conn: duckdb.DuckDBPyConnection, photo_id: int, status: PhotoStatus
) -> None:
    """Set the processing status of a photo."""
    conn.execute(
        "UPDATE photos SET status = ? WHERE id = ?", [PhotoStatus(status).value, photo_id]
    )


def get_untagged_photos(
    conn: duckdb.DuckDBPyConnection, event_id: str, limit: int
) -> list[Photo]:
    """Return processed photos of an event that carry no tags at all."""
    rows = conn.execute(
        f"""
        SELECT {_PHOTO_COLUMNS}
        FROM photos p
        WHERE p.event_id = ?
            AND p.status = 'processed'
            AND NOT EXISTS (SELECT 1 FROM photo_tags t WHERE t.photo_id = p.id)
        ORDER BY p.id
        LIMIT ?
        """,
        [event_id, limit],
    ).fetchall()
    return [_row_to_photo(row) for row in rows]


def delete_photo(conn: duckdb.DuckDBPyConnection, photo_id: int) -> None:
    """Delete a photo together with its face embeddings and tags."""
    with transaction(conn):
        conn.execute("DELETE FROM face_embeddings WHERE photo_id = ?", [photo_id])
        conn.execute("DELETE FROM face_scanned_photos WHERE photo_id = ?", [photo_id])
        conn.execute("DELETE FROM photo_tags WHERE photo_id = ?", [photo_id])
        conn.execute("DELETE FROM photos WHERE id = ?", [photo_id])


def _row_to_photo(row: tuple) -> Photo:
    """Convert a DB row tuple to Photo.

    Column order matches _PHOTO_COLUMNS:
    0:id, 1:event_id, 2:image_url, 3:relative_path, 4:original_filename,
    5:width, 6:height, 7:file_size_bytes, 8:status, 9:created_at
    """
    return Photo(
        id=row[0],
        event_id=row[1],
        image_url=row[2],
        relative_path=row[3],
        original_filename=row[4],
        width=row[5],
        height=row[6],
        file_size_bytes=row[7],
        status=PhotoStatus(row[8]),
        created_at=row[9],
    )
