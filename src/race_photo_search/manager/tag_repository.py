"""CRUD operations for photo tags in DuckDB."""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import duckdb

from race_photo_search.db import transaction
from race_photo_search.errors import PhotoNotFoundError
from race_photo_search.models import AUTO_SOURCE, MANUAL_SOURCE_PREFIX, PhotoTag

_TAG_COLUMNS = "tag_id, photo_id, runner_id, confidence, source, created_at"


def delete_auto_tags(conn: duckdb.DuckDBPyConnection, photo_id: int) -> None:
    """Delete every auto-sourced tag of a photo. Manual tags are kept."""
    conn.execute(
        "DELETE FROM photo_tags WHERE photo_id = ? AND source = ?", [photo_id, AUTO_SOURCE]
    )


def insert_tags(conn: duckdb.DuckDBPyConnection, tags: list[PhotoTag]) -> int:
    """Insert tags, skipping (photo, runner) pairs that are already tagged.

    Returns the number of tags inserted.
    """
    inserted = 0
    for tag in tags:
        exists = conn.execute(
            "SELECT 1 FROM photo_tags WHERE photo_id = ? AND runner_id = ?",
            [tag.photo_id, tag.runner_id],
        ).fetchone()
        if exists:
            continue
        tag_id = tag.tag_id or str(uuid.uuid4())
        conn.execute(
            """
            INSERT INTO photo_tags (tag_id, photo_id, runner_id, confidence, source)
            VALUES (?, ?, ?, ?, ?)
            """,
            [tag_id, tag.photo_id, tag.runner_id, tag.confidence, tag.source],
        )
        inserted += 1
    return inserted


def list_photo_tags(conn: duckdb.DuckDBPyConnection, photo_id: int) -> list[PhotoTag]:
    """Return all tags of a photo, highest confidence first."""
    rows = conn.execute(
        f"""
        SELECT {_TAG_COLUMNS} FROM photo_tags
        WHERE photo_id = ?
        ORDER BY confidence DESC, runner_id
        """,
        [photo_id],
    ).fetchall()
    return [_row_to_tag(row) for row in rows]


def get_manual_runner_ids(conn: duckdb.DuckDBPyConnection, photo_id: int) -> set[int]:
    """Return ids of runners manually tagged on a photo."""
    rows = conn.execute(
        "SELECT runner_id FROM photo_tags WHERE photo_id = ? AND source LIKE ?",
        [photo_id, f"{MANUAL_SOURCE_PREFIX}%"],
    ).fetchall()
    return {row[0] for row in rows}


def set_manual_tags(
    conn: duckdb.DuckDBPyConnection, photo_id: int, runner_ids: list[int], user_id: str
) -> None:
    """Replace every tag of a photo with manual tags at full confidence.

    Raises:
        PhotoNotFoundError: no photo has this id.
    """
    exists = conn.execute("SELECT 1 FROM photos WHERE id = ?", [photo_id]).fetchone()
    if exists is None:
        raise PhotoNotFoundError(f"photo {photo_id} not found")
    source = manual_source(user_id)
    with transaction(conn):
        conn.execute("DELETE FROM photo_tags WHERE photo_id = ?", [photo_id])
        insert_tags(
            conn,
            [PhotoTag(photo_id=photo_id, runner_id=rid, confidence=1.0, source=source)
             for rid in dict.fromkeys(runner_ids)],
        )


def manual_source(user_id: str) -> str:
    return f"{MANUAL_SOURCE_PREFIX}{user_id}"


class PhotoTagStore:
    """Tag persistence bound to one connection."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self.conn = conn

    def delete_auto(self, photo_id: int) -> None:
        delete_auto_tags(self.conn, photo_id)

    def insert_many(self, tags: list[PhotoTag]) -> int:
        return insert_tags(self.conn, tags)

    def manual_runner_ids(self, photo_id: int) -> set[int]:
        return get_manual_runner_ids(self.conn, photo_id)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with transaction(self.conn):
            yield


def _row_to_tag(row: tuple) -> PhotoTag:
    return PhotoTag(
        tag_id=row[0],
        photo_id=row[1],
        runner_id=row[2],
        confidence=float(row[3]),
        source=row[4],
        created_at=row[5],
    )
