"""Tests for photos table CRUD operations."""

from conftest import add_photo, make_photo

from race_photo_search.manager.repository import (
    delete_photo,
    get_photo,
    get_untagged_photos,
    insert_photo,
    list_photos,
    update_photo_status,
)
from race_photo_search.manager.tag_repository import insert_tags
from race_photo_search.models import PhotoStatus, PhotoTag


def test_insert_and_get(db_conn, sample_photo):
    photo_id = insert_photo(db_conn, sample_photo)
    result = get_photo(db_conn, photo_id)
    assert result is not None
    assert result.event_id == "city-marathon-2024"
    assert result.status == PhotoStatus.PROCESSED
    assert result.original_filename == "finish_001.jpg"


def test_get_missing_photo(db_conn):
    assert get_photo(db_conn, 999) is None


def test_list_photos_filters(db_conn):
    add_photo(db_conn, "a")
    add_photo(db_conn, "b", status=PhotoStatus.PENDING)
    add_photo(db_conn, "c", event_id="trail-run-2024")

    assert len(list_photos(db_conn, event_id="city-marathon-2024")) == 2
    assert len(list_photos(db_conn, status=PhotoStatus.PROCESSED)) == 2
    assert len(list_photos(db_conn, event_id="city-marathon-2024", status="pending")) == 1


def test_update_photo_status(db_conn):
    photo_id = add_photo(db_conn, "a", status=PhotoStatus.PENDING)
    update_photo_status(db_conn, photo_id, PhotoStatus.PROCESSED)
    assert get_photo(db_conn, photo_id).status == PhotoStatus.PROCESSED


def test_get_untagged_photos_only_processed_without_tags(db_conn):
    tagged = add_photo(db_conn, "tagged")
    untagged = add_photo(db_conn, "untagged")
    add_photo(db_conn, "pending", status=PhotoStatus.PENDING)
    add_photo(db_conn, "other", event_id="trail-run-2024")
    insert_tags(db_conn, [PhotoTag(photo_id=tagged, runner_id=1, confidence=0.9, source="auto")])

    photos = get_untagged_photos(db_conn, "city-marathon-2024", limit=10)
    assert [p.id for p in photos] == [untagged]


def test_get_untagged_photos_respects_limit(db_conn):
    ids = [add_photo(db_conn, f"p{i}") for i in range(5)]
    photos = get_untagged_photos(db_conn, "city-marathon-2024", limit=3)
    assert [p.id for p in photos] == ids[:3]


def test_delete_photo_cascades(db_conn):
    photo_id = insert_photo(db_conn, make_photo("gone"))
    insert_tags(db_conn, [PhotoTag(photo_id=photo_id, runner_id=1, confidence=0.9, source="auto")])
    db_conn.execute(
        """
        INSERT INTO face_embeddings
        (face_id, photo_id, model_name, dim, embedding_128,
         bbox_x, bbox_y, bbox_width, bbox_height, det_score)
        VALUES ('f1', ?, 'm', 128, ?, 0, 0, 1, 1, 0.9)
        """,
        [photo_id, [1.0] * 128],
    )

    delete_photo(db_conn, photo_id)

    assert get_photo(db_conn, photo_id) is None
    for table in ("photo_tags", "face_embeddings"):
        count = db_conn.execute(
            f"SELECT COUNT(*) FROM {table} WHERE photo_id = ?", [photo_id]
        ).fetchone()[0]
        assert count == 0
