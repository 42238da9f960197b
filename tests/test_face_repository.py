"""Tests for face embedding storage and ingestion."""

import duckdb
import numpy as np
import pytest
from conftest import add_photo, image_bytes, unit_vector

from race_photo_search.embedding.face_repository import (
    FaceEmbeddingStore,
    count_event_embeddings,
    delete_faces_for_photo,
    get_event_embedding_dims,
    get_faces_for_photo,
    get_unscanned_photo_ids,
    validate_embedding,
)
from race_photo_search.embedding.ingest import ingest_event_faces
from race_photo_search.errors import EmbeddingDimensionError, ValidationError
from race_photo_search.manager.downloader import store_upload
from race_photo_search.models import BoundingBox, DetectedFace, PhotoStatus

EVENT = "city-marathon-2024"
MODEL = "test/face-model"


def detected(vec, score: float = 0.9) -> DetectedFace:
    return DetectedFace(
        embedding=np.array(vec, dtype=np.float32), bbox=BoundingBox(5, 6, 20, 25), det_score=score
    )


def test_validate_embedding():
    assert validate_embedding([0.5] * 128).dtype == np.float32
    assert validate_embedding(np.ones((1, 512))).shape == (512,)
    with pytest.raises(EmbeddingDimensionError, match="expected 128 or 512, received 100"):
        validate_embedding([0.1] * 100)
    with pytest.raises(ValidationError):
        validate_embedding([float("nan")] * 128)
    with pytest.raises(ValidationError):
        validate_embedding([0.0] * 128)


def test_replace_and_read_faces(db_conn):
    photo_id = add_photo(db_conn, "a")
    store = FaceEmbeddingStore(db_conn, MODEL)

    store.replace(
        photo_id, [detected(unit_vector(128, 1), 0.8), detected(unit_vector(128, 0, 1), 0.95)]
    )
    faces = get_faces_for_photo(db_conn, photo_id)

    assert [f.det_score for f in faces] == pytest.approx([0.95, 0.8])
    assert faces[0].dim == 128
    assert faces[0].embedding[1] == pytest.approx(1.0)
    assert faces[0].bbox == BoundingBox(5, 6, 20, 25)

    store.replace(photo_id, [detected(unit_vector(512, 1))])
    faces = store.faces_for(photo_id)
    assert len(faces) == 1
    assert faces[0].dim == 512


def test_rescan_updates_scan_record(db_conn):
    photo_id = add_photo(db_conn, "a")
    store = FaceEmbeddingStore(db_conn, MODEL)

    store.replace(photo_id, [detected(unit_vector(512, 1)), detected(unit_vector(512, 0, 1))])
    store.replace(photo_id, [detected(unit_vector(512, 1))])

    rows = db_conn.execute(
        "SELECT face_count, scanned_at FROM face_scanned_photos WHERE photo_id = ?", [photo_id]
    ).fetchall()
    assert len(rows) == 1
    assert rows[0][0] == 1
    assert rows[0][1] is not None
    assert store.stats(EVENT) == (1, 1, 1)


def test_replace_marks_scanned_even_without_faces(db_conn):
    scanned = add_photo(db_conn, "a")
    unscanned = add_photo(db_conn, "b")
    add_photo(db_conn, "c", status=PhotoStatus.PENDING)
    FaceEmbeddingStore(db_conn, MODEL).replace(scanned, [])

    assert get_unscanned_photo_ids(db_conn, EVENT, MODEL, limit=10) == [unscanned]
    assert get_unscanned_photo_ids(db_conn, EVENT, "other/model", limit=10) == [scanned, unscanned]


def test_event_counts_only_processed_photos(db_conn):
    processed = add_photo(db_conn, "a")
    pending = add_photo(db_conn, "b", status=PhotoStatus.PENDING)
    other = add_photo(db_conn, "c", event_id="trail-run-2024")
    store = FaceEmbeddingStore(db_conn, MODEL)
    store.replace(processed, [detected(unit_vector(512, 1))])
    store.replace(pending, [detected(unit_vector(128, 1))])
    store.replace(other, [detected(unit_vector(128, 1))])

    assert count_event_embeddings(db_conn, EVENT) == 1
    assert get_event_embedding_dims(db_conn, EVENT) == {512}
    assert store.stats(EVENT) == (1, 2, 2)


def test_delete_faces_for_photo(db_conn):
    photo_id = add_photo(db_conn, "a")
    FaceEmbeddingStore(db_conn, MODEL).replace(photo_id, [detected(unit_vector(128, 1))])
    delete_faces_for_photo(db_conn, photo_id)
    assert get_faces_for_photo(db_conn, photo_id) == []
    assert get_unscanned_photo_ids(db_conn, EVENT, MODEL, limit=10) == [photo_id]


class FakeFaceModel:
    model_name = MODEL

    def __init__(self, faces):
        self.faces = faces
        self.calls = 0

    def detect(self, image_bytes):
        self.calls += 1
        return self.faces


def test_ingest_event_faces(db_conn, tmp_path):
    relative = store_upload(EVENT, "a.png", image_bytes(), data_dir=tmp_path)
    with_file = add_photo(db_conn, "a", relative_path=relative)
    missing = add_photo(db_conn, "b", relative_path="")
    model = FakeFaceModel([detected(unit_vector(512, 1)), detected(unit_vector(512, 0, 1))])
    seen = []

    report = ingest_event_faces(db_conn, model, EVENT, data_dir=tmp_path, on_photo=seen.append)

    assert (report.photos, report.faces, report.errors) == (1, 2, 1)
    assert seen == [with_file, missing]
    assert len(get_faces_for_photo(db_conn, with_file)) == 2
    assert get_unscanned_photo_ids(db_conn, EVENT, MODEL, limit=10) == [missing]


def test_ingest_rejects_bad_vectors(db_conn, tmp_path):
    relative = store_upload(EVENT, "a.png", image_bytes(), data_dir=tmp_path)
    photo_id = add_photo(db_conn, "a", relative_path=relative)
    model = FakeFaceModel([detected([0.1] * 100)])

    report = ingest_event_faces(db_conn, model, EVENT, data_dir=tmp_path)

    assert report.errors == 1
    assert get_faces_for_photo(db_conn, photo_id) == []


def test_ingest_survives_storage_errors(db_conn, tmp_path, monkeypatch):
    ids = []
    for name in ("a", "b"):
        relative = store_upload(EVENT, f"{name}.png", image_bytes(), data_dir=tmp_path)
        ids.append(add_photo(db_conn, name, relative_path=relative))
    model = FakeFaceModel([detected(unit_vector(512, 1))])

    def broken_replace(self, photo_id, faces):
        raise duckdb.IOException("disk full")

    with monkeypatch.context() as patch:
        patch.setattr(FaceEmbeddingStore, "replace", broken_replace)
        report = ingest_event_faces(db_conn, model, EVENT, data_dir=tmp_path)

    assert (report.photos, report.faces, report.errors) == (0, 0, 2)
    assert get_unscanned_photo_ids(db_conn, EVENT, MODEL, limit=10) == ids

    retry = ingest_event_faces(db_conn, model, EVENT, data_dir=tmp_path)
    assert (retry.photos, retry.faces, retry.errors) == (2, 2, 0)
    assert get_unscanned_photo_ids(db_conn, EVENT, MODEL, limit=10) == []
