"""Tests for model dataclasses."""

import numpy as np

from race_photo_search.models import BoundingBox, FaceEmbedding, PhotoTag


def test_bounding_box_edges():
    box = BoundingBox(x=10, y=20, width=30, height=40)
    assert box.x2 == 40
    assert box.y2 == 60
    assert box.to_dict() == {"x": 10, "y": 20, "width": 30, "height": 40}


def test_photo_tag_is_auto():
    assert PhotoTag(photo_id=1, runner_id=2, confidence=0.9, source="auto").is_auto
    assert not PhotoTag(photo_id=1, runner_id=2, confidence=1.0, source="manual:u1").is_auto


def test_face_embedding_dim():
    face = FaceEmbedding(
        face_id="f1",
        photo_id=1,
        model_name="m",
        bbox=BoundingBox(0, 0, 10, 10),
        det_score=0.99,
        embedding=np.ones(128, dtype=np.float32),
    )
    assert face.dim == 128
