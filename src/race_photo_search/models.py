"""Data models for photos, runners, tags and face embeddings."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import numpy as np

AUTO_SOURCE = "auto"
MANUAL_SOURCE_PREFIX = "manual:"


class PhotoStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class Photo:
    """A race photo belonging to one event."""

    id: int | None
    event_id: str
    image_url: str | None
    relative_path: str | None
    original_filename: str | None
    width: int | None
    height: int | None
    file_size_bytes: int | None
    status: PhotoStatus
    created_at: datetime | None


@dataclass
class Runner:
    """A participant registered (or auto-detected) for an event."""

    id: int | None
    event_id: str
    bib_number: str
    full_name: str
    category: str | None
    team: str | None
    auto_detected: bool
    created_at: datetime | None


@dataclass
class PhotoTag:
    """Association between a photo and a runner."""

    photo_id: int
    runner_id: int
    confidence: float
    source: str  # "auto" or "manual:<user_id>"
    tag_id: str | None = None
    created_at: datetime | None = None

    @property
    def is_auto(self) -> bool:
        return self.source == AUTO_SOURCE


@dataclass
class DetectionCandidate:
    """A validated bib hypothesis produced during one resolution run."""

    bib_number: str
    confidence: float  # 0..1
    bbox: BoundingBox
    region: str
    variant: str
    backend: str


@dataclass
class FaceEmbedding:
    """A single detected face within a photo."""

    face_id: str
    photo_id: int
    model_name: str
    bbox: BoundingBox
    det_score: float
    embedding: np.ndarray  # shape (128,) or (512,)
    created_at: datetime | None = None

    @property
    def dim(self) -> int:
        return int(self.embedding.shape[0])


@dataclass
class DetectedFace:
    """Output of a face detection model for one face, before storage."""

    embedding: np.ndarray
    bbox: BoundingBox
    det_score: float
