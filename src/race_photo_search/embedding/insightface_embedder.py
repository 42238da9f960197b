"""InsightFace wrapper for face detection and embedding extraction."""

import cv2
import numpy as np
from insightface.app import FaceAnalysis

from race_photo_search.config import INSIGHTFACE_MODEL_NAME
from race_photo_search.models import BoundingBox, DetectedFace


class InsightFaceEmbedder:
    """Detect faces and extract 512-d ArcFace embeddings using InsightFace.

    The model is loaded once here; callers own the instance's lifetime.
    """

    def __init__(
        self,
        model_name: str = "buffalo_l",
        device: str = "cpu",
    ) -> None:
        providers = (
            ["CUDAExecutionProvider", "CPUExecutionProvider"]
            if device == "cuda"
            else ["CPUExecutionProvider"]
        )
        self.app = FaceAnalysis(name=model_name, providers=providers)
        self.app.prepare(ctx_id=0 if device == "cuda" else -1, det_size=(640, 640))
        self.model_name = INSIGHTFACE_MODEL_NAME

    def detect(self, image_bytes: bytes) -> list[DetectedFace]:
        """Detect faces in an encoded image.

        Args:
            image_bytes: JPEG/PNG bytes of the photo.

        Returns:
            One DetectedFace per face; empty if the bytes cannot be decoded.
        """
        img = cv2.imdecode(np.frombuffer(image_bytes, dtype=np.uint8), cv2.IMREAD_COLOR)
        if img is None:
            return []

        detections = []
        for face in self.app.get(img):
            x1, y1, x2, y2 = (float(v) for v in face.bbox)
            detections.append(
                DetectedFace(
                    embedding=face.normed_embedding.astype(np.float32),
                    bbox=BoundingBox(x1, y1, x2 - x1, y2 - y1),
                    det_score=float(face.det_score),
                )
            )
        return detections
