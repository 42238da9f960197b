"""Project-wide configuration."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(os.environ.get("RACE_PHOTO_PROJECT_ROOT", Path.cwd()))

load_dotenv(PROJECT_ROOT / ".env")

DB_PATH = PROJECT_ROOT / "race_photo_search.duckdb"
DATA_DIR = PROJECT_ROOT / "data" / "photos"

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Text recognition backends, tried in this order
OCR_SPACE_API_KEY = os.environ.get("OCR_SPACE_API_KEY", "")
OCR_SPACE_API_URL = "https://api.ocr.space/parse/image"
GOOGLE_VISION_API_KEY = os.environ.get("GOOGLE_VISION_API_KEY", "")
GOOGLE_VISION_API_URL = "https://vision.googleapis.com/v1/images:annotate"
TESSERACT_CMD = os.environ.get("TESSERACT_CMD", "")

RECOGNITION_TIMEOUT = float(os.environ.get("RECOGNITION_TIMEOUT", "30"))
TESSERACT_STARTUP_TIMEOUT = float(os.environ.get("TESSERACT_STARTUP_TIMEOUT", "3"))

# Confidence floors (0..1) applied per backend before matching
HOSTED_CONFIDENCE_FLOOR = 0.6
TESSERACT_CONFIDENCE_FLOOR = 0.7

# Preprocessing
ROTATION_ANGLES = (-15, -10, -5, 5, 10, 15)
MIN_REGION_SIZE = 8

# Auto-tagging
AUTO_TAG_DEFAULT_CONFIDENCE = 0.7
BATCH_LIMIT = int(os.environ.get("BATCH_LIMIT", "50"))
BATCH_DELAY = float(os.environ.get("BATCH_DELAY", "0.1"))
RESOLVER_WORKERS = int(os.environ.get("RESOLVER_WORKERS", "2"))

# Face similarity search
FACE_EMBEDDING_DIMS = (128, 512)
FACE_DISTANCE_THRESHOLD = float(os.environ.get("FACE_DISTANCE_THRESHOLD", "0.7"))
FACE_SEARCH_MAX_RESULTS = 50

# Face detection – InsightFace
INSIGHTFACE_MODEL_NAME = "insightface/buffalo_l"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for CLI entry points."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
