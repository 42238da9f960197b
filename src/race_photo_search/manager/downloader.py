"""Fetch photo bytes from local storage or their public URL."""

import logging
from pathlib import Path

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from race_photo_search.config import DATA_DIR
from race_photo_search.models import Photo

logger = logging.getLogger(__name__)


def load_photo_bytes(
    photo: Photo,
    data_dir: Path = DATA_DIR,
    client: httpx.Client | None = None,
) -> bytes:
    """Return the raw image bytes of a photo.

    The local copy under ``data_dir`` is preferred; otherwise the image is
    downloaded from ``photo.image_url``.

    Raises:
        FileNotFoundError: if the photo has neither a local file nor a URL.
        httpx.HTTPError: if the download fails after retries.
    """
    if photo.relative_path:
        local_path = data_dir / photo.relative_path
        if local_path.exists():
            return local_path.read_bytes()
        logger.debug("Local file %s missing, falling back to URL", local_path)

    if not photo.image_url:
        raise FileNotFoundError(f"Photo {photo.id} has no local file or URL")

    if client is not None:
        return _download(client, photo.image_url)
    with httpx.Client(timeout=120, follow_redirects=True) as http_client:
        return _download(http_client, photo.image_url)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, max=10),
    retry=retry_if_exception_type(httpx.TimeoutException),
    reraise=True,
)
def _download(client: httpx.Client, url: str) -> bytes:
    resp = client.get(url)
    resp.raise_for_status()
    return resp.content


def _sanitize_dirname(name: str) -> str:
    """Convert an event name to a safe directory name."""
    safe = "".join(c if c.isalnum() or c in "-_ " else "" for c in name)
    return safe.strip().replace(" ", "_").lower()


def store_upload(event_id: str, filename: str, content: bytes, data_dir: Path = DATA_DIR) -> str:
    """Write uploaded bytes under the event directory and return the relative path."""
    dir_name = _sanitize_dirname(event_id)
    event_dir = data_dir / dir_name
    event_dir.mkdir(parents=True, exist_ok=True)
    safe_name = Path(filename).name
    (event_dir / safe_name).write_bytes(content)
    return f"{dir_name}/{safe_name}"
