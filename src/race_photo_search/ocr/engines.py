"""Interchangeable text recognition backends.

Each engine turns encoded image bytes into word-level tokens with a
confidence on a 0-100 scale. Engines raise RecognitionBackendError on
failure; the fallback adapter decides what to do about it.
"""

import base64
import hashlib
import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import BytesIO
from typing import Protocol

import httpx
import pytesseract
from PIL import Image
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from race_photo_search.config import (
    GOOGLE_VISION_API_KEY,
    GOOGLE_VISION_API_URL,
    HOSTED_CONFIDENCE_FLOOR,
    OCR_SPACE_API_KEY,
    OCR_SPACE_API_URL,
    RECOGNITION_TIMEOUT,
    TESSERACT_CMD,
    TESSERACT_CONFIDENCE_FLOOR,
    TESSERACT_STARTUP_TIMEOUT,
)
from race_photo_search.errors import RecognitionBackendError
from race_photo_search.models import BoundingBox
from race_photo_search.ocr.timeout import call_with_timeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognizedText:
    """A single token returned by a backend."""

    text: str
    confidence: float  # 0..100
    bbox: BoundingBox


@dataclass(frozen=True)
class RecognitionHints:
    """Per-pass options passed to an engine."""

    name: str
    whitelist: str | None = None


DIGITS = RecognitionHints(name="digits", whitelist="0123456789")
ALNUM = RecognitionHints(name="alnum", whitelist="0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ")

_EMPTY_BOX = BoundingBox(0.0, 0.0, 0.0, 0.0)


class TextRecognitionEngine(Protocol):
    name: str
    confidence_floor: float

    def recognize(
        self, image_bytes: bytes, hints: RecognitionHints | None = None
    ) -> list[RecognizedText]: ...


_NON_ALNUM = re.compile(r"[^0-9A-Z]")


def apply_whitelist(
    texts: list[RecognizedText], hints: RecognitionHints | None
) -> list[RecognizedText]:
    """Keep tokens made only of whitelisted characters (case-insensitive).

    Punctuation around a word ("#1234", "5678.") is stripped first.
    """
    if hints is None or hints.whitelist is None:
        return texts
    allowed = set(hints.whitelist)
    kept = []
    for item in texts:
        token = _NON_ALNUM.sub("", item.text.upper())
        if token and set(token) <= allowed:
            kept.append(RecognizedText(text=token, confidence=item.confidence, bbox=item.bbox))
    return kept


class _HostedEngine(ABC):
    """Shared plumbing for HTTP OCR services.

    Hosted services have no character whitelist, so the whitelist is applied
    to the response. The last response is memoized so that the two passes of
    one invocation cost a single request.
    """

    name = "hosted"
    confidence_floor = HOSTED_CONFIDENCE_FLOOR

    def __init__(
        self, timeout: float = RECOGNITION_TIMEOUT, client: httpx.Client | None = None
    ) -> None:
        self.timeout = timeout
        self.client = client
        self._lock = threading.Lock()
        self._last: tuple[str, list[RecognizedText]] | None = None

    def recognize(
        self, image_bytes: bytes, hints: RecognitionHints | None = None
    ) -> list[RecognizedText]:
        digest = hashlib.sha1(image_bytes).hexdigest()
        with self._lock:
            cached = self._last
        if cached is not None and cached[0] == digest:
            texts = cached[1]
        else:
            texts = self._fetch(image_bytes)
            with self._lock:
                self._last = (digest, texts)
        return apply_whitelist(texts, hints)

    @abstractmethod
    def _fetch(self, image_bytes: bytes) -> list[RecognizedText]: ...

    def _post(self, url: str, **kwargs) -> dict:
        try:
            if self.client is not None:
                resp = _post_with_retry(self.client, url, **kwargs)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = _post_with_retry(client, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise RecognitionBackendError(f"{self.name} request failed: {exc}") from exc
        return resp.json()


@retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.5, max=4),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
def _post_with_retry(client: httpx.Client, url: str, **kwargs) -> httpx.Response:
    return client.post(url, **kwargs)


class OCRSpaceEngine(_HostedEngine):
    """OCR.space hosted OCR (fast, free tier)."""

    name = "ocr_space"
    # The service reports no per-word confidence
    default_confidence = 85.0

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str = OCR_SPACE_API_URL,
        timeout: float = RECOGNITION_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.api_key = api_key if api_key is not None else OCR_SPACE_API_KEY
        self.api_url = api_url

    def _fetch(self, image_bytes: bytes) -> list[RecognizedText]:
        if not self.api_key:
            raise RecognitionBackendError("OCR_SPACE_API_KEY is not set")
        encoded = base64.b64encode(image_bytes).decode("ascii")
        payload = self._post(
            self.api_url,
            data={
                "apikey": self.api_key,
                "base64Image": f"data:image/png;base64,{encoded}",
                "language": "eng",
                "isOverlayRequired": "true",
                "detectOrientation": "true",
                "scale": "true",
                "OCREngine": "2",
            },
        )
        if payload.get("IsErroredOnProcessing"):
            raise RecognitionBackendError(f"OCR.space error: {payload.get('ErrorMessage')}")
        return parse_ocr_space_response(payload, self.default_confidence)


def parse_ocr_space_response(payload: dict, confidence: float) -> list[RecognizedText]:
    """Extract word tokens from an OCR.space response.

    Word boxes come from the text overlay; without an overlay the plain parsed
    text is split into tokens with an empty box.
    """
    texts: list[RecognizedText] = []
    for parsed in payload.get("ParsedResults") or []:
        lines = (parsed.get("TextOverlay") or {}).get("Lines") or []
        words = [word for line in lines for word in line.get("Words") or []]
        if words:
            for word in words:
                texts.append(
                    RecognizedText(
                        text=str(word.get("WordText", "")).strip(),
                        confidence=confidence,
                        bbox=BoundingBox(
                            x=float(word.get("Left", 0)),
                            y=float(word.get("Top", 0)),
                            width=float(word.get("Width", 0)),
                            height=float(word.get("Height", 0)),
                        ),
                    )
                )
        else:
            for token in str(parsed.get("ParsedText", "")).split():
                texts.append(RecognizedText(text=token, confidence=confidence, bbox=_EMPTY_BOX))
    return [t for t in texts if t.text]


class GoogleVisionEngine(_HostedEngine):
    """Google Cloud Vision TEXT_DETECTION."""

    name = "google_vision"
    # Vision reports no per-word confidence for TEXT_DETECTION
    default_confidence = 90.0

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str = GOOGLE_VISION_API_URL,
        timeout: float = RECOGNITION_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.api_key = api_key if api_key is not None else GOOGLE_VISION_API_KEY
        self.api_url = api_url

    def _fetch(self, image_bytes: bytes) -> list[RecognizedText]:
        if not self.api_key:
            raise RecognitionBackendError("GOOGLE_VISION_API_KEY is not set")
        body = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
                    "features": [{"type": "TEXT_DETECTION", "maxResults": 50}],
                }
            ]
        }
        payload = self._post(self.api_url, params={"key": self.api_key}, json=body)
        responses = payload.get("responses") or [{}]
        if "error" in responses[0]:
            raise RecognitionBackendError(f"Vision error: {responses[0]['error']}")
        return parse_vision_response(payload, self.default_confidence)


def parse_vision_response(payload: dict, confidence: float) -> list[RecognizedText]:
    """Extract word tokens from a Vision ``images:annotate`` response."""
    responses = payload.get("responses") or []
    if not responses:
        return []
    annotations = responses[0].get("textAnnotations") or []
    texts: list[RecognizedText] = []
    # The first annotation is the full text block
    for annotation in annotations[1:]:
        text = str(annotation.get("description", "")).strip()
        vertices = (annotation.get("boundingPoly") or {}).get("vertices") or []
        if not text or len(vertices) != 4:
            continue
        xs = [float(v.get("x", 0)) for v in vertices]
        ys = [float(v.get("y", 0)) for v in vertices]
        texts.append(
            RecognizedText(
                text=text,
                confidence=confidence,
                bbox=BoundingBox(
                    x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys)
                ),
            )
        )
    return texts


class TesseractEngine:
    """Local Tesseract via pytesseract, the last resort in the chain.

    The binary is probed once at construction; a probe that fails or exceeds
    ``startup_timeout`` leaves the engine unavailable and every call fails.
    """

    name = "tesseract"
    confidence_floor = TESSERACT_CONFIDENCE_FLOOR

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        timeout: float = RECOGNITION_TIMEOUT,
        startup_timeout: float = TESSERACT_STARTUP_TIMEOUT,
        psm: int = 11,
        lang: str = "eng",
    ) -> None:
        cmd = tesseract_cmd or TESSERACT_CMD
        if cmd:
            pytesseract.pytesseract.tesseract_cmd = cmd
        self.timeout = timeout
        self.psm = psm
        self.lang = lang
        self.version = self._probe(startup_timeout)

    @property
    def available(self) -> bool:
        return self.version is not None

    def _probe(self, startup_timeout: float) -> str | None:
        try:
            version = call_with_timeout(pytesseract.get_tesseract_version, startup_timeout)
        except TimeoutError:
            logger.warning("Tesseract did not start within %.1fs", startup_timeout)
            return None
        except (pytesseract.TesseractNotFoundError, OSError) as exc:
            logger.warning("Tesseract unavailable: %s", exc)
            return None
        return str(version)

    def recognize(
        self, image_bytes: bytes, hints: RecognitionHints | None = None
    ) -> list[RecognizedText]:
        if not self.available:
            raise RecognitionBackendError("Tesseract is not available")
        config = f"--psm {self.psm}"
        if hints is not None and hints.whitelist:
            config += f" -c tessedit_char_whitelist={hints.whitelist}"
        image = Image.open(BytesIO(image_bytes))
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.lang,
                config=config,
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout,
            )
        except RuntimeError as exc:
            # pytesseract signals both TesseractError and timeouts as RuntimeError
            raise RecognitionBackendError(f"Tesseract failed: {exc}") from exc
        return parse_tesseract_data(data)


def parse_tesseract_data(data: dict) -> list[RecognizedText]:
    """Convert pytesseract ``image_to_data`` output into tokens."""
    texts: list[RecognizedText] = []
    for i, raw in enumerate(data.get("text", [])):
        text = str(raw).strip()
        try:
            conf = float(data["conf"][i])
        except (TypeError, ValueError):
            continue
        if not text or conf < 0:
            continue
        texts.append(
            RecognizedText(
                text=text,
                confidence=conf,
                bbox=BoundingBox(
                    x=float(data["left"][i]),
                    y=float(data["top"][i]),
                    width=float(data["width"][i]),
                    height=float(data["height"][i]),
                ),
            )
        )
    return texts


def build_default_engines() -> list[TextRecognitionEngine]:
    """The production chain: OCR.space, then Google Vision, then Tesseract."""
    return [OCRSpaceEngine(), GoogleVisionEngine(), TesseractEngine()]
