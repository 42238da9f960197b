"""Identity resolution runs: single photo, background and batch backfill."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

import duckdb
import httpx

from race_photo_search.config import BATCH_DELAY, BATCH_LIMIT, DATA_DIR, RESOLVER_WORKERS
from race_photo_search.manager.downloader import load_photo_bytes
from race_photo_search.manager.repository import get_photo, get_untagged_photos
from race_photo_search.manager.runner_repository import RunnerRegistry
from race_photo_search.manager.tag_repository import PhotoTagStore
from race_photo_search.models import PhotoStatus
from race_photo_search.ocr.pipeline import BibDetector
from race_photo_search.tagging.matcher import AutoTagger, AutoTagResult, TagOutcome

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 64


class IdentityResolver:
    """Detect bibs in a stored photo and auto-tag it.

    Runs on the same photo are serialized by an in-process lock so that two
    delete+insert cycles never interleave.
    """

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        detector: BibDetector,
        data_dir: Path = DATA_DIR,
        create_missing_runners: bool = True,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.conn = conn
        self.detector = detector
        self.data_dir = data_dir
        self.create_missing_runners = create_missing_runners
        self.http_client = http_client
        self._locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]

    def resolve_photo(
        self, photo_id: int, conn: duckdb.DuckDBPyConnection | None = None
    ) -> AutoTagResult:
        """Run detection and tagging for one photo. Never raises."""
        conn = conn or self.conn
        with self._locks[photo_id % _LOCK_STRIPES]:
            return self._resolve(conn, photo_id)

    def _resolve(self, conn: duckdb.DuckDBPyConnection, photo_id: int) -> AutoTagResult:
        try:
            photo = get_photo(conn, photo_id)
        except duckdb.Error as exc:
            logger.error("Photo %s: lookup failed: %s", photo_id, exc)
            return AutoTagResult(photo_id, TagOutcome.PERSISTENCE_FAILED, message=str(exc))
        if photo is None:
            logger.warning("Photo %s not found, skipping", photo_id)
            return AutoTagResult(photo_id, TagOutcome.SKIPPED, message="Photo not found")
        if photo.status != PhotoStatus.PROCESSED:
            logger.info("Photo %s is %s, skipping", photo_id, photo.status.value)
            return AutoTagResult(
                photo_id, TagOutcome.SKIPPED, message=f"Photo is {photo.status.value}"
            )

        try:
            image_bytes = load_photo_bytes(photo, self.data_dir, self.http_client)
        except (OSError, httpx.HTTPError) as exc:
            logger.warning("Photo %s: image unavailable: %s", photo_id, exc)
            return AutoTagResult(
                photo_id, TagOutcome.SKIPPED, message=f"Image unavailable: {exc}"
            )

        candidates = self.detector.detect(image_bytes)
        tagger = AutoTagger(
            RunnerRegistry(conn),
            PhotoTagStore(conn),
            create_missing_runners=self.create_missing_runners,
        )
        return tagger.tag_photo(photo_id, photo.event_id, candidates)


class BackgroundResolver:
    """Run resolutions off the request path.

    ``submit`` returns immediately; each task uses its own DuckDB cursor.
    """

    def __init__(self, resolver: IdentityResolver, max_workers: int = RESOLVER_WORKERS) -> None:
        self.resolver = resolver
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="resolver")

    def submit(self, photo_id: int) -> Future[AutoTagResult]:
        future = self._pool.submit(self._run, photo_id)
        future.add_done_callback(_log_unexpected_failure)
        return future

    def _run(self, photo_id: int) -> AutoTagResult:
        cursor = self.resolver.conn.cursor()
        try:
            return self.resolver.resolve_photo(photo_id, conn=cursor)
        finally:
            cursor.close()

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "BackgroundResolver":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown(wait=True)


def _log_unexpected_failure(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error("Background resolution crashed", exc_info=exc)


@dataclass
class BatchReport:
    """Summary of one backfill invocation."""

    event_id: str
    total_photos: int = 0
    tagged: int = 0
    results: list[AutoTagResult] = field(default_factory=list)
    has_more: bool = False


def backfill_event(
    resolver: IdentityResolver,
    event_id: str,
    limit: int = BATCH_LIMIT,
    delay: float = BATCH_DELAY,
) -> BatchReport:
    """Resolve processed photos of an event that have no tags yet.

    At most ``BATCH_LIMIT`` photos are handled per call, with ``delay``
    seconds between photos to spare the recognition backends.
    """
    limit = max(1, min(limit, BATCH_LIMIT))
    photos = get_untagged_photos(resolver.conn, event_id, limit)
    report = BatchReport(event_id=event_id, total_photos=len(photos), has_more=len(photos) == limit)
    if not photos:
        logger.info("Event %s: no photos to process", event_id)
        return report

    for index, photo in enumerate(photos):
        if index and delay > 0:
            time.sleep(delay)
        result = resolver.resolve_photo(photo.id)
        report.results.append(result)
        if result.outcome == TagOutcome.TAGGED:
            report.tagged += 1

    logger.info(
        "Event %s: backfill tagged %d/%d photo(s)", event_id, report.tagged, report.total_photos
    )
    return report
