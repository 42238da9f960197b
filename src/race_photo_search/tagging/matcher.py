"""Resolve bib candidates to runners and maintain auto tags.

Per photo the tag state moves from untagged to auto-tagged and may then be
overridden or augmented manually. Auto tags are deleted and recreated on every
successful run, so repeated runs with stable detections converge to the same
tag set. Manual tags are never touched.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

import duckdb

from race_photo_search.config import AUTO_TAG_DEFAULT_CONFIDENCE
from race_photo_search.manager.runner_repository import RunnerRegistry
from race_photo_search.manager.tag_repository import PhotoTagStore
from race_photo_search.models import AUTO_SOURCE, DetectionCandidate, PhotoTag, Runner

logger = logging.getLogger(__name__)


class TagOutcome(str, Enum):
    TAGGED = "tagged"
    NO_DETECTIONS = "no_detections"
    NO_ROSTER_MATCH = "no_roster_match"
    PERSISTENCE_FAILED = "persistence_failed"
    SKIPPED = "skipped"


@dataclass
class AutoTagResult:
    """What one auto-tagging run did to a photo."""

    photo_id: int
    outcome: TagOutcome
    bib_numbers: list[str] = field(default_factory=list)
    tagged_runner_ids: list[int] = field(default_factory=list)
    created_runner_ids: list[int] = field(default_factory=list)
    message: str = ""


class AutoTagger:
    """Match candidates against the roster and write auto tags.

    Never raises: every failure is reported through ``AutoTagResult.outcome``.
    """

    def __init__(
        self,
        runners: RunnerRegistry,
        tags: PhotoTagStore,
        create_missing_runners: bool = True,
        default_confidence: float = AUTO_TAG_DEFAULT_CONFIDENCE,
    ) -> None:
        self.runners = runners
        self.tags = tags
        self.create_missing_runners = create_missing_runners
        self.default_confidence = default_confidence

    def tag_photo(
        self, photo_id: int, event_id: str, candidates: list[DetectionCandidate]
    ) -> AutoTagResult:
        if not candidates:
            logger.info("Photo %s: no results, no bib numbers detected", photo_id)
            return AutoTagResult(
                photo_id, TagOutcome.NO_DETECTIONS, message="No bib numbers detected"
            )

        confidence_by_bib: dict[str, float] = {}
        for candidate in candidates:
            current = confidence_by_bib.get(candidate.bib_number, 0.0)
            confidence_by_bib[candidate.bib_number] = max(current, candidate.confidence)
        bibs = list(confidence_by_bib)

        try:
            runners, created = self._resolve_runners(event_id, bibs)
            if not runners:
                logger.info("Photo %s: no matching runners for bibs %s", photo_id, bibs)
                return AutoTagResult(
                    photo_id,
                    TagOutcome.NO_ROSTER_MATCH,
                    bib_numbers=bibs,
                    message="No matching runners found",
                )
            tagged = self._replace_auto_tags(photo_id, runners, confidence_by_bib)
        except duckdb.Error as exc:
            logger.error("Photo %s: persisting auto tags failed: %s", photo_id, exc)
            return AutoTagResult(
                photo_id,
                TagOutcome.PERSISTENCE_FAILED,
                bib_numbers=bibs,
                message=f"Persistence failed: {exc}",
            )

        logger.info(
            "Photo %s: auto-tagged %d runner(s) from bibs %s (%d created)",
            photo_id,
            len(tagged),
            bibs,
            len(created),
        )
        return AutoTagResult(
            photo_id,
            TagOutcome.TAGGED,
            bib_numbers=bibs,
            tagged_runner_ids=tagged,
            created_runner_ids=[r.id for r in created],
            message=f"Tagged {len(tagged)} runner(s)",
        )

    def _resolve_runners(
        self, event_id: str, bibs: list[str]
    ) -> tuple[list[Runner], list[Runner]]:
        runners = self.runners.find_by_bib_numbers(event_id, bibs)
        if not self.create_missing_runners:
            return runners, []
        known = {r.bib_number for r in runners}
        created = [self.runners.create(event_id, bib) for bib in bibs if bib not in known]
        return runners + created, created

    def _replace_auto_tags(
        self, photo_id: int, runners: list[Runner], confidence_by_bib: dict[str, float]
    ) -> list[int]:
        with self.tags.transaction():
            manual = self.tags.manual_runner_ids(photo_id)
            self.tags.delete_auto(photo_id)
            new_tags = [
                PhotoTag(
                    photo_id=photo_id,
                    runner_id=runner.id,
                    confidence=confidence_by_bib.get(runner.bib_number) or self.default_confidence,
                    source=AUTO_SOURCE,
                )
                for runner in runners
                if runner.id not in manual
            ]
            self.tags.insert_many(new_tags)
        return [tag.runner_id for tag in new_tags]
