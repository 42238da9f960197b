"""Tests for bib-to-runner matching and auto-tag maintenance."""

import logging

import duckdb
import pytest
from conftest import add_photo, add_runners

from race_photo_search.manager.runner_repository import RunnerRegistry, get_runner_by_bib
from race_photo_search.manager.tag_repository import PhotoTagStore, list_photo_tags, set_manual_tags
from race_photo_search.models import BoundingBox, DetectionCandidate
from race_photo_search.tagging.matcher import AutoTagger, TagOutcome

EVENT = "city-marathon-2024"


def candidate(bib: str, confidence: float) -> DetectionCandidate:
    return DetectionCandidate(
        bib_number=bib,
        confidence=confidence,
        bbox=BoundingBox(300, 150, 40, 20),
        region="center_chest",
        variant="standard",
        backend="ocr_space",
    )


def tag_set(conn, photo_id):
    return {(t.runner_id, t.source) for t in list_photo_tags(conn, photo_id)}


@pytest.fixture
def tagger(db_conn) -> AutoTagger:
    return AutoTagger(RunnerRegistry(db_conn), PhotoTagStore(db_conn))


def test_roster_match_creates_one_auto_tag(db_conn, tagger):
    add_runners(db_conn, "1234", "5678")
    photo_id = add_photo(db_conn, "a")

    result = tagger.tag_photo(photo_id, EVENT, [candidate("1234", 0.95)])

    runner = get_runner_by_bib(db_conn, EVENT, "1234")
    tags = list_photo_tags(db_conn, photo_id)
    assert result.outcome == TagOutcome.TAGGED
    assert result.tagged_runner_ids == [runner.id]
    assert len(tags) == 1
    assert tags[0].source == "auto"
    assert tags[0].confidence == pytest.approx(0.95)


def test_unknown_bib_creates_auto_detected_runner(db_conn, tagger):
    photo_id = add_photo(db_conn, "a")

    result = tagger.tag_photo(photo_id, EVENT, [candidate("1234", 0.95)])

    runner = get_runner_by_bib(db_conn, EVENT, "1234")
    assert runner is not None
    assert runner.auto_detected is True
    assert result.created_runner_ids == [runner.id]
    assert tag_set(db_conn, photo_id) == {(runner.id, "auto")}


def test_no_detections_logged_and_tags_untouched(db_conn, tagger, caplog):
    add_runners(db_conn, "1234")
    photo_id = add_photo(db_conn, "a")
    tagger.tag_photo(photo_id, EVENT, [candidate("1234", 0.9)])
    before = tag_set(db_conn, photo_id)

    with caplog.at_level(logging.INFO):
        result = tagger.tag_photo(photo_id, EVENT, [])

    assert result.outcome == TagOutcome.NO_DETECTIONS
    assert "no results" in caplog.text
    assert tag_set(db_conn, photo_id) == before


def test_no_roster_match_without_runner_creation(db_conn):
    tagger = AutoTagger(
        RunnerRegistry(db_conn), PhotoTagStore(db_conn), create_missing_runners=False
    )
    photo_id = add_photo(db_conn, "a")

    result = tagger.tag_photo(photo_id, EVENT, [candidate("4321", 0.9)])

    assert result.outcome == TagOutcome.NO_ROSTER_MATCH
    assert result.bib_numbers == ["4321"]
    assert get_runner_by_bib(db_conn, EVENT, "4321") is None
    assert list_photo_tags(db_conn, photo_id) == []


def test_rerun_is_idempotent(db_conn, tagger):
    add_runners(db_conn, "1234", "5678")
    photo_id = add_photo(db_conn, "a")
    detections = [candidate("1234", 0.95), candidate("5678", 0.8)]

    tagger.tag_photo(photo_id, EVENT, detections)
    first = tag_set(db_conn, photo_id)
    tagger.tag_photo(photo_id, EVENT, detections)

    assert tag_set(db_conn, photo_id) == first
    assert len(list_photo_tags(db_conn, photo_id)) == 2


def test_stale_auto_tags_are_replaced(db_conn, tagger):
    add_runners(db_conn, "1234", "5678")
    photo_id = add_photo(db_conn, "a")

    tagger.tag_photo(photo_id, EVENT, [candidate("1234", 0.9)])
    tagger.tag_photo(photo_id, EVENT, [candidate("5678", 0.9)])

    runner = get_runner_by_bib(db_conn, EVENT, "5678")
    assert tag_set(db_conn, photo_id) == {(runner.id, "auto")}


def test_manual_tags_survive_reruns(db_conn, tagger):
    add_runners(db_conn, "1234", "5678")
    photo_id = add_photo(db_conn, "a")
    manual_runner = get_runner_by_bib(db_conn, EVENT, "1234")
    auto_runner = get_runner_by_bib(db_conn, EVENT, "5678")
    set_manual_tags(db_conn, photo_id, [manual_runner.id], "editor")

    for _ in range(3):
        result = tagger.tag_photo(
            photo_id, EVENT, [candidate("1234", 0.95), candidate("5678", 0.9)]
        )

    assert result.tagged_runner_ids == [auto_runner.id]
    assert tag_set(db_conn, photo_id) == {
        (manual_runner.id, "manual:editor"),
        (auto_runner.id, "auto"),
    }


class FailingTagStore(PhotoTagStore):
    def insert_many(self, tags):
        raise duckdb.IOException("disk full")


def test_persistence_failure_is_reported_and_rolled_back(db_conn):
    add_runners(db_conn, "1234")
    photo_id = add_photo(db_conn, "a")
    AutoTagger(RunnerRegistry(db_conn), PhotoTagStore(db_conn)).tag_photo(
        photo_id, EVENT, [candidate("1234", 0.9)]
    )
    before = tag_set(db_conn, photo_id)

    result = AutoTagger(RunnerRegistry(db_conn), FailingTagStore(db_conn)).tag_photo(
        photo_id, EVENT, [candidate("1234", 0.9)]
    )

    assert result.outcome == TagOutcome.PERSISTENCE_FAILED
    assert "disk full" in result.message
    assert tag_set(db_conn, photo_id) == before
