"""Tests for runner roster CRUD operations."""

from conftest import add_runners, make_runner

from race_photo_search.manager.runner_repository import (
    RunnerRegistry,
    create_auto_runner,
    find_runners_by_bib_numbers,
    get_runner_by_bib,
    insert_runners,
    list_runners,
)


def test_insert_runners_skips_duplicate_bibs(db_conn):
    assert insert_runners(db_conn, [make_runner("101"), make_runner("102")]) == 2
    assert insert_runners(db_conn, [make_runner("101", "Someone Else"), make_runner("103")]) == 1
    assert get_runner_by_bib(db_conn, "city-marathon-2024", "101").full_name == "Runner 101"


def test_find_runners_scoped_to_event(db_conn):
    add_runners(db_conn, "101", "102")
    add_runners(db_conn, "101", event_id="trail-run-2024")

    runners = find_runners_by_bib_numbers(db_conn, "city-marathon-2024", ["101", "999"])
    assert [r.bib_number for r in runners] == ["101"]
    assert runners[0].event_id == "city-marathon-2024"
    assert find_runners_by_bib_numbers(db_conn, "city-marathon-2024", []) == []


def test_create_auto_runner_placeholder(db_conn):
    runner = create_auto_runner(db_conn, "city-marathon-2024", "999")
    assert runner.id is not None
    assert runner.auto_detected is True
    assert runner.full_name == "Bib 999"


def test_create_auto_runner_returns_existing(db_conn):
    add_runners(db_conn, "101")
    existing = get_runner_by_bib(db_conn, "city-marathon-2024", "101")
    runner = create_auto_runner(db_conn, "city-marathon-2024", "101")
    assert runner.id == existing.id
    assert runner.auto_detected is False


def test_list_runners_search(db_conn):
    insert_runners(db_conn, [make_runner("101", "Ana Lima"), make_runner("202", "Bo Chen")])
    assert [r.bib_number for r in list_runners(db_conn, "city-marathon-2024")] == ["101", "202"]
    assert [r.full_name for r in list_runners(db_conn, "city-marathon-2024", "chen")] == ["Bo Chen"]
    assert [r.bib_number for r in list_runners(db_conn, "city-marathon-2024", "10")] == ["101"]


def test_registry_delegates(db_conn):
    registry = RunnerRegistry(db_conn)
    created = registry.create("city-marathon-2024", "A12")
    assert [r.id for r in registry.find_by_bib_numbers("city-marathon-2024", ["A12"])] == [
        created.id
    ]
