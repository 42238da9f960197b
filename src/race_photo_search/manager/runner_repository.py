"""CRUD operations for event runner rosters in DuckDB."""

import logging

import duckdb

from race_photo_search.models import Runner

logger = logging.getLogger(__name__)

_RUNNER_COLUMNS = "id, event_id, bib_number, full_name, category, team, auto_detected, created_at"


def insert_runners(conn: duckdb.DuckDBPyConnection, runners: list[Runner]) -> int:
    """Bulk insert roster entries, skipping bib numbers already registered.

    Returns the number of runners actually inserted.
    """
    before = _count_runners(conn)
    for runner in runners:
        conn.execute(
            """
            INSERT INTO runners (event_id, bib_number, full_name, category, team, auto_detected)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (event_id, bib_number) DO NOTHING
            """,
            [
                runner.event_id,
                runner.bib_number,
                runner.full_name,
                runner.category,
                runner.team,
                runner.auto_detected,
            ],
        )
    return _count_runners(conn) - before


def find_runners_by_bib_numbers(
    conn: duckdb.DuckDBPyConnection, event_id: str, bib_numbers: list[str]
) -> list[Runner]:
    """Return runners of an event whose bib number is in the given list."""
    if not bib_numbers:
        return []
    placeholders = ", ".join(["?"] * len(bib_numbers))
    rows = conn.execute(
        f"""
        SELECT {_RUNNER_COLUMNS} FROM runners
        WHERE event_id = ? AND bib_number IN ({placeholders})
        ORDER BY id
        """,
        [event_id, *bib_numbers],
    ).fetchall()
    return [_row_to_runner(row) for row in rows]


def get_runner_by_bib(
    conn: duckdb.DuckDBPyConnection, event_id: str, bib_number: str
) -> Runner | None:
    """Look up a single runner by event and bib number."""
    row = conn.execute(
        f"SELECT {_RUNNER_COLUMNS} FROM runners WHERE event_id = ? AND bib_number = ?",
        [event_id, bib_number],
    ).fetchone()
    if row is None:
        return None
    return _row_to_runner(row)


def create_auto_runner(
    conn: duckdb.DuckDBPyConnection, event_id: str, bib_number: str
) -> Runner:
    """Create a placeholder runner for a bib seen in a photo but absent from the roster.

    Returns the existing runner when another run created it first.
    """
    existing = get_runner_by_bib(conn, event_id, bib_number)
    if existing is not None:
        return existing
    try:
        row = conn.execute(
            f"""
            INSERT INTO runners (event_id, bib_number, full_name, auto_detected)
            VALUES (?, ?, ?, true)
            RETURNING {_RUNNER_COLUMNS}
            """,
            [event_id, bib_number, placeholder_name(bib_number)],
        ).fetchone()
    except duckdb.ConstraintException:
        logger.debug("Runner %s/%s created concurrently", event_id, bib_number)
        runner = get_runner_by_bib(conn, event_id, bib_number)
        if runner is None:
            raise
        return runner
    logger.info("Created auto-detected runner for bib %s in event %s", bib_number, event_id)
    return _row_to_runner(row)


def list_runners(
    conn: duckdb.DuckDBPyConnection, event_id: str, search: str | None = None
) -> list[Runner]:
    """List runners of an event, optionally filtered by bib or name substring."""
    query = f"SELECT {_RUNNER_COLUMNS} FROM runners WHERE event_id = ?"
    params: list = [event_id]
    if search:
        query += " AND (bib_number ILIKE ? OR full_name ILIKE ?)"
        params.extend([f"%{search}%", f"%{search}%"])
    query += " ORDER BY bib_number"
    rows = conn.execute(query, params).fetchall()
    return [_row_to_runner(row) for row in rows]


def placeholder_name(bib_number: str) -> str:
    return f"Bib {bib_number}"


class RunnerRegistry:
    """Runner lookup and creation bound to one connection."""

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self.conn = conn

    def find_by_bib_numbers(self, event_id: str, bib_numbers: list[str]) -> list[Runner]:
        return find_runners_by_bib_numbers(self.conn, event_id, bib_numbers)

    def create(self, event_id: str, bib_number: str) -> Runner:
        return create_auto_runner(self.conn, event_id, bib_number)


def _count_runners(conn: duckdb.DuckDBPyConnection) -> int:
    row = conn.execute("SELECT COUNT(*) FROM runners").fetchone()
    return row[0] if row else 0


def _row_to_runner(row: tuple) -> Runner:
    return Runner(
        id=row[0],
        event_id=row[1],
        bib_number=row[2],
        full_name=row[3],
        category=row[4],
        team=row[5],
        auto_detected=bool(row[6]),
        created_at=row[7],
    )
