"""Shared DuckDB connection factory."""

from collections.abc import Iterator
from contextlib import contextmanager

import duckdb

from race_photo_search.config import DB_PATH


def get_connection(db_path: str | None = None) -> duckdb.DuckDBPyConnection:
    """Open a DuckDB connection. Defaults to the project-root DB file."""
    path = db_path or str(DB_PATH)
    conn = duckdb.connect(path)

    from race_photo_search.manager.schema import ensure_schema

    ensure_schema(conn)
    return conn


@contextmanager
def transaction(conn: duckdb.DuckDBPyConnection) -> Iterator[duckdb.DuckDBPyConnection]:
    """Run the enclosed statements in one transaction, rolling back on error."""
    conn.begin()
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    conn.commit()
