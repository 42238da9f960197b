"""DuckDB schema definition and migration."""

import duckdb


def ensure_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create tables and indexes if they do not exist."""
    conn.execute("CREATE SEQUENCE IF NOT EXISTS photos_id_seq START 1")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS photos (
            id                INTEGER PRIMARY KEY DEFAULT nextval('photos_id_seq'),
            event_id          VARCHAR NOT NULL,
            image_url         VARCHAR,
            relative_path     VARCHAR,
            original_filename VARCHAR,
            width             INTEGER,
            height            INTEGER,
            file_size_bytes   BIGINT,
            status            VARCHAR NOT NULL DEFAULT 'pending',
            created_at        TIMESTAMP DEFAULT current_timestamp
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_photos_event ON photos(event_id)")

    conn.execute("CREATE SEQUENCE IF NOT EXISTS runners_id_seq START 1")
    conn.execute("""
        CREATE TABLE IF NOT EXISTS runners (
            id            INTEGER PRIMARY KEY DEFAULT nextval('runners_id_seq'),
            event_id      VARCHAR NOT NULL,
            bib_number    VARCHAR NOT NULL,
            full_name     VARCHAR NOT NULL,
            category      VARCHAR,
            team          VARCHAR,
            auto_detected BOOLEAN NOT NULL DEFAULT false,
            created_at    TIMESTAMP DEFAULT current_timestamp,
            UNIQUE (event_id, bib_number)
        )
    """)

    # photo_tags: one row per (photo, runner). The pair is kept unique by the
    # insert statement rather than a constraint so that auto tags can be
    # deleted and re-inserted inside a single transaction.
    conn.execute("""
        CREATE TABLE IF NOT EXISTS photo_tags (
            tag_id      VARCHAR PRIMARY KEY,
            photo_id    INTEGER NOT NULL,
            runner_id   INTEGER NOT NULL,
            confidence  FLOAT NOT NULL,
            source      VARCHAR NOT NULL,
            created_at  TIMESTAMP DEFAULT current_timestamp
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tags_photo ON photo_tags(photo_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_tags_runner ON photo_tags(runner_id)")

    # face_embeddings table (1:N relationship with photos). Exactly one of the
    # vector columns is set, matching dim.
    conn.execute("""
        CREATE TABLE IF NOT EXISTS face_embeddings (
            face_id       VARCHAR PRIMARY KEY,
            photo_id      INTEGER NOT NULL,
            model_name    VARCHAR NOT NULL,
            dim           INTEGER NOT NULL,
            embedding_128 FLOAT[128],
            embedding_512 FLOAT[512],
            bbox_x        FLOAT NOT NULL,
            bbox_y        FLOAT NOT NULL,
            bbox_width    FLOAT NOT NULL,
            bbox_height   FLOAT NOT NULL,
            det_score     FLOAT NOT NULL,
            created_at    TIMESTAMP DEFAULT current_timestamp
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_face_photo_id ON face_embeddings(photo_id)")

    # face_scanned_photos tracks which photos have been scanned, including
    # those with zero faces detected
    conn.execute("""
        CREATE TABLE IF NOT EXISTS face_scanned_photos (
            photo_id    INTEGER NOT NULL,
            model_name  VARCHAR NOT NULL,
            face_count  INTEGER NOT NULL DEFAULT 0,
            scanned_at  TIMESTAMP DEFAULT current_timestamp,
            PRIMARY KEY (photo_id, model_name)
        )
    """)

    _migrate(conn)


def _migrate(conn: duckdb.DuckDBPyConnection) -> None:
    """Add columns that may not exist in older schemas."""
    migrations = [
        "ALTER TABLE runners ADD COLUMN IF NOT EXISTS category VARCHAR",
        "ALTER TABLE runners ADD COLUMN IF NOT EXISTS team VARCHAR",
        "ALTER TABLE photos ADD COLUMN IF NOT EXISTS original_filename VARCHAR",
    ]
    for sql in migrations:
        conn.execute(sql)
