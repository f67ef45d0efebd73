"""SQLite schema and pragmas for the movie catalog."""

from __future__ import annotations

import sqlite3


PRAGMA_BUSY_TIMEOUT_MS = 5000


def apply_runtime_pragmas(connection: sqlite3.Connection) -> None:
    """Apply runtime pragmas recommended for concurrent readers and one writer."""

    connection.execute("PRAGMA journal_mode=WAL;")
    connection.execute(f"PRAGMA busy_timeout={PRAGMA_BUSY_TIMEOUT_MS};")
    connection.execute("PRAGMA synchronous=NORMAL;")


def apply_reader_pragmas(connection: sqlite3.Connection) -> None:
    connection.execute(f"PRAGMA busy_timeout={PRAGMA_BUSY_TIMEOUT_MS};")


def _add_column_if_missing(
    connection: sqlite3.Connection,
    table: str,
    column: str,
    column_def: str,
) -> None:
    """Add a column to a table if it does not yet exist (idempotent)."""
    try:
        connection.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_def}")
    except sqlite3.OperationalError as exc:
        if "duplicate column name" not in str(exc).lower():
            raise


def ensure_schema(connection: sqlite3.Connection) -> None:
    """Create catalog tables, FTS index, and sync triggers if missing."""

    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS movies (
            id INTEGER PRIMARY KEY,
            title TEXT NOT NULL,
            original_title TEXT,
            summary TEXT,
            year INTEGER,
            genres TEXT NOT NULL DEFAULT '[]',
            directors TEXT NOT NULL DEFAULT '[]',
            actors TEXT NOT NULL DEFAULT '[]',
            rating_score REAL,
            rating_count INTEGER,
            embedding TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE VIRTUAL TABLE IF NOT EXISTS movies_fts USING fts5(
            title,
            original_title,
            summary,
            directors,
            actors,
            genres,
            content='movies',
            content_rowid='id',
            tokenize='unicode61 remove_diacritics 2'
        );

        CREATE INDEX IF NOT EXISTS idx_movies_year ON movies(year);
        CREATE INDEX IF NOT EXISTS idx_movies_rating ON movies(rating_score);

        CREATE TRIGGER IF NOT EXISTS movies_ai AFTER INSERT ON movies BEGIN
            INSERT INTO movies_fts(rowid, title, original_title, summary, directors, actors, genres)
            VALUES (new.id, new.title, new.original_title, new.summary, new.directors, new.actors, new.genres);
        END;

        CREATE TRIGGER IF NOT EXISTS movies_ad AFTER DELETE ON movies BEGIN
            INSERT INTO movies_fts(movies_fts, rowid, title, original_title, summary, directors, actors, genres)
            VALUES ('delete', old.id, old.title, old.original_title, old.summary, old.directors, old.actors, old.genres);
        END;

        CREATE TRIGGER IF NOT EXISTS movies_au
        AFTER UPDATE OF title, original_title, summary, directors, actors, genres ON movies BEGIN
            INSERT INTO movies_fts(movies_fts, rowid, title, original_title, summary, directors, actors, genres)
            VALUES ('delete', old.id, old.title, old.original_title, old.summary, old.directors, old.actors, old.genres);
            INSERT INTO movies_fts(rowid, title, original_title, summary, directors, actors, genres)
            VALUES (new.id, new.title, new.original_title, new.summary, new.directors, new.actors, new.genres);
        END;
        """
    )

    # Additive migrations: older catalogs predate per-summary vectors
    _add_column_if_missing(connection, "movies", "summary_embedding", "TEXT")
