"""Repository primitives for the SQLite movie catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
import sqlite3
from typing import Sequence

from reelsearch.catalog.schema import apply_reader_pragmas, apply_runtime_pragmas, ensure_schema


@dataclass(slots=True)
class MovieRow:
    title: str
    original_title: str | None = None
    summary: str | None = None
    year: int | None = None
    genres: list[str] = field(default_factory=list)
    directors: list[str] = field(default_factory=list)
    actors: list[str] = field(default_factory=list)
    rating_score: float | None = None
    rating_count: int | None = None
    movie_id: int | None = None


@dataclass(slots=True)
class PendingEmbeddingRow:
    movie_id: int
    title: str
    summary: str | None

    @property
    def embedding_text(self) -> str:
        return " ".join(part.strip() for part in (self.title, self.summary or "") if part and part.strip())


class CatalogRepository:
    """Thin transactional layer over the SQLite catalog schema.

    ``create_schema=False`` opens an existing catalog as-is, which is how
    search adapters read a backend whose schema they do not own.
    """

    def __init__(self, db_path: str | Path, *, create_schema: bool = True) -> None:
        self._db_path = Path(db_path)
        self._connection = sqlite3.connect(str(self._db_path))
        self._connection.row_factory = sqlite3.Row
        if create_schema:
            apply_runtime_pragmas(self._connection)
            ensure_schema(self._connection)
        else:
            apply_reader_pragmas(self._connection)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "CatalogRepository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def upsert_movies(self, movies: Sequence[MovieRow]) -> list[int]:
        """Insert or replace movies in one transaction and return their ids."""

        movie_ids: list[int] = []
        with self._connection:
            for movie in movies:
                cursor = self._connection.execute(
                    """
                    INSERT INTO movies(
                        id,
                        title,
                        original_title,
                        summary,
                        year,
                        genres,
                        directors,
                        actors,
                        rating_score,
                        rating_count
                    )
                    VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        title=excluded.title,
                        original_title=excluded.original_title,
                        summary=excluded.summary,
                        year=excluded.year,
                        genres=excluded.genres,
                        directors=excluded.directors,
                        actors=excluded.actors,
                        rating_score=excluded.rating_score,
                        rating_count=excluded.rating_count,
                        embedding=NULL,
                        summary_embedding=NULL,
                        updated_at=CURRENT_TIMESTAMP
                    """,
                    (
                        movie.movie_id,
                        movie.title,
                        movie.original_title,
                        movie.summary,
                        movie.year,
                        json.dumps(movie.genres, ensure_ascii=False),
                        json.dumps(movie.directors, ensure_ascii=False),
                        json.dumps(movie.actors, ensure_ascii=False),
                        movie.rating_score,
                        movie.rating_count,
                    ),
                )
                movie_ids.append(int(movie.movie_id) if movie.movie_id is not None else int(cursor.lastrowid))
        return movie_ids

    def list_missing_embeddings(self, *, limit: int | None = None) -> list[PendingEmbeddingRow]:
        sql = """
            SELECT id, title, summary
            FROM movies
            WHERE embedding IS NULL OR embedding = ''
            ORDER BY id ASC
        """
        params: tuple[object, ...] = ()
        if limit is not None:
            if limit <= 0:
                raise ValueError("limit must be positive")
            sql += " LIMIT ?"
            params = (limit,)

        rows = self._connection.execute(sql, params).fetchall()
        return [
            PendingEmbeddingRow(movie_id=int(row["id"]), title=row["title"], summary=row["summary"])
            for row in rows
        ]

    def update_embeddings(
        self,
        *,
        movie_id: int,
        embedding: Sequence[float],
        summary_embedding: Sequence[float] | None,
    ) -> None:
        with self._connection:
            self._connection.execute(
                "UPDATE movies SET embedding = ?, summary_embedding = ? WHERE id = ?",
                (
                    json.dumps([float(value) for value in embedding]),
                    json.dumps([float(value) for value in summary_embedding]) if summary_embedding is not None else None,
                    movie_id,
                ),
            )

    def list_embeddings(self) -> list[tuple[int, list[float]]]:
        """Return every parseable primary embedding, skipping malformed rows."""

        rows = self._connection.execute(
            """
            SELECT id, embedding
            FROM movies
            WHERE embedding IS NOT NULL AND json_valid(embedding) = 1
            ORDER BY id ASC
            """
        ).fetchall()
        return [(int(row["id"]), [float(value) for value in json.loads(row["embedding"])]) for row in rows]

    def count_movies(self) -> int:
        row = self._connection.execute("SELECT COUNT(*) AS total FROM movies").fetchone()
        return int(row["total"]) if row is not None else 0
