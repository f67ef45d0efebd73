"""SQLite catalog backend with JSON-stored vectors and tiered substring search."""

from __future__ import annotations

from contextlib import contextmanager
import logging
from pathlib import Path
import sqlite3
from typing import Iterator, Sequence

import numpy as np

from reelsearch.backends.base import BackendAdapter, QueryFailed
from reelsearch.catalog.query import (
    TIER_SCALE,
    load_vector_rows,
    rank_by_l2_distance,
    row_popularity,
    row_to_fields,
    tiered_keyword_search,
)
from reelsearch.catalog.repository import CatalogRepository
from reelsearch.hybrid.models import Candidate, SearchFilters, SourceStrategy


logger = logging.getLogger(__name__)


class CatalogAdapter(BackendAdapter):
    """Score conventions.

    * vector strategies: ``raw_score`` is the L2 distance to the query vector.
    * lexical: ``raw_score`` is 3 (title), 2 (original title) or 1 (summary)
      for the first field containing the whole query, out of 3.
    """

    def __init__(self, backend_id: str, db_path: str | Path) -> None:
        super().__init__(backend_id)
        self._db_path = Path(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _open(self, strategy: SourceStrategy) -> Iterator[sqlite3.Connection]:
        if not self._db_path.exists():
            raise QueryFailed(
                backend_id=self.backend_id,
                strategy=strategy,
                message=f"catalog database not found: {self._db_path}",
            )
        try:
            with CatalogRepository(self._db_path, create_schema=False) as repository:
                yield repository.connection
        except sqlite3.Error as exc:
            raise QueryFailed(backend_id=self.backend_id, strategy=strategy, message=str(exc)) from exc

    def vector_search(
        self,
        vector: np.ndarray,
        *,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        return self._scan_vectors(
            vector,
            column="embedding",
            strategy=SourceStrategy.VECTOR_PRIMARY,
            limit=limit,
            filters=filters,
            lenient=False,
        )

    def secondary_vector_search(
        self,
        vector: np.ndarray,
        *,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        return self._scan_vectors(
            vector,
            column="summary_embedding",
            strategy=SourceStrategy.VECTOR_SECONDARY,
            limit=limit,
            filters=filters,
            lenient=True,
        )

    def _scan_vectors(
        self,
        vector: np.ndarray,
        *,
        column: str,
        strategy: SourceStrategy,
        limit: int,
        filters: SearchFilters | None,
        lenient: bool,
    ) -> list[Candidate]:
        with self._open(strategy) as connection:
            try:
                rows = load_vector_rows(connection, column=column, filters=filters, skip_invalid=lenient)
                ranked = rank_by_l2_distance(rows, vector, limit=limit, skip_mismatched=lenient)
            except ValueError as exc:
                raise QueryFailed(backend_id=self.backend_id, strategy=strategy, message=str(exc)) from exc

        return [
            Candidate(
                backend_id=self.backend_id,
                id=str(row.movie_id),
                fields=row.fields,
                raw_score=distance,
                source_strategy=strategy,
                popularity=row.popularity,
            )
            for row, distance in ranked
        ]

    def lexical_search(
        self,
        query_text: str,
        *,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        strategy = SourceStrategy.LEXICAL
        with self._open(strategy) as connection:
            rows = tiered_keyword_search(connection, query=query_text, limit=limit, filters=filters)

        return [
            Candidate(
                backend_id=self.backend_id,
                id=str(row["id"]),
                fields=row_to_fields(row),
                raw_score=float(row["keyword_score"]),
                source_strategy=strategy,
                score_scale=TIER_SCALE,
                popularity=row_popularity(row),
            )
            for row in rows
        ]

    def health_check(self) -> bool:
        if not self._db_path.exists():
            return False
        try:
            with CatalogRepository(self._db_path, create_schema=False) as repository:
                repository.count_movies()
        except sqlite3.Error as exc:
            logger.warning("[%s] health check failed: %s", self.backend_id, exc)
            return False
        return True

    def describe(self) -> dict[str, str | bool]:
        description = super().describe()
        description["db_path"] = str(self._db_path)
        return description
