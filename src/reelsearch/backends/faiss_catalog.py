"""Catalog backend with a FAISS vector index, FTS5 text search and native RRF fusion."""

from __future__ import annotations

from contextlib import contextmanager
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Any, Iterator, Sequence

import numpy as np

from reelsearch.backends.base import BackendAdapter, QueryFailed
from reelsearch.catalog.query import (
    FIELD_WEIGHT_SCALE,
    MOVIE_COLUMNS,
    extract_terms,
    field_match_weight,
    fts_keyword_search,
    load_vector_rows,
    matches_filters,
    rank_by_l2_distance,
    row_popularity,
    row_to_fields,
)
from reelsearch.catalog.repository import CatalogRepository
from reelsearch.hybrid.models import Candidate, SearchFilters, SourceStrategy
from reelsearch.semantic.vector_store import MovieVectorIndex, VectorIndexError


DEFAULT_RRF_K = 60
DEFAULT_NUM_CANDIDATES = 100

logger = logging.getLogger(__name__)


class FaissCatalogAdapter(BackendAdapter):
    """Score conventions.

    * vector strategies: ``raw_score`` is the L2 distance to the query vector.
    * lexical: ``raw_score`` is the weighted count of matching fields
      (title 3, original title 2, summary 1) out of 6.
    * native hybrid: ``raw_score`` is weighted RRF divided by its best
      attainable value, already in [0, 1].
    """

    supports_native_hybrid = True

    def __init__(
        self,
        backend_id: str,
        db_path: str | Path,
        index_path: str | Path,
        *,
        dimension: int,
        rrf_k: int = DEFAULT_RRF_K,
        num_candidates: int = DEFAULT_NUM_CANDIDATES,
    ) -> None:
        super().__init__(backend_id)
        if rrf_k <= 0:
            raise ValueError("rrf_k must be positive")
        if num_candidates <= 0:
            raise ValueError("num_candidates must be positive")
        self._db_path = Path(db_path)
        self._index_path = Path(index_path)
        self._dimension = dimension
        self._rrf_k = rrf_k
        self._num_candidates = num_candidates
        self._store: MovieVectorIndex | None = None
        self._store_lock = threading.Lock()

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

    def _vector_store(self, strategy: SourceStrategy) -> MovieVectorIndex:
        with self._store_lock:
            if self._store is None:
                try:
                    self._store = MovieVectorIndex.load(self._index_path, dimension=self._dimension)
                except VectorIndexError as exc:
                    raise QueryFailed(backend_id=self.backend_id, strategy=strategy, message=str(exc)) from exc
            return self._store

    def _knn(
        self,
        vector: np.ndarray,
        *,
        strategy: SourceStrategy,
        top_k: int,
        filters: SearchFilters | None,
    ) -> list[tuple[int, float, dict[str, Any], float | None]]:
        store = self._vector_store(strategy)
        pool = top_k
        if filters is not None and not filters.is_empty:
            pool = max(pool, store.size)
        try:
            hits = store.nearest(vector, top_k=pool)
        except ValueError as exc:
            raise QueryFailed(backend_id=self.backend_id, strategy=strategy, message=str(exc)) from exc
        if not hits:
            return []

        with self._open(strategy) as connection:
            by_id = self._fetch_rows(connection, [hit.movie_id for hit in hits])

        results: list[tuple[int, float, dict[str, Any], float | None]] = []
        for hit in hits:
            row = by_id.get(hit.movie_id)
            if row is None:
                continue
            fields = row_to_fields(row)
            if not matches_filters(fields, filters):
                continue
            results.append((hit.movie_id, hit.distance, fields, row_popularity(row)))
            if len(results) >= top_k:
                break
        return results

    @staticmethod
    def _fetch_rows(connection: sqlite3.Connection, movie_ids: list[int]) -> dict[int, sqlite3.Row]:
        placeholders = ",".join("?" for _ in movie_ids)
        rows = connection.execute(
            f"SELECT {MOVIE_COLUMNS} FROM movies m WHERE m.id IN ({placeholders})",
            tuple(movie_ids),
        ).fetchall()
        return {int(row["id"]): row for row in rows}

    def vector_search(
        self,
        vector: np.ndarray,
        *,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        strategy = SourceStrategy.VECTOR_PRIMARY
        return [
            Candidate(
                backend_id=self.backend_id,
                id=str(movie_id),
                fields=fields,
                raw_score=distance,
                source_strategy=strategy,
                popularity=popularity,
            )
            for movie_id, distance, fields, popularity in self._knn(
                vector, strategy=strategy, top_k=limit, filters=filters
            )
        ]

    def secondary_vector_search(
        self,
        vector: np.ndarray,
        *,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        strategy = SourceStrategy.VECTOR_SECONDARY
        with self._open(strategy) as connection:
            rows = load_vector_rows(connection, column="summary_embedding", filters=filters, skip_invalid=True)
        ranked = rank_by_l2_distance(rows, vector, limit=limit, skip_mismatched=True)
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

    def _keyword_rows(
        self,
        query_text: str,
        *,
        strategy: SourceStrategy,
        limit: int,
        filters: SearchFilters | None,
    ) -> list[sqlite3.Row]:
        with self._open(strategy) as connection:
            return fts_keyword_search(connection, query=query_text, limit=limit, filters=filters)

    def lexical_search(
        self,
        query_text: str,
        *,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        strategy = SourceStrategy.LEXICAL
        terms = extract_terms(query_text)
        rows = self._keyword_rows(query_text, strategy=strategy, limit=max(limit, self._num_candidates), filters=filters)

        scored: list[tuple[int, float, int, Candidate]] = []
        for position, row in enumerate(rows):
            fields = row_to_fields(row)
            weight = field_match_weight(fields, terms)
            if weight <= 0:
                continue
            popularity = row_popularity(row)
            scored.append(
                (
                    -weight,
                    -(popularity or 0.0),
                    position,
                    Candidate(
                        backend_id=self.backend_id,
                        id=str(row["id"]),
                        fields=fields,
                        raw_score=float(weight),
                        source_strategy=strategy,
                        score_scale=FIELD_WEIGHT_SCALE,
                        popularity=popularity,
                    ),
                )
            )
        scored.sort(key=lambda item: item[:3])
        return [item[3] for item in scored[:limit]]

    def native_hybrid_search(
        self,
        query_text: str,
        vector: np.ndarray,
        *,
        limit: int,
        hybrid_weight: float,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        strategy = SourceStrategy.NATIVE_HYBRID
        if not 0.0 <= hybrid_weight <= 1.0:
            raise QueryFailed(
                backend_id=self.backend_id,
                strategy=strategy,
                message=f"hybrid_weight must be between 0.0 and 1.0, got {hybrid_weight}",
            )

        vector_hits = self._knn(vector, strategy=strategy, top_k=self._num_candidates, filters=filters)
        keyword_rows = self._keyword_rows(query_text, strategy=strategy, limit=self._num_candidates, filters=filters)

        fused: dict[int, float] = {}
        payload: dict[int, tuple[dict[str, Any], float | None]] = {}
        for rank, (movie_id, _distance, fields, popularity) in enumerate(vector_hits, start=1):
            fused[movie_id] = fused.get(movie_id, 0.0) + hybrid_weight / (self._rrf_k + rank)
            payload.setdefault(movie_id, (fields, popularity))
        for rank, row in enumerate(keyword_rows, start=1):
            movie_id = int(row["id"])
            fused[movie_id] = fused.get(movie_id, 0.0) + (1.0 - hybrid_weight) / (self._rrf_k + rank)
            payload.setdefault(movie_id, (row_to_fields(row), row_popularity(row)))

        best_attainable = 1.0 / (self._rrf_k + 1)
        ordered = sorted(fused, key=lambda movie_id: (-fused[movie_id], movie_id))[:limit]
        return [
            Candidate(
                backend_id=self.backend_id,
                id=str(movie_id),
                fields=payload[movie_id][0],
                raw_score=min(1.0, fused[movie_id] / best_attainable),
                source_strategy=strategy,
                popularity=payload[movie_id][1],
            )
            for movie_id in ordered
        ]

    def health_check(self) -> bool:
        if not self._db_path.exists() or not self._index_path.exists():
            return False
        try:
            with CatalogRepository(self._db_path, create_schema=False) as repository:
                repository.count_movies()
            self._vector_store(SourceStrategy.VECTOR_PRIMARY)
        except (sqlite3.Error, QueryFailed) as exc:
            logger.warning("[%s] health check failed: %s", self.backend_id, exc)
            return False
        return True

    def describe(self) -> dict[str, str | bool]:
        description = super().describe()
        description["db_path"] = str(self._db_path)
        description["index_path"] = str(self._index_path)
        return description
