"""Euclidean nearest-neighbour index over movie embeddings, persisted with FAISS."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import faiss
import numpy as np


@dataclass(frozen=True, slots=True)
class NeighborHit:
    movie_id: int
    distance: float


@dataclass(slots=True)
class VectorIndexError(RuntimeError):
    index_path: Path
    message: str

    def __str__(self) -> str:
        return f"{self.message} ({self.index_path})"


def _as_matrix(vectors: np.ndarray | Sequence[Sequence[float]], *, dimension: int) -> np.ndarray:
    matrix = np.asarray(vectors, dtype=np.float32)
    if matrix.ndim != 2 or matrix.shape[0] == 0:
        raise ValueError("vectors must be a non-empty 2D array")
    if matrix.shape[1] != dimension:
        raise ValueError(f"vector dimension mismatch: expected {dimension}, got {matrix.shape[1]}")
    return np.ascontiguousarray(matrix)


class MovieVectorIndex:
    """Flat L2 index keyed by movie id.

    ``nearest`` reports true Euclidean distances, so FAISS-backed catalogs
    and the SQLite brute-force scan share one distance scale. Writes go to a
    sibling ``.tmp`` file first and replace the index atomically.
    """

    def __init__(self, index_path: str | Path, *, dimension: int, index: Any | None = None) -> None:
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self._index_path = Path(index_path)
        self._dimension = dimension
        self._index = index if index is not None else self._new_index(dimension)

    @classmethod
    def load(cls, index_path: str | Path, *, dimension: int) -> "MovieVectorIndex":
        path = Path(index_path)
        if not path.exists():
            raise VectorIndexError(path, "vector index not found")
        try:
            index = faiss.read_index(str(path))
        except RuntimeError as exc:
            raise VectorIndexError(path, f"unreadable vector index: {exc}") from exc
        if int(index.d) != dimension:
            raise VectorIndexError(path, f"vector index dimension mismatch: expected {dimension}, got {index.d}")
        return cls(path, dimension=dimension, index=index)

    @staticmethod
    def _new_index(dimension: int) -> Any:
        return faiss.IndexIDMap2(faiss.IndexFlatL2(dimension))

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def index_path(self) -> Path:
        return self._index_path

    @property
    def size(self) -> int:
        return int(self._index.ntotal)

    def upsert(self, movie_ids: Sequence[int], vectors: np.ndarray | Sequence[Sequence[float]]) -> None:
        ids = np.asarray(movie_ids, dtype=np.int64)
        matrix = _as_matrix(vectors, dimension=self._dimension)
        if ids.ndim != 1 or ids.shape[0] != matrix.shape[0]:
            raise ValueError("one movie id is required per vector")
        if np.unique(ids).size != ids.size:
            raise ValueError("movie ids must be unique within one upsert")

        self._index.remove_ids(ids)
        self._index.add_with_ids(matrix, ids)

    def reset(self) -> None:
        self._index = self._new_index(self._dimension)

    def nearest(self, query_vector: np.ndarray | Sequence[float], *, top_k: int) -> list[NeighborHit]:
        if top_k <= 0:
            raise ValueError("top_k must be positive")
        query = np.asarray(query_vector, dtype=np.float32)
        if query.shape != (self._dimension,):
            raise ValueError(f"query dimension mismatch: expected ({self._dimension},), got {query.shape}")
        if self.size == 0:
            return []

        squared, ids = self._index.search(np.ascontiguousarray(query.reshape(1, -1)), min(top_k, self.size))
        return [
            NeighborHit(movie_id=int(movie_id), distance=float(np.sqrt(max(float(value), 0.0))))
            for value, movie_id in zip(squared[0], ids[0])
            if movie_id >= 0
        ]

    def save(self) -> None:
        self._index_path.parent.mkdir(parents=True, exist_ok=True)
        staging = self._index_path.with_name(self._index_path.name + ".tmp")
        faiss.write_index(self._index, str(staging))
        staging.replace(self._index_path)
