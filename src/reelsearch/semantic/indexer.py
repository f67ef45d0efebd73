"""Fill missing movie embeddings and rebuild the FAISS index."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import time
from typing import Protocol, Sequence

import numpy as np

from reelsearch.catalog.repository import CatalogRepository, PendingEmbeddingRow
from reelsearch.semantic.config import EmbeddingSettings
from reelsearch.semantic.embedder import OpenAIEmbedder
from reelsearch.semantic.vector_store import MovieVectorIndex


logger = logging.getLogger(__name__)


class _BatchEmbedder(Protocol):
    model: str
    dimensions: int

    def embed_texts(self, texts: Sequence[str], *, stage: str = "movies") -> np.ndarray:
        ...


@dataclass(slots=True)
class EmbeddingIndexStats:
    scanned_movies: int = 0
    embedded_movies: int = 0
    summary_embeddings: int = 0
    errors: int = 0
    indexed_vectors: int = 0
    duration_ms: int = 0
    model: str = ""
    error_details: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, int | str | list[dict[str, str]]]:
        return {
            "scanned_movies": self.scanned_movies,
            "embedded_movies": self.embedded_movies,
            "summary_embeddings": self.summary_embeddings,
            "errors": self.errors,
            "indexed_vectors": self.indexed_vectors,
            "duration_ms": self.duration_ms,
            "model": self.model,
            "error_details": self.error_details,
        }


def _batch_ids(batch: Sequence[PendingEmbeddingRow]) -> str:
    return ",".join(str(item.movie_id) for item in batch)


class EmbeddingIndexer:
    """Embeds movies that have no stored vector yet.

    The primary vector is built from title and summary, the secondary one
    from the summary alone. A failed batch is recorded in the stats and the
    run moves on to the next batch.
    """

    def __init__(
        self,
        *,
        repository: CatalogRepository,
        embedder: _BatchEmbedder,
        index_path: str | Path | None = None,
        batch_size: int = 32,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self._repository = repository
        self._embedder = embedder
        self._index_path = Path(index_path) if index_path is not None else None
        self._batch_size = batch_size

    @classmethod
    def from_db_path(
        cls,
        *,
        db_path: str | Path,
        index_path: str | Path | None = None,
        settings: EmbeddingSettings | None = None,
        batch_size: int = 32,
    ) -> "EmbeddingIndexer":
        resolved_settings = settings or EmbeddingSettings.from_env()
        return cls(
            repository=CatalogRepository(db_path),
            embedder=OpenAIEmbedder(resolved_settings),
            index_path=index_path,
            batch_size=batch_size,
        )

    def close(self) -> None:
        self._repository.close()

    def __enter__(self) -> "EmbeddingIndexer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def index_missing(self, *, limit: int | None = None) -> EmbeddingIndexStats:
        started = time.perf_counter()
        stats = EmbeddingIndexStats(model=self._embedder.model)

        pending = self._repository.list_missing_embeddings(limit=limit)
        stats.scanned_movies = len(pending)

        for start in range(0, len(pending), self._batch_size):
            batch = pending[start : start + self._batch_size]
            self._index_batch(batch, stats)

        if self._index_path is not None:
            stats.indexed_vectors = self.rebuild_index()

        stats.duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "Embedded %d/%d movie(s) with %s, %d error(s)",
            stats.embedded_movies,
            stats.scanned_movies,
            stats.model,
            stats.errors,
        )
        return stats

    def _index_batch(self, batch: Sequence[PendingEmbeddingRow], stats: EmbeddingIndexStats) -> None:
        texts = [item.embedding_text for item in batch]
        summaries = [(position, item.summary.strip()) for position, item in enumerate(batch) if item.summary and item.summary.strip()]

        try:
            vectors = self._embedder.embed_texts(texts, stage="movies")
            summary_vectors = (
                self._embedder.embed_texts([text for _, text in summaries], stage="summaries") if summaries else None
            )
        except Exception as exc:
            logger.warning("Embedding batch failed for movie ids %s: %s", _batch_ids(batch), exc)
            stats.errors += len(batch)
            stats.error_details.append({"stage": "embed_texts", "movie_ids": _batch_ids(batch), "error": str(exc)})
            return

        if vectors.shape[0] != len(batch):
            stats.errors += len(batch)
            stats.error_details.append(
                {
                    "stage": "embed_texts",
                    "movie_ids": _batch_ids(batch),
                    "error": f"Embedding count mismatch: expected {len(batch)}, got {vectors.shape[0]}",
                }
            )
            return

        summary_by_position: dict[int, np.ndarray] = {}
        if summary_vectors is not None:
            summary_by_position = {position: summary_vectors[offset] for offset, (position, _) in enumerate(summaries)}

        for position, item in enumerate(batch):
            summary_vector = summary_by_position.get(position)
            self._repository.update_embeddings(
                movie_id=item.movie_id,
                embedding=vectors[position].tolist(),
                summary_embedding=summary_vector.tolist() if summary_vector is not None else None,
            )
            if summary_vector is not None:
                stats.summary_embeddings += 1
        stats.embedded_movies += len(batch)

    def rebuild_index(self) -> int:
        """Rewrite the FAISS index from every stored primary embedding.

        The index takes the configured embedding dimension; stale rows of any
        other size are left out.
        """

        if self._index_path is None:
            raise ValueError("index_path is not configured")

        stored = self._repository.list_embeddings()
        if not stored:
            logger.info("No stored embeddings, skipping index rebuild")
            return 0

        dimension = self._embedder.dimensions
        usable = [(movie_id, vector) for movie_id, vector in stored if len(vector) == dimension]
        if len(usable) != len(stored):
            logger.warning("Skipped %d embedding(s) with a mismatched dimension", len(stored) - len(usable))

        index = MovieVectorIndex(self._index_path, dimension=dimension)
        if usable:
            index.upsert(
                [movie_id for movie_id, _ in usable],
                np.asarray([vector for _, vector in usable], dtype=np.float32),
            )
        index.save()
        return index.size
