"""Value objects shared by the search strategies, fusion engine and aggregator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


MIN_LIMIT = 1
MAX_LIMIT = 20
DEFAULT_LIMIT = 10
DEFAULT_VECTOR_WEIGHT = 0.7
DEFAULT_KEYWORD_WEIGHT = 0.3

SEARCH_TYPE_VECTOR = "vector"
SEARCH_TYPE_KEYWORD = "keyword"
SEARCH_TYPE_HYBRID = "hybrid"


class InvalidQuery(ValueError):
    """Raised for caller errors detected before any backend is contacted."""


class SourceStrategy(str, Enum):
    VECTOR_PRIMARY = "vector_primary"
    VECTOR_SECONDARY = "vector_secondary"
    LEXICAL = "lexical"
    NATIVE_HYBRID = "native_hybrid"


@dataclass(frozen=True, slots=True)
class Weights:
    vector: float = DEFAULT_VECTOR_WEIGHT
    keyword: float = DEFAULT_KEYWORD_WEIGHT

    def __post_init__(self) -> None:
        for name, value in (("vector", self.vector), ("keyword", self.keyword)):
            if not 0.0 <= float(value) <= 1.0:
                raise InvalidQuery(f"weights.{name} must be between 0.0 and 1.0, got {value}")

    @property
    def vector_share(self) -> float:
        """Relative weight of the vector side, used by native hybrid backends."""

        total = self.vector + self.keyword
        if total <= 0.0:
            return 0.5
        return self.vector / total

    def to_dict(self) -> dict[str, float]:
        return {"vector": self.vector, "keyword": self.keyword}


@dataclass(frozen=True, slots=True)
class SearchFilters:
    """Optional row filters every adapter applies to what it returns."""

    year: int | None = None
    genre: str | None = None
    min_rating: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.year is None and not (self.genre and self.genre.strip()) and self.min_rating <= 0.0

    def to_dict(self) -> dict[str, int | float | str | None]:
        return {"year": self.year, "genre": self.genre, "min_rating": self.min_rating}


@dataclass(frozen=True, slots=True)
class Query:
    text: str
    backends: frozenset[str]
    limit: int = DEFAULT_LIMIT
    weights: Weights = field(default_factory=Weights)
    filters: SearchFilters | None = None

    def __post_init__(self) -> None:
        text = (self.text or "").strip()
        if not text:
            raise InvalidQuery("query text cannot be empty")
        if isinstance(self.limit, bool) or not isinstance(self.limit, int):
            raise InvalidQuery("limit must be an integer")
        if self.limit < MIN_LIMIT:
            raise InvalidQuery(f"limit must be >= {MIN_LIMIT}, got {self.limit}")

        backends = frozenset(str(backend).strip() for backend in self.backends)
        backends = frozenset(backend for backend in backends if backend)
        if not backends:
            raise InvalidQuery("at least one backend must be selected")

        object.__setattr__(self, "text", text)
        object.__setattr__(self, "limit", min(self.limit, MAX_LIMIT))
        object.__setattr__(self, "backends", backends)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "limit": self.limit,
            "backends": sorted(self.backends),
            "weights": self.weights.to_dict(),
            "filters": self.filters.to_dict() if self.filters is not None else None,
        }


@dataclass(frozen=True, slots=True)
class Candidate:
    """One entity retrieved from one backend by one strategy.

    ``raw_score`` is in the producing strategy's native scale: an L2 distance
    for vector strategies, a field-match weight (out of ``score_scale``) for
    lexical search, and an already fused [0, 1] value for native hybrid search.
    """

    backend_id: str
    id: str
    fields: Mapping[str, Any]
    raw_score: float
    source_strategy: SourceStrategy
    score_scale: float = 1.0
    popularity: float | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.backend_id, self.id)


@dataclass(frozen=True, slots=True)
class ScoredResult:
    candidate: Candidate
    vector_similarity: float
    keyword_score: float
    hybrid_score: float

    @property
    def search_type(self) -> str:
        if self.vector_similarity > 0.0 and self.keyword_score > 0.0:
            return SEARCH_TYPE_HYBRID
        if self.vector_similarity > 0.0:
            return SEARCH_TYPE_VECTOR
        return SEARCH_TYPE_KEYWORD

    def to_dict(self) -> dict[str, Any]:
        return {
            "backend_id": self.candidate.backend_id,
            "id": self.candidate.id,
            "fields": dict(self.candidate.fields),
            "source_strategy": self.candidate.source_strategy.value,
            "raw_score": self.candidate.raw_score,
            "vector_similarity": self.vector_similarity,
            "keyword_score": self.keyword_score,
            "hybrid_score": self.hybrid_score,
            "search_type": self.search_type,
        }


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    """One step of a backend's fallback chain."""

    strategy: SourceStrategy
    succeeded: bool
    error: str | None = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "succeeded": self.succeeded,
            "error": self.error,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }


@dataclass(frozen=True, slots=True)
class BackendOutcome:
    backend_id: str
    succeeded: bool
    strategy_used: SourceStrategy | None
    candidate_count: int
    error: str | None
    elapsed_ms: float
    attempts: tuple[AttemptRecord, ...] = ()
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "backend_id": self.backend_id,
            "succeeded": self.succeeded,
            "strategy_used": self.strategy_used.value if self.strategy_used is not None else None,
            "candidate_count": self.candidate_count,
            "error": self.error,
            "elapsed_ms": round(self.elapsed_ms, 2),
            "degraded": self.degraded,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }


@dataclass(frozen=True, slots=True)
class AggregateResponse:
    query: Query
    results: tuple[ScoredResult, ...]
    per_backend: Mapping[str, BackendOutcome]
    elapsed_ms: float
    embedding_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query.to_dict(),
            "results": [result.to_dict() for result in self.results],
            "total": len(self.results),
            "per_backend": {backend_id: outcome.to_dict() for backend_id, outcome in self.per_backend.items()},
            "elapsed_ms": round(self.elapsed_ms, 2),
            "embedding_error": self.embedding_error,
        }
