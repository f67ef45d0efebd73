"""Query models and score fusion for aggregated hybrid search."""

from .models import (
    AggregateResponse,
    BackendOutcome,
    Candidate,
    InvalidQuery,
    Query,
    ScoredResult,
    SearchFilters,
    SourceStrategy,
    Weights,
)
from .scoring import fuse_candidates, hybrid_score, normalize_candidate

__all__ = [
    "AggregateResponse",
    "BackendOutcome",
    "Candidate",
    "InvalidQuery",
    "Query",
    "ScoredResult",
    "SearchFilters",
    "SourceStrategy",
    "Weights",
    "fuse_candidates",
    "hybrid_score",
    "normalize_candidate",
]
