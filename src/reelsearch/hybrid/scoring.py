"""Score normalization and fusion utilities for hybrid search."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from reelsearch.hybrid.models import Candidate, ScoredResult, SourceStrategy, Weights


VECTOR_STRATEGIES = frozenset({SourceStrategy.VECTOR_PRIMARY, SourceStrategy.VECTOR_SECONDARY})


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


def distance_to_similarity(distance: float) -> float:
    """Map an L2/cosine distance (lower is better) onto [0..1] similarity."""

    return _clamp_unit(1.0 - float(distance))


def normalize_keyword_score(raw_score: float, *, scale: float) -> float:
    """Divide a weighted field-match count by the maximum attainable weight."""

    if scale <= 0.0:
        raise ValueError("keyword score scale must be positive")
    return _clamp_unit(float(raw_score) / scale)


def normalize_candidate(candidate: Candidate) -> tuple[float, float, float]:
    """Return (vector_similarity, keyword_score, native_score) for one candidate."""

    strategy = candidate.source_strategy
    if strategy in VECTOR_STRATEGIES:
        return distance_to_similarity(candidate.raw_score), 0.0, 0.0
    if strategy is SourceStrategy.LEXICAL:
        return 0.0, normalize_keyword_score(candidate.raw_score, scale=candidate.score_scale), 0.0
    if strategy is SourceStrategy.NATIVE_HYBRID:
        return 0.0, 0.0, _clamp_unit(candidate.raw_score)
    raise ValueError(f"Unknown source strategy: {strategy}")


def hybrid_score(vector_similarity: float, keyword_score: float, weights: Weights) -> float:
    return vector_similarity * weights.vector + keyword_score * weights.keyword


@dataclass(slots=True)
class _MergedEntry:
    candidate: Candidate
    position: int
    vector: float = 0.0
    keyword: float = 0.0
    native: float = 0.0
    popularity: float | None = None

    def absorb(self, vector: float, keyword: float, native: float, popularity: float | None) -> None:
        self.vector = max(self.vector, vector)
        self.keyword = max(self.keyword, keyword)
        self.native = max(self.native, native)
        if popularity is not None and (self.popularity is None or popularity > self.popularity):
            self.popularity = popularity

    def to_result(self, weights: Weights) -> ScoredResult:
        weighted = hybrid_score(self.vector, self.keyword, weights)
        # Native hybrid rankings arrive fused and are not re-weighted.
        return ScoredResult(
            candidate=self.candidate,
            vector_similarity=max(self.vector, self.native),
            keyword_score=max(self.keyword, self.native),
            hybrid_score=max(weighted, self.native),
        )


def merge_candidates(candidates: Iterable[Candidate]) -> list[_MergedEntry]:
    """Merge candidates sharing ``(backend_id, id)`` keeping each component's best value.

    Identity is never assumed across backends.
    """

    merged: dict[tuple[str, str], _MergedEntry] = {}
    for position, candidate in enumerate(candidates):
        vector, keyword, native = normalize_candidate(candidate)
        entry = merged.get(candidate.key)
        if entry is None:
            entry = _MergedEntry(candidate=candidate, position=position)
            merged[candidate.key] = entry
        entry.absorb(vector, keyword, native, candidate.popularity)
    return list(merged.values())


def _ordering_key(result: ScoredResult, entry: _MergedEntry) -> tuple[float, int, float, int]:
    has_popularity = entry.popularity is not None
    return (
        -float(result.hybrid_score),
        0 if has_popularity else 1,
        -float(entry.popularity) if has_popularity else 0.0,
        entry.position,
    )


def truncate_per_backend(candidates: Sequence[Candidate], *, limit: int) -> list[Candidate]:
    if limit <= 0:
        raise ValueError("limit must be positive")
    return list(candidates[:limit])


def fuse_candidates(
    candidates: Iterable[Candidate],
    *,
    weights: Weights,
    limit: int,
) -> list[ScoredResult]:
    """Normalize, deduplicate, score and deterministically order candidates."""

    if limit <= 0:
        raise ValueError("limit must be positive")

    entries = merge_candidates(candidates)
    scored = [(entry.to_result(weights), entry) for entry in entries]
    scored.sort(key=lambda pair: _ordering_key(*pair))
    return [result for result, _ in scored[:limit]]
