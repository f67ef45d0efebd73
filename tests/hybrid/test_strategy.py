from __future__ import annotations

from typing import Sequence

import numpy as np
import pytest

from reelsearch.backends.base import BackendAdapter, QueryFailed
from reelsearch.hybrid.models import Candidate, Query, SearchFilters, SourceStrategy
from reelsearch.hybrid.strategy import ChainState, Deadline, SearchStrategy, initial_state


class _ScriptedAdapter(BackendAdapter):
    """Each strategy either fails or returns ``count`` candidates."""

    def __init__(
        self,
        backend_id: str,
        *,
        failing: set[SourceStrategy] = frozenset(),
        count: int = 3,
        native: bool = False,
        native_unsupported: bool = False,
    ) -> None:
        super().__init__(backend_id)
        self.supports_native_hybrid = native
        self._native_unsupported = native_unsupported
        self._failing = set(failing)
        self._count = count
        self.calls: list[SourceStrategy] = []
        self.last_kwargs: dict[str, object] = {}

    def _respond(self, strategy: SourceStrategy, **kwargs) -> list[Candidate]:
        self.calls.append(strategy)
        self.last_kwargs = kwargs
        if strategy in self._failing:
            raise QueryFailed(backend_id=self.backend_id, strategy=strategy, message=f"{strategy.value} broke")
        return [
            Candidate(
                backend_id=self.backend_id,
                id=str(index),
                fields={"title": f"movie {index}"},
                raw_score=0.1 * index,
                source_strategy=strategy,
            )
            for index in range(self._count)
        ]

    def vector_search(self, vector, *, limit, filters=None) -> Sequence[Candidate]:
        return self._respond(SourceStrategy.VECTOR_PRIMARY, limit=limit, filters=filters)

    def secondary_vector_search(self, vector, *, limit, filters=None) -> Sequence[Candidate]:
        return self._respond(SourceStrategy.VECTOR_SECONDARY, limit=limit, filters=filters)

    def lexical_search(self, query_text, *, limit, filters=None) -> Sequence[Candidate]:
        return self._respond(SourceStrategy.LEXICAL, limit=limit, filters=filters)

    def native_hybrid_search(self, query_text, vector, *, limit, hybrid_weight, filters=None) -> Sequence[Candidate]:
        if self._native_unsupported:
            return super().native_hybrid_search(
                query_text, vector, limit=limit, hybrid_weight=hybrid_weight, filters=filters
            )
        return self._respond(SourceStrategy.NATIVE_HYBRID, limit=limit, hybrid_weight=hybrid_weight, filters=filters)


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _query(limit: int = 5, filters: SearchFilters | None = None) -> Query:
    return Query(text="space opera", backends=frozenset({"main"}), limit=limit, filters=filters)


def _vector() -> np.ndarray:
    return np.asarray([0.1, 0.2, 0.3], dtype=np.float32)


def test_initial_state_depends_on_vector_and_native_support() -> None:
    assert initial_state(_ScriptedAdapter("a"), None) is ChainState.TRY_LEXICAL
    assert initial_state(_ScriptedAdapter("a"), _vector()) is ChainState.TRY_VECTOR_PRIMARY
    assert initial_state(_ScriptedAdapter("a", native=True), _vector()) is ChainState.TRY_NATIVE_HYBRID


def test_primary_vector_success_stops_the_chain() -> None:
    adapter = _ScriptedAdapter("main")

    run = SearchStrategy(adapter).run(_query(), _vector())

    assert adapter.calls == [SourceStrategy.VECTOR_PRIMARY]
    assert run.outcome.succeeded is True
    assert run.outcome.strategy_used is SourceStrategy.VECTOR_PRIMARY
    assert run.outcome.candidate_count == 3
    assert run.outcome.degraded is False
    assert len(run.candidates) == 3


def test_vector_failures_fall_back_to_lexical() -> None:
    adapter = _ScriptedAdapter(
        "main",
        failing={SourceStrategy.VECTOR_PRIMARY, SourceStrategy.VECTOR_SECONDARY},
    )

    run = SearchStrategy(adapter).run(_query(), _vector())

    assert adapter.calls == [
        SourceStrategy.VECTOR_PRIMARY,
        SourceStrategy.VECTOR_SECONDARY,
        SourceStrategy.LEXICAL,
    ]
    assert run.outcome.succeeded is True
    assert run.outcome.strategy_used is SourceStrategy.LEXICAL
    assert [attempt.succeeded for attempt in run.outcome.attempts] == [False, False, True]
    assert "vector_primary broke" in (run.outcome.attempts[0].error or "")


def test_exhausted_chain_reports_last_error() -> None:
    adapter = _ScriptedAdapter(
        "main",
        failing={SourceStrategy.VECTOR_PRIMARY, SourceStrategy.VECTOR_SECONDARY, SourceStrategy.LEXICAL},
    )

    run = SearchStrategy(adapter).run(_query(), _vector())

    assert run.outcome.succeeded is False
    assert run.outcome.strategy_used is None
    assert run.outcome.candidate_count == 0
    assert run.candidates == ()
    assert "lexical broke" in (run.outcome.error or "")
    assert len(run.outcome.attempts) == 3


def test_unsupported_native_hybrid_falls_back_silently() -> None:
    adapter = _ScriptedAdapter(
        "main",
        native=True,
        native_unsupported=True,
        failing={SourceStrategy.VECTOR_PRIMARY},
    )

    run = SearchStrategy(adapter).run(_query(), _vector())

    assert adapter.calls == [SourceStrategy.VECTOR_PRIMARY, SourceStrategy.VECTOR_SECONDARY]
    assert run.outcome.succeeded is True
    assert run.outcome.strategy_used is SourceStrategy.VECTOR_SECONDARY
    assert run.outcome.attempts[0].strategy is SourceStrategy.NATIVE_HYBRID
    assert run.outcome.attempts[0].succeeded is False


def test_native_hybrid_receives_normalized_vector_share() -> None:
    adapter = _ScriptedAdapter("back", native=True)
    query = Query(text="solaris", backends=frozenset({"back"}))

    run = SearchStrategy(adapter).run(query, _vector())

    assert adapter.calls == [SourceStrategy.NATIVE_HYBRID]
    assert run.outcome.strategy_used is SourceStrategy.NATIVE_HYBRID
    assert adapter.last_kwargs["hybrid_weight"] == pytest.approx(0.7)


def test_native_hybrid_failure_enters_standard_chain() -> None:
    adapter = _ScriptedAdapter("back", native=True, failing={SourceStrategy.NATIVE_HYBRID})

    run = SearchStrategy(adapter).run(_query(), _vector())

    assert adapter.calls == [SourceStrategy.NATIVE_HYBRID, SourceStrategy.VECTOR_PRIMARY]
    assert run.outcome.strategy_used is SourceStrategy.VECTOR_PRIMARY


def test_missing_vector_starts_at_lexical_and_marks_degraded() -> None:
    adapter = _ScriptedAdapter("main", native=True)
    filters = SearchFilters(genre="sci-fi")

    run = SearchStrategy(adapter).run(_query(filters=filters), None)

    assert adapter.calls == [SourceStrategy.LEXICAL]
    assert adapter.last_kwargs["filters"] == filters
    assert run.outcome.degraded is True
    assert run.outcome.strategy_used is SourceStrategy.LEXICAL


def test_candidates_are_truncated_to_query_limit() -> None:
    adapter = _ScriptedAdapter("main", count=12)

    run = SearchStrategy(adapter).run(_query(limit=4), _vector())

    assert run.outcome.candidate_count == 4
    assert [candidate.id for candidate in run.candidates] == ["0", "1", "2", "3"]


def test_empty_result_counts_as_success() -> None:
    adapter = _ScriptedAdapter("main", count=0)

    run = SearchStrategy(adapter).run(_query(), _vector())

    assert run.outcome.succeeded is True
    assert run.outcome.candidate_count == 0
    assert adapter.calls == [SourceStrategy.VECTOR_PRIMARY]


def test_expired_deadline_stops_before_next_attempt() -> None:
    clock = _FakeClock()
    deadline = Deadline(5.0, clock=clock)
    adapter = _ScriptedAdapter("main", failing={SourceStrategy.VECTOR_PRIMARY})

    original = adapter._respond

    def _slow_respond(strategy: SourceStrategy, **kwargs) -> list[Candidate]:
        clock.now += 10.0
        return original(strategy, **kwargs)

    adapter._respond = _slow_respond  # type: ignore[method-assign]

    run = SearchStrategy(adapter).run(_query(), _vector(), deadline=deadline)

    assert adapter.calls == [SourceStrategy.VECTOR_PRIMARY]
    assert run.outcome.succeeded is False
    assert run.outcome.error == "timeout"


def test_deadline_rejects_non_positive_budget() -> None:
    with pytest.raises(ValueError, match="positive"):
        Deadline(0)

    clock = _FakeClock()
    deadline = Deadline(2.0, clock=clock)
    assert deadline.remaining() == pytest.approx(2.0)
    clock.now += 3.0
    assert deadline.remaining() == 0.0
    assert deadline.expired
