"""Per-backend fallback chain: native hybrid -> vector -> summary vector -> lexical."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
import time
from typing import Callable, Sequence

import numpy as np

from reelsearch.backends.base import BackendAdapter, QueryFailed, Unsupported
from reelsearch.hybrid.models import (
    AttemptRecord,
    BackendOutcome,
    Candidate,
    Query,
    SourceStrategy,
)
from reelsearch.hybrid.scoring import truncate_per_backend


TIMEOUT_ERROR = "timeout"

logger = logging.getLogger(__name__)


class ChainState(str, Enum):
    TRY_NATIVE_HYBRID = "try_native_hybrid"
    TRY_VECTOR_PRIMARY = "try_vector_primary"
    TRY_VECTOR_SECONDARY = "try_vector_secondary"
    TRY_LEXICAL = "try_lexical"
    DONE = "done"


_NEXT_STATE: dict[ChainState, ChainState] = {
    ChainState.TRY_NATIVE_HYBRID: ChainState.TRY_VECTOR_PRIMARY,
    ChainState.TRY_VECTOR_PRIMARY: ChainState.TRY_VECTOR_SECONDARY,
    ChainState.TRY_VECTOR_SECONDARY: ChainState.TRY_LEXICAL,
    ChainState.TRY_LEXICAL: ChainState.DONE,
}

_STATE_STRATEGY: dict[ChainState, SourceStrategy] = {
    ChainState.TRY_NATIVE_HYBRID: SourceStrategy.NATIVE_HYBRID,
    ChainState.TRY_VECTOR_PRIMARY: SourceStrategy.VECTOR_PRIMARY,
    ChainState.TRY_VECTOR_SECONDARY: SourceStrategy.VECTOR_SECONDARY,
    ChainState.TRY_LEXICAL: SourceStrategy.LEXICAL,
}


class Deadline:
    """Monotonic deadline shared by the aggregator and its backend chains."""

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if seconds <= 0:
            raise ValueError("deadline seconds must be positive")
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0


@dataclass(frozen=True, slots=True)
class BackendRun:
    outcome: BackendOutcome
    candidates: tuple[Candidate, ...]


def initial_state(adapter: BackendAdapter, vector: np.ndarray | None) -> ChainState:
    if vector is None:
        return ChainState.TRY_LEXICAL
    if adapter.supports_native_hybrid:
        return ChainState.TRY_NATIVE_HYBRID
    return ChainState.TRY_VECTOR_PRIMARY


class SearchStrategy:
    """Runs one backend's fallback chain, one attempt per state, strictly in sequence."""

    def __init__(self, adapter: BackendAdapter) -> None:
        self._adapter = adapter

    @property
    def backend_id(self) -> str:
        return self._adapter.backend_id

    def run(
        self,
        query: Query,
        vector: np.ndarray | None,
        *,
        deadline: Deadline | None = None,
    ) -> BackendRun:
        started = time.perf_counter()
        backend_id = self._adapter.backend_id
        degraded = vector is None
        attempts: list[AttemptRecord] = []
        last_error: str | None = None

        state = initial_state(self._adapter, vector)
        if degraded:
            logger.info("[%s] no query vector, starting at lexical search", backend_id)

        while state is not ChainState.DONE:
            strategy = _STATE_STRATEGY[state]
            if deadline is not None and deadline.expired:
                logger.warning("[%s] deadline reached before %s", backend_id, strategy.value)
                last_error = TIMEOUT_ERROR
                break

            attempt_started = time.perf_counter()
            try:
                candidates = self._attempt(state, query, vector)
            except Unsupported as exc:
                logger.debug("[%s] %s unsupported: %s", backend_id, strategy.value, exc)
                attempts.append(
                    AttemptRecord(
                        strategy=strategy,
                        succeeded=False,
                        error=str(exc),
                        elapsed_ms=(time.perf_counter() - attempt_started) * 1000,
                    )
                )
                if state is not ChainState.TRY_NATIVE_HYBRID:
                    last_error = str(exc)
                state = _NEXT_STATE[state]
                continue
            except QueryFailed as exc:
                logger.info("[%s] %s failed: %s", backend_id, strategy.value, exc)
                last_error = str(exc)
                attempts.append(
                    AttemptRecord(
                        strategy=strategy,
                        succeeded=False,
                        error=last_error,
                        elapsed_ms=(time.perf_counter() - attempt_started) * 1000,
                    )
                )
                state = _NEXT_STATE[state]
                continue

            kept = tuple(truncate_per_backend(candidates, limit=query.limit))
            attempts.append(
                AttemptRecord(
                    strategy=strategy,
                    succeeded=True,
                    elapsed_ms=(time.perf_counter() - attempt_started) * 1000,
                )
            )
            logger.info("[%s] %s succeeded with %d candidate(s)", backend_id, strategy.value, len(kept))
            outcome = BackendOutcome(
                backend_id=backend_id,
                succeeded=True,
                strategy_used=strategy,
                candidate_count=len(kept),
                error=None,
                elapsed_ms=(time.perf_counter() - started) * 1000,
                attempts=tuple(attempts),
                degraded=degraded,
            )
            return BackendRun(outcome=outcome, candidates=kept)

        if last_error != TIMEOUT_ERROR:
            logger.warning("[%s] every search strategy failed: %s", backend_id, last_error)
        outcome = BackendOutcome(
            backend_id=backend_id,
            succeeded=False,
            strategy_used=None,
            candidate_count=0,
            error=last_error or "no search strategy available",
            elapsed_ms=(time.perf_counter() - started) * 1000,
            attempts=tuple(attempts),
            degraded=degraded,
        )
        return BackendRun(outcome=outcome, candidates=())

    def _attempt(self, state: ChainState, query: Query, vector: np.ndarray | None) -> Sequence[Candidate]:
        adapter = self._adapter
        if state is ChainState.TRY_LEXICAL:
            return adapter.lexical_search(query.text, limit=query.limit, filters=query.filters)

        assert vector is not None
        if state is ChainState.TRY_NATIVE_HYBRID:
            return adapter.native_hybrid_search(
                query.text,
                vector,
                limit=query.limit,
                hybrid_weight=query.weights.vector_share,
                filters=query.filters,
            )
        if state is ChainState.TRY_VECTOR_PRIMARY:
            return adapter.vector_search(vector, limit=query.limit, filters=query.filters)
        if state is ChainState.TRY_VECTOR_SECONDARY:
            return adapter.secondary_vector_search(vector, limit=query.limit, filters=query.filters)
        raise ValueError(f"No query attached to chain state {state.value}")
