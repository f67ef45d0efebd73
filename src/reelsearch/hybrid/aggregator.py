"""Concurrent fan-out of one query to every selected backend, then fusion."""

from __future__ import annotations

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
import logging
import time
from typing import Awaitable, Callable, Sequence

import numpy as np

from reelsearch.backends.base import BackendAdapter
from reelsearch.backends.registry import build_adapters
from reelsearch.hybrid.config import AggregatorSettings
from reelsearch.hybrid.models import AggregateResponse, BackendOutcome, InvalidQuery, Query
from reelsearch.hybrid.scoring import fuse_candidates
from reelsearch.hybrid.strategy import TIMEOUT_ERROR, BackendRun, Deadline, SearchStrategy
from reelsearch.semantic.config import EmbeddingSettings
from reelsearch.semantic.embedder import EmbeddingUnavailable, OpenAIEmbedder, QueryEmbedder


EMBEDDING_TIMEOUT_ERROR = "embedding timed out"

logger = logging.getLogger(__name__)


def _timed_out_outcome(backend_id: str, *, elapsed_ms: float, degraded: bool) -> BackendOutcome:
    return BackendOutcome(
        backend_id=backend_id,
        succeeded=False,
        strategy_used=None,
        candidate_count=0,
        error=TIMEOUT_ERROR,
        elapsed_ms=elapsed_ms,
        degraded=degraded,
    )


class SearchAggregator:
    """Entry point of the search core.

    Built once at startup with its adapters and embedder, then shared by
    concurrent requests. ``search`` never raises for backend failures: the
    worst case is an empty result list with one failed outcome per backend.
    """

    def __init__(
        self,
        adapters: Sequence[BackendAdapter],
        embedder: QueryEmbedder | None,
        *,
        settings: AggregatorSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not adapters:
            raise ValueError("at least one backend adapter is required")

        strategies: dict[str, SearchStrategy] = {}
        for adapter in adapters:
            if adapter.backend_id in strategies:
                raise ValueError(f"Duplicate backend id: {adapter.backend_id}")
            strategies[adapter.backend_id] = SearchStrategy(adapter)

        self._adapters = tuple(adapters)
        self._strategies = strategies
        self._embedder = embedder
        self._settings = settings or AggregatorSettings()
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: AggregatorSettings,
        embedding_settings: EmbeddingSettings,
        *,
        embedder: QueryEmbedder | None = None,
    ) -> "SearchAggregator":
        adapters = build_adapters(settings.backends, dimension=embedding_settings.dimensions)
        return cls(
            adapters,
            embedder or OpenAIEmbedder(embedding_settings),
            settings=settings,
        )

    @property
    def backend_ids(self) -> tuple[str, ...]:
        return tuple(adapter.backend_id for adapter in self._adapters)

    @property
    def settings(self) -> AggregatorSettings:
        return self._settings

    def describe(self) -> list[dict[str, str | bool]]:
        return [adapter.describe() for adapter in self._adapters]

    def _select_adapters(self, query: Query) -> list[BackendAdapter]:
        unknown = sorted(query.backends.difference(self._strategies))
        if unknown:
            raise InvalidQuery(f"Unknown backend(s): {', '.join(unknown)}")
        return [adapter for adapter in self._adapters if adapter.backend_id in query.backends]

    async def search(self, query: Query, *, timeout_seconds: float | None = None) -> AggregateResponse:
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise InvalidQuery(f"timeout must be positive, got {timeout_seconds}")
        selected = self._select_adapters(query)
        started = time.perf_counter()
        deadline = Deadline(timeout_seconds or self._settings.timeout_seconds, clock=self._clock)

        # Workers stuck past the deadline are abandoned, never joined.
        executor = ThreadPoolExecutor(max_workers=len(selected) + 1, thread_name_prefix="reelsearch")
        try:
            return await self._search_with(executor, query, selected, deadline, started)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    async def _search_with(
        self,
        executor: ThreadPoolExecutor,
        query: Query,
        selected: list[BackendAdapter],
        deadline: Deadline,
        started: float,
    ) -> AggregateResponse:
        vector, embedding_error = await self._embed_query(executor, query.text, deadline)
        if vector is None:
            if not any(adapter.supports_lexical for adapter in selected):
                raise EmbeddingUnavailable(
                    model=getattr(self._embedder, "model", "unknown"),
                    stage="query",
                    message=f"No selected backend supports lexical search: {embedding_error}",
                )
            logger.warning("Embedding unavailable, continuing in lexical-only mode: %s", embedding_error)

        runs = await self._fan_out(executor, query, vector, selected, deadline, started)

        candidates = [candidate for run in runs for candidate in run.candidates]
        results = fuse_candidates(candidates, weights=query.weights, limit=query.limit)
        per_backend = {run.outcome.backend_id: run.outcome for run in runs}

        elapsed_ms = (time.perf_counter() - started) * 1000
        succeeded = sum(1 for run in runs if run.outcome.succeeded)
        logger.info(
            "Aggregate search finished in %.2fms: %d result(s), %d/%d backend(s) succeeded",
            elapsed_ms,
            len(results),
            succeeded,
            len(runs),
        )
        return AggregateResponse(
            query=query,
            results=tuple(results),
            per_backend=per_backend,
            elapsed_ms=elapsed_ms,
            embedding_error=embedding_error,
        )

    def search_sync(self, query: Query, *, timeout_seconds: float | None = None) -> AggregateResponse:
        return asyncio.run(self.search(query, timeout_seconds=timeout_seconds))

    async def _embed_query(
        self,
        executor: ThreadPoolExecutor,
        text: str,
        deadline: Deadline,
    ) -> tuple[np.ndarray | None, str | None]:
        if self._embedder is None:
            return None, "no embedder configured"

        attempts = self._settings.embedding_retries + 1
        last_error = "embedding failed"
        for attempt in range(attempts):
            budget = min(self._settings.embedding_timeout_seconds, deadline.remaining())
            if budget <= 0:
                return None, EMBEDDING_TIMEOUT_ERROR

            started = time.perf_counter()
            try:
                vector = await asyncio.wait_for(
                    asyncio.get_running_loop().run_in_executor(executor, self._embedder.embed, text),
                    timeout=budget,
                )
            except asyncio.TimeoutError:
                latency_ms = (time.perf_counter() - started) * 1000
                logger.warning("Query embedding timed out after %.2fms", latency_ms)
                return None, EMBEDDING_TIMEOUT_ERROR
            except EmbeddingUnavailable as exc:
                last_error = str(exc)
                should_retry = exc.retryable and attempt < attempts - 1
                logger.warning("Query embedding failed (attempt %d/%d): %s", attempt + 1, attempts, exc)
                if not should_retry:
                    return None, last_error
                delay = self._settings.embedding_retry_base_seconds * (2**attempt)
                if delay >= deadline.remaining():
                    return None, last_error
                await self._sleep(delay)
                continue

            logger.debug("Query embedding latency: %.2fms", (time.perf_counter() - started) * 1000)
            return vector, None

        return None, last_error

    async def _fan_out(
        self,
        executor: ThreadPoolExecutor,
        query: Query,
        vector: np.ndarray | None,
        selected: list[BackendAdapter],
        deadline: Deadline,
        started: float,
    ) -> list[BackendRun]:
        loop = asyncio.get_running_loop()
        slots: list[BackendRun | None] = [None] * len(selected)

        async def _run_slot(index: int, adapter: BackendAdapter) -> None:
            strategy = self._strategies[adapter.backend_id]
            try:
                slots[index] = await loop.run_in_executor(
                    executor,
                    functools.partial(strategy.run, query, vector, deadline=deadline),
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("[%s] backend task crashed", adapter.backend_id)
                slots[index] = BackendRun(
                    outcome=BackendOutcome(
                        backend_id=adapter.backend_id,
                        succeeded=False,
                        strategy_used=None,
                        candidate_count=0,
                        error=f"{type(exc).__name__}: {exc}",
                        elapsed_ms=(time.perf_counter() - started) * 1000,
                        degraded=vector is None,
                    ),
                    candidates=(),
                )

        tasks = [asyncio.create_task(_run_slot(index, adapter)) for index, adapter in enumerate(selected)]
        _done, pending = await asyncio.wait(tasks, timeout=deadline.remaining())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        runs: list[BackendRun] = []
        for index, adapter in enumerate(selected):
            run = slots[index]
            if run is None:
                elapsed_ms = (time.perf_counter() - started) * 1000
                logger.warning("[%s] backend timed out after %.2fms", adapter.backend_id, elapsed_ms)
                run = BackendRun(
                    outcome=_timed_out_outcome(adapter.backend_id, elapsed_ms=elapsed_ms, degraded=vector is None),
                    candidates=(),
                )
            runs.append(run)
        return runs

    async def health(self) -> dict[str, bool]:
        async def _check(adapter: BackendAdapter) -> bool:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(adapter.health_check),
                    timeout=self._settings.timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning("[%s] health check timed out", adapter.backend_id)
                return False
            except Exception:
                logger.exception("[%s] health check crashed", adapter.backend_id)
                return False

        statuses = await asyncio.gather(*(_check(adapter) for adapter in self._adapters))
        return {adapter.backend_id: status for adapter, status in zip(self._adapters, statuses)}
