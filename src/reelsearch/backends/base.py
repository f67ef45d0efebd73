"""Adapter contract for one searchable backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from reelsearch.hybrid.models import Candidate, SearchFilters, SourceStrategy


@dataclass(slots=True)
class QueryFailed(RuntimeError):
    """A single adapter round-trip failed."""

    backend_id: str
    strategy: SourceStrategy
    message: str

    def __str__(self) -> str:
        return f"{self.message} (backend={self.backend_id}, strategy={self.strategy.value})"


@dataclass(slots=True)
class Unsupported(RuntimeError):
    """The backend does not implement the requested capability."""

    backend_id: str
    message: str = "native hybrid search is not supported"

    def __str__(self) -> str:
        return f"{self.message} (backend={self.backend_id})"


class BackendAdapter(ABC):
    """One query per method call, no fallback logic.

    Implementations must be safe to call concurrently from worker threads.
    """

    supports_native_hybrid: bool = False
    supports_lexical: bool = True

    def __init__(self, backend_id: str) -> None:
        backend_id = backend_id.strip()
        if not backend_id:
            raise ValueError("backend_id cannot be empty")
        self._backend_id = backend_id

    @property
    def backend_id(self) -> str:
        return self._backend_id

    @abstractmethod
    def vector_search(
        self,
        vector: np.ndarray,
        *,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        ...

    @abstractmethod
    def secondary_vector_search(
        self,
        vector: np.ndarray,
        *,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        ...

    @abstractmethod
    def lexical_search(
        self,
        query_text: str,
        *,
        limit: int,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        ...

    def native_hybrid_search(
        self,
        query_text: str,
        vector: np.ndarray,
        *,
        limit: int,
        hybrid_weight: float,
        filters: SearchFilters | None = None,
    ) -> Sequence[Candidate]:
        raise Unsupported(backend_id=self._backend_id)

    def health_check(self) -> bool:
        return True

    def describe(self) -> dict[str, str | bool]:
        return {
            "backend_id": self._backend_id,
            "kind": type(self).__name__,
            "native_hybrid": self.supports_native_hybrid,
            "lexical": self.supports_lexical,
        }
