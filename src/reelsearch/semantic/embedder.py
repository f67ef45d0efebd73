"""OpenAI-compatible embedding client used by search and indexing flows."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Protocol, Sequence

import numpy as np

from reelsearch.semantic.config import EmbeddingSettings


_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass(slots=True)
class EmbeddingUnavailable(RuntimeError):
    """The provider was unreachable or returned unusable vectors."""

    model: str
    stage: str
    message: str
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.message} (model={self.model}, stage={self.stage})"


class QueryEmbedder(Protocol):
    @property
    def model(self) -> str:
        ...

    @property
    def dimensions(self) -> int:
        ...

    def embed(self, text: str) -> np.ndarray:
        ...


def _build_default_client(settings: EmbeddingSettings) -> Any:
    try:
        from openai import OpenAI
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise EmbeddingUnavailable(
            model=settings.model,
            stage="client_init",
            message=f"OpenAI SDK unavailable for embedding client: {exc}",
        ) from exc

    return OpenAI(api_key=settings.api_key, base_url=settings.base_url, max_retries=0)


def is_retryable(exc: Exception) -> bool:
    status_code = getattr(exc, "status_code", None)
    if status_code in _RETRYABLE_STATUS_CODES:
        return True

    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True

    return type(exc).__name__ in {
        "RateLimitError",
        "APITimeoutError",
        "APIConnectionError",
        "InternalServerError",
    }


def _extract_vectors(response: Any, *, expected_count: int, dimensions: int, model: str, stage: str) -> np.ndarray:
    data = getattr(response, "data", None)
    if not isinstance(data, list):
        raise EmbeddingUnavailable(model=model, stage=stage, message="Embeddings response missing list 'data'")
    if len(data) != expected_count:
        raise EmbeddingUnavailable(
            model=model,
            stage=stage,
            message=f"Embeddings response count mismatch: expected {expected_count}, got {len(data)}",
        )

    vectors: list[list[float]] = []
    for item in data:
        embedding = getattr(item, "embedding", None)
        if embedding is None and isinstance(item, dict):
            embedding = item.get("embedding")
        if not isinstance(embedding, (list, tuple)) or len(embedding) == 0:
            raise EmbeddingUnavailable(model=model, stage=stage, message="Embedding row missing numeric vector")

        try:
            numeric = [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingUnavailable(model=model, stage=stage, message="Embedding row has non-numeric values") from exc
        if not all(math.isfinite(value) for value in numeric):
            raise EmbeddingUnavailable(model=model, stage=stage, message="Embedding row has non-finite values")
        if len(numeric) != dimensions:
            raise EmbeddingUnavailable(
                model=model,
                stage=stage,
                message=f"Embedding dimension mismatch: expected {dimensions}, got {len(numeric)}",
            )

        vectors.append(numeric)

    return np.asarray(vectors, dtype=np.float32)


class OpenAIEmbedder:
    """Single-attempt embeddings wrapper with response validation.

    Retries belong to the caller. The wrapper holds no per-request state and
    can be shared between concurrent searches.
    """

    def __init__(self, settings: EmbeddingSettings, *, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client or _build_default_client(settings)

    @property
    def model(self) -> str:
        return self._settings.model

    @property
    def dimensions(self) -> int:
        return self._settings.dimensions

    def embed(self, text: str) -> np.ndarray:
        query_text = text.strip()
        if not query_text:
            raise ValueError("text cannot be empty")
        vectors = self.embed_texts([query_text], stage="query")
        return vectors[0]

    def embed_texts(self, texts: Sequence[str], *, stage: str = "movies") -> np.ndarray:
        payload = [text.strip() for text in texts if text and text.strip()]
        if not payload:
            raise ValueError("texts cannot be empty")

        try:
            response = self._client.embeddings.create(
                model=self._settings.model,
                input=payload,
                dimensions=self._settings.dimensions,
            )
        except Exception as exc:
            raise EmbeddingUnavailable(
                model=self._settings.model,
                stage=stage,
                message=f"Embedding request failed: {exc}",
                retryable=is_retryable(exc),
            ) from exc

        return _extract_vectors(
            response,
            expected_count=len(payload),
            dimensions=self._settings.dimensions,
            model=self._settings.model,
            stage=stage,
        )
