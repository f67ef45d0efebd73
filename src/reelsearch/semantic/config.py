"""Runtime configuration for the embedding provider."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping


DEFAULT_EMBEDDING_BASE_URL = "https://api.openai.com/v1"
DEFAULT_EMBEDDING_MODEL = "text-embedding-v4"
DEFAULT_EMBEDDING_DIMENSIONS = 1536


@dataclass(frozen=True, slots=True)
class EmbeddingSettings:
    """Validated OpenAI-compatible embedding endpoint settings."""

    api_key: str
    model: str = DEFAULT_EMBEDDING_MODEL
    base_url: str = DEFAULT_EMBEDDING_BASE_URL
    dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EmbeddingSettings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        api_key = source.get("EMBEDDING_API_KEY", "").strip()
        model = source.get("EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL).strip()
        base_url = source.get("EMBEDDING_BASE_URL", DEFAULT_EMBEDDING_BASE_URL).strip()
        dimensions_raw = source.get("EMBEDDING_DIMENSIONS", str(DEFAULT_EMBEDDING_DIMENSIONS)).strip()

        if not api_key:
            raise ValueError("Missing required embedding environment variable: EMBEDDING_API_KEY")
        if not model:
            raise ValueError("EMBEDDING_MODEL cannot be empty")
        if not base_url:
            raise ValueError("EMBEDDING_BASE_URL cannot be empty")
        if not (base_url.startswith("http://") or base_url.startswith("https://")):
            raise ValueError("EMBEDDING_BASE_URL must start with http:// or https://")

        try:
            dimensions = int(dimensions_raw)
        except ValueError as exc:
            raise ValueError(f"EMBEDDING_DIMENSIONS must be an integer, got {dimensions_raw!r}") from exc
        if dimensions < 1:
            raise ValueError("EMBEDDING_DIMENSIONS must be >= 1")

        return cls(api_key=api_key, model=model, base_url=base_url.rstrip("/"), dimensions=dimensions)

    def describe(self) -> dict[str, str | int]:
        return {"model": self.model, "base_url": self.base_url, "dimensions": self.dimensions}
