"""Runtime configuration for the search aggregator and its backends."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Mapping

from reelsearch.hybrid.models import DEFAULT_KEYWORD_WEIGHT, DEFAULT_VECTOR_WEIGHT, Weights


DEFAULT_TIMEOUT_SECONDS = 25.0
DEFAULT_EMBEDDING_TIMEOUT_SECONDS = 8.0
DEFAULT_EMBEDDING_RETRIES = 1
DEFAULT_EMBEDDING_RETRY_BASE_SECONDS = 0.25
DEFAULT_BACKENDS = "main=catalog:.reelsearch-main.db"

BACKEND_KINDS = frozenset({"catalog", "faiss"})


def _split_descriptor(descriptor: str) -> list[str]:
    parts: list[str] = []
    for piece in descriptor.split(":"):
        # Rejoin a drive letter ("C") with the path that follows it.
        previous = parts[-1].strip() if parts else ""
        if len(previous) == 1 and previous.isalpha() and piece[:1] in ("\\", "/"):
            parts[-1] = f"{previous}:{piece}"
        else:
            parts.append(piece)
    return [part.strip() for part in parts]


def _parse_positive_int(*, name: str, raw_value: str, minimum: int = 1) -> int:
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw_value!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _parse_positive_float(*, name: str, raw_value: str, minimum: float = 0.001) -> float:
    try:
        value = float(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw_value!r}") from exc
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _parse_weight(*, name: str, raw_value: str) -> float:
    try:
        value = float(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw_value!r}") from exc
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0.0 and 1.0")
    return value


@dataclass(frozen=True, slots=True)
class BackendSpec:
    """Connection descriptor for one backend: ``id=kind:db_path[:index_path]``.

    Paths may start with a drive letter (``C:\\data\\main.db``); that colon is
    not a field separator.
    """

    backend_id: str
    kind: str
    db_path: Path
    index_path: Path | None = None

    @classmethod
    def parse(cls, raw: str) -> "BackendSpec":
        backend_id, separator, descriptor = raw.partition("=")
        backend_id = backend_id.strip()
        if not separator or not backend_id:
            raise ValueError(f"Backend descriptor must look like 'id=kind:db_path[:index_path]', got {raw!r}")

        parts = _split_descriptor(descriptor)
        kind = parts[0].lower() if parts else ""
        if kind not in BACKEND_KINDS:
            raise ValueError(f"Unknown backend kind {kind!r} for backend '{backend_id}'")
        if len(parts) < 2 or not parts[1]:
            raise ValueError(f"Backend '{backend_id}' is missing a database path")

        index_path: Path | None = None
        if kind == "faiss":
            if len(parts) < 3 or not parts[2]:
                raise ValueError(f"Backend '{backend_id}' of kind 'faiss' needs an index path")
            index_path = Path(parts[2])
        elif len(parts) > 2:
            raise ValueError(f"Backend '{backend_id}' of kind '{kind}' does not take an index path")

        return cls(backend_id=backend_id, kind=kind, db_path=Path(parts[1]), index_path=index_path)

    def describe(self) -> dict[str, str | None]:
        return {
            "kind": self.kind,
            "db_path": str(self.db_path),
            "index_path": str(self.index_path) if self.index_path is not None else None,
        }


def parse_backend_specs(raw: str) -> tuple[BackendSpec, ...]:
    entries = [entry.strip() for entry in raw.split(",") if entry.strip()]
    if not entries:
        raise ValueError("REELSEARCH_BACKENDS must name at least one backend")

    specs = tuple(BackendSpec.parse(entry) for entry in entries)
    seen: set[str] = set()
    for spec in specs:
        if spec.backend_id in seen:
            raise ValueError(f"Duplicate backend id in REELSEARCH_BACKENDS: {spec.backend_id}")
        seen.add(spec.backend_id)
    return specs


@dataclass(frozen=True, slots=True)
class AggregatorSettings:
    """Validated aggregator runtime settings."""

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    embedding_timeout_seconds: float = DEFAULT_EMBEDDING_TIMEOUT_SECONDS
    embedding_retries: int = DEFAULT_EMBEDDING_RETRIES
    embedding_retry_base_seconds: float = DEFAULT_EMBEDDING_RETRY_BASE_SECONDS
    default_weights: Weights = Weights(DEFAULT_VECTOR_WEIGHT, DEFAULT_KEYWORD_WEIGHT)
    backends: tuple[BackendSpec, ...] = ()

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.embedding_timeout_seconds <= 0:
            raise ValueError("embedding_timeout_seconds must be positive")
        if self.embedding_retries < 0:
            raise ValueError("embedding_retries cannot be negative")
        if self.embedding_retry_base_seconds < 0:
            raise ValueError("embedding_retry_base_seconds cannot be negative")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AggregatorSettings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        timeout_raw = source.get("REELSEARCH_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)).strip()
        embedding_timeout_raw = source.get(
            "REELSEARCH_EMBEDDING_TIMEOUT_SECONDS", str(DEFAULT_EMBEDDING_TIMEOUT_SECONDS)
        ).strip()
        retries_raw = source.get("REELSEARCH_EMBEDDING_RETRIES", str(DEFAULT_EMBEDDING_RETRIES)).strip()
        vector_weight_raw = source.get("REELSEARCH_VECTOR_WEIGHT", str(DEFAULT_VECTOR_WEIGHT)).strip()
        keyword_weight_raw = source.get("REELSEARCH_KEYWORD_WEIGHT", str(DEFAULT_KEYWORD_WEIGHT)).strip()
        backends_raw = source.get("REELSEARCH_BACKENDS", DEFAULT_BACKENDS).strip()

        for name, raw_value in (
            ("REELSEARCH_TIMEOUT_SECONDS", timeout_raw),
            ("REELSEARCH_EMBEDDING_TIMEOUT_SECONDS", embedding_timeout_raw),
            ("REELSEARCH_EMBEDDING_RETRIES", retries_raw),
            ("REELSEARCH_VECTOR_WEIGHT", vector_weight_raw),
            ("REELSEARCH_KEYWORD_WEIGHT", keyword_weight_raw),
            ("REELSEARCH_BACKENDS", backends_raw),
        ):
            if not raw_value:
                raise ValueError(f"{name} cannot be empty")

        return cls(
            timeout_seconds=_parse_positive_float(name="REELSEARCH_TIMEOUT_SECONDS", raw_value=timeout_raw, minimum=0.1),
            embedding_timeout_seconds=_parse_positive_float(
                name="REELSEARCH_EMBEDDING_TIMEOUT_SECONDS",
                raw_value=embedding_timeout_raw,
                minimum=0.1,
            ),
            embedding_retries=_parse_positive_int(
                name="REELSEARCH_EMBEDDING_RETRIES",
                raw_value=retries_raw,
                minimum=0,
            ),
            default_weights=Weights(
                vector=_parse_weight(name="REELSEARCH_VECTOR_WEIGHT", raw_value=vector_weight_raw),
                keyword=_parse_weight(name="REELSEARCH_KEYWORD_WEIGHT", raw_value=keyword_weight_raw),
            ),
            backends=parse_backend_specs(backends_raw),
        )

    def describe(self) -> dict[str, object]:
        return {
            "timeout_seconds": self.timeout_seconds,
            "embedding_timeout_seconds": self.embedding_timeout_seconds,
            "embedding_retries": self.embedding_retries,
            "default_weights": self.default_weights.to_dict(),
            "backends": {spec.backend_id: spec.describe() for spec in self.backends},
        }
