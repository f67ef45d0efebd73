"""Construct backend adapters from configured descriptors."""

from __future__ import annotations

from typing import Sequence

from reelsearch.backends.base import BackendAdapter
from reelsearch.backends.catalog import CatalogAdapter
from reelsearch.backends.faiss_catalog import FaissCatalogAdapter
from reelsearch.hybrid.config import BackendSpec


def build_adapter(spec: BackendSpec, *, dimension: int) -> BackendAdapter:
    if spec.kind == "catalog":
        return CatalogAdapter(spec.backend_id, spec.db_path)
    if spec.kind == "faiss":
        if spec.index_path is None:
            raise ValueError(f"Backend '{spec.backend_id}' of kind 'faiss' needs an index path")
        return FaissCatalogAdapter(spec.backend_id, spec.db_path, spec.index_path, dimension=dimension)
    raise ValueError(f"Unknown backend kind: {spec.kind}")


def build_adapters(specs: Sequence[BackendSpec], *, dimension: int) -> list[BackendAdapter]:
    return [build_adapter(spec, dimension=dimension) for spec in specs]
