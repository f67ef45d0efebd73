"""Backend adapters exposing the per-strategy search primitives."""

from reelsearch.backends.base import BackendAdapter, QueryFailed, Unsupported
from reelsearch.backends.catalog import CatalogAdapter
from reelsearch.backends.faiss_catalog import FaissCatalogAdapter

__all__ = [
    "BackendAdapter",
    "CatalogAdapter",
    "FaissCatalogAdapter",
    "QueryFailed",
    "Unsupported",
]
