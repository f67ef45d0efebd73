"""SQLite movie catalog storage."""

from .repository import CatalogRepository, MovieRow, PendingEmbeddingRow

__all__ = ["CatalogRepository", "MovieRow", "PendingEmbeddingRow"]
