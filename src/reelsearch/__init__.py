"""Hybrid movie search across several catalog backends."""

__version__ = "0.1.0"
