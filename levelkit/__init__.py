"""Comparers, write batches and a namespaced LRU cache for a LevelDB-style storage engine."""

__version__ = "0.1.0"
__all__ = ["batch", "cache", "comparer"]