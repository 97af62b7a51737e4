"""Result cache module."""

from signal_engine.cache.result_cache import CacheLookup, ResultCache

__all__ = [
    "CacheLookup",
    "ResultCache",
]
