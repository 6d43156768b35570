"""
Local SQLite cache.

Caches account balances (short TTL, invalidated on every balance write)
and extractor results (keyed by message and prompt hash).
"""

from .sqlite_store import CacheStore, balance_key

__all__ = ["CacheStore", "balance_key"]
