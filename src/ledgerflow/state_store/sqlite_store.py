"""
SQLite-based local cache.

Tables:
- cache_entries: Short-lived values keyed by string (account balances under
  ``balance:<account_id>``)
- extraction_cache: Extractor results keyed by a hash of message text and
  prompt sections, with an expiry
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any


def balance_key(account_id: str) -> str:
    """Cache key for an account balance."""
    return f"balance:{account_id}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CacheStore:
    """
    SQLite-based cache for the pipeline.

    Provides:
    - Account balance cache with read-time freshness check
    - Extraction result cache with expiry

    Thread-safe for single-writer scenarios. The cache is an optimization:
    the data store stays the source of truth for balances.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str):
        """
        Initialize cache store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    cache_key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    cached_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS extraction_cache (
                    cache_key TEXT PRIMARY KEY,
                    result_json TEXT NOT NULL,
                    model TEXT,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_extraction_cache_expires "
                "ON extraction_cache(expires_at)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    # Generic entries

    def get(self, key: str, max_age_seconds: int) -> Any | None:
        """Return a cached value if it is younger than max_age_seconds."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT value_json, cached_at FROM cache_entries WHERE cache_key = ?", (key,)
            ).fetchone()

        if row is None:
            return None

        age = (_now() - datetime.fromisoformat(row["cached_at"])).total_seconds()
        if age >= max_age_seconds:
            return None
        return json.loads(row["value_json"])

    def set(self, key: str, value: Any) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO cache_entries (cache_key, value_json, cached_at)
                VALUES (?, ?, ?)
            """,
                (key, json.dumps(value), _now().isoformat()),
            )

    def delete(self, key: str) -> bool:
        """Remove a cached value. Returns True if something was removed."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM cache_entries WHERE cache_key = ?", (key,))
            return cursor.rowcount > 0

    # Balances

    def get_balance(self, account_id: str, max_age_seconds: int) -> int | None:
        value = self.get(balance_key(account_id), max_age_seconds)
        return int(value) if value is not None else None

    def set_balance(self, account_id: str, balance: int) -> None:
        self.set(balance_key(account_id), balance)

    def invalidate_balance(self, account_id: str) -> bool:
        return self.delete(balance_key(account_id))

    # Extraction cache

    def get_extraction(self, cache_key: str) -> dict | None:
        """Return a cached extraction result unless it has expired."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT result_json FROM extraction_cache WHERE cache_key = ? AND expires_at > ?",
                (cache_key, _now().isoformat()),
            ).fetchone()
        return json.loads(row["result_json"]) if row else None

    def put_extraction(
        self,
        cache_key: str,
        result: dict,
        ttl_days: int,
        model: str | None = None,
    ) -> None:
        now = _now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO extraction_cache
                (cache_key, result_json, model, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (
                    cache_key,
                    json.dumps(result),
                    model,
                    now.isoformat(),
                    (now + timedelta(days=ttl_days)).isoformat(),
                ),
            )

    def purge_expired(self) -> int:
        """Delete expired extraction results. Returns the number removed."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM extraction_cache WHERE expires_at <= ?", (_now().isoformat(),)
            )
            return cursor.rowcount
