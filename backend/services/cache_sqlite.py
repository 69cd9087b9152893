"""
SQLite-backed cache store, the shared tier behind the in-process cache.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from typing import Any, Dict, Optional

from services.cache_store import CacheEntry, CacheStore, resolve_ttl_ms

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DATA_DIR = os.path.join(BASE_DIR, "data")
LOCATION_CACHE_DB_FILENAME = "location_cache.sqlite"

logger = logging.getLogger(__name__)


class SqliteCacheStore(CacheStore):
    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or os.path.join(DATA_DIR, LOCATION_CACHE_DB_FILENAME)
        os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        # check_same_thread=False: provider calls run in worker threads
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    payload_json TEXT NOT NULL,
                    created_at_ms INTEGER NOT NULL,
                    ttl_ms INTEGER NOT NULL,
                    access_count INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_cache_entries_created ON cache_entries(created_at_ms)"
            )
            self._conn.commit()

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key; expired or undecodable rows are misses."""
        now_ms = int(time.time() * 1000)
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT payload_json, created_at_ms, ttl_ms, access_count FROM cache_entries WHERE key=?",
                    (key,),
                ).fetchone()
                if row is None:
                    self.misses += 1
                    return None
                payload_json, created_at_ms, ttl_ms, access_count = row
                if now_ms - created_at_ms > ttl_ms:
                    self._conn.execute("DELETE FROM cache_entries WHERE key=?", (key,))
                    self._conn.commit()
                    self.misses += 1
                    return None
                self._conn.execute(
                    "UPDATE cache_entries SET access_count = access_count + 1 WHERE key=?", (key,)
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Location cache read failed for %s: %s", key, exc)
            self.misses += 1
            return None
        try:
            payload = json.loads(payload_json)
        except ValueError:
            logger.warning("Discarding corrupt cache row for %s", key)
            self.misses += 1
            return None
        self.hits += 1
        return CacheEntry(
            key=key,
            payload=payload,
            inserted_at=created_at_ms,
            ttl=ttl_ms,
            access_count=access_count + 1,
        )

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Upsert a JSON-serializable value."""
        try:
            payload_json = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.warning("Value for %s is not JSON serializable; not cached: %s", key, exc)
            return
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO cache_entries (key, payload_json, created_at_ms, ttl_ms, access_count)
                    VALUES (?, ?, ?, ?, 0)
                    """,
                    (key, payload_json, int(time.time() * 1000), resolve_ttl_ms(ttl)),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Location cache write failed for %s: %s", key, exc)

    def has(self, key: str) -> bool:
        now_ms = int(time.time() * 1000)
        with self._lock:
            row = self._conn.execute(
                "SELECT created_at_ms, ttl_ms FROM cache_entries WHERE key=?", (key,)
            ).fetchone()
        return row is not None and now_ms - row[0] <= row[1]

    def delete(self, key: str) -> bool:
        with self._lock:
            cur = self._conn.execute("DELETE FROM cache_entries WHERE key=?", (key,))
            self._conn.commit()
        return cur.rowcount > 0

    def clear(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM cache_entries")
            self._conn.commit()

    def clear_expired(self) -> int:
        now_ms = int(time.time() * 1000)
        with self._lock:
            cur = self._conn.execute("DELETE FROM cache_entries WHERE ? - created_at_ms > ttl_ms", (now_ms,))
            self._conn.commit()
        return cur.rowcount

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            (size,) = self._conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()
        total = self.hits + self.misses
        return {
            "size": size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 2) if total else 0.0,
            "max_entries": None,
        }

    def close(self) -> None:
        self._conn.close()
