import asyncio
import json
import re
import sqlite3
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from carefinder.core.errors import CacheError

GEOCODE_ADDRESS = "geocode:address"
GEOCODE_REVERSE = "geocode:reverse"
PLACES_NAME = "places:name"

_WHITESPACE = re.compile(r"\s+")


def cache_key(namespace: str, query: str) -> str:
    """Deterministic key: namespace prefix plus lower-cased, whitespace-free query."""
    return f"{namespace}:{_WHITESPACE.sub('', query.lower())}"


class ResponseCache:
    """Async key/value cache with per-entry TTL. Values must be JSON-serialisable."""

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: int) -> None:
        raise NotImplementedError


class MemoryCache(ResponseCache):
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._store: Dict[str, Tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        expires_at, payload = entry
        if expires_at <= self._clock():
            self._store.pop(key, None)
            return None
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        # stored as JSON so callers never share mutable objects with the cache
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CacheError(f"value for {key!r} is not JSON-serialisable: {e}")
        self._store[key] = (self._clock() + ttl, payload)

    def __len__(self):
        return len(self._store)


# -------------------------
# sqlite backend (blocking calls run on a worker thread)
# -------------------------
class SqliteCache(ResponseCache):
    def __init__(self, path: str, clock: Callable[[], float] = time.time):
        self._path = path
        self._clock = clock
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
            self._conn.execute("""CREATE TABLE IF NOT EXISTS response_cache (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at REAL NOT NULL
            )""")
            self._conn.commit()
        except sqlite3.Error as e:
            raise CacheError(f"cannot open cache database {path}: {e}")

    def _get_sync(self, key: str) -> Optional[Any]:
        with self._lock:
            try:
                cur = self._conn.execute("SELECT value, expires_at FROM response_cache WHERE key = ?", (key,))
                row = cur.fetchone()
                if row is None:
                    return None
                if row[1] <= self._clock():
                    self._conn.execute("DELETE FROM response_cache WHERE key = ?", (key,))
                    self._conn.commit()
                    return None
            except sqlite3.Error as e:
                raise CacheError(f"cache read failed: {e}")
        return json.loads(row[0])

    def _set_sync(self, key: str, payload: str, ttl: int) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT OR REPLACE INTO response_cache(key, value, expires_at) VALUES(?,?,?)",
                    (key, payload, self._clock() + ttl),
                )
                self._conn.commit()
            except sqlite3.Error as e:
                raise CacheError(f"cache write failed: {e}")

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise CacheError(f"value for {key!r} is not JSON-serialisable: {e}")
        await asyncio.to_thread(self._set_sync, key, payload, ttl)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
