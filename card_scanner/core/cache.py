"""
Catalog response caching for the card scanner.

Two tiers: an in-process map and a durable on-disk store that survives
restarts. Both hold whole catalog records under ``<kind>:<key>`` and treat
entries older than the TTL as absent. Durable store failures are logged and
otherwise ignored; the scanner works without it.
"""

import hashlib
import json
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .config import CACHE_TTL_MS, CACHE_DIR
from .utils import CacheEntry


def now_ms() -> int:
    return int(time.time() * 1000)


def cache_key(kind: str, value: str) -> str:
    """Build a cache key such as ``exact:lightning bolt``."""
    return f"{kind}:{value.strip().lower()}"


class MemoryCache:
    """Process-local TTL map. Expired entries are evicted on read."""

    def __init__(self, ttl_ms: float = CACHE_TTL_MS, clock: Callable[[], int] = now_ms):
        self.ttl_ms = ttl_ms
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self.clock(), self.ttl_ms):
                del self._entries[key]
                return None
            return entry.data

    def put(self, key: str, data: Dict[str, Any], timestamp_ms: int = None) -> None:
        stamp = self.clock() if timestamp_ms is None else timestamp_ms
        with self._lock:
            self._entries[key] = CacheEntry(key=key, data=data, timestamp_ms=stamp)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class DurableCacheStore:
    """Interface of the persistent cache tier."""

    def get(self, key: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def put(self, entry: CacheEntry) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class JsonFileCacheStore(DurableCacheStore):
    """
    One JSON file per key under ``directory``, named by the key's SHA-1.

    Any I/O or decode failure makes the store behave as empty. The first
    failure is reported once.
    """

    def __init__(self, directory: Path = CACHE_DIR):
        self.directory = Path(directory)
        self._warned = False

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def get(self, key: str) -> Optional[CacheEntry]:
        path = self._path_for(key)
        try:
            if not path.exists():
                return None
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            if raw.get("key") != key:
                return None
            return CacheEntry(key=raw["key"], data=raw["data"], timestamp_ms=int(raw["timestamp_ms"]))
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            self._warn(f"read failed for {key}: {e}")
            return None

    def put(self, entry: CacheEntry) -> None:
        path = self._path_for(entry.key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(
                    {"key": entry.key, "data": entry.data, "timestamp_ms": entry.timestamp_ms},
                    f,
                    ensure_ascii=False,
                )
            tmp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            self._warn(f"write failed for {entry.key}: {e}")

    def delete(self, key: str) -> None:
        try:
            self._path_for(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self._warn(f"delete failed for {key}: {e}")

    def clear(self) -> None:
        if not self.directory.exists():
            return
        try:
            # Leftover .tmp files come from writes that failed before the replace
            for pattern in ("*.json", "*.tmp"):
                for path in self.directory.glob(pattern):
                    path.unlink()
        except OSError as e:
            self._warn(f"clear failed: {e}")

    def _warn(self, message: str) -> None:
        if not self._warned:
            print(f"[Cache] Durable cache unavailable ({message}), continuing without it")
            self._warned = True


class TwoTierCache:
    """
    Memory tier in front of an optional durable tier.

    A durable hit is copied into the memory tier. Expired durable entries
    are deleted when read.
    """

    def __init__(
        self,
        durable: Optional[DurableCacheStore] = None,
        ttl_ms: float = CACHE_TTL_MS,
        clock: Callable[[], int] = now_ms
    ):
        self.ttl_ms = ttl_ms
        self.clock = clock
        self.memory = MemoryCache(ttl_ms=ttl_ms, clock=clock)
        self.durable = durable

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        data = self.memory.get(key)
        if data is not None:
            return data

        if self.durable is None:
            return None

        entry = self.durable.get(key)
        if entry is None:
            return None
        if entry.is_expired(self.clock(), self.ttl_ms):
            if hasattr(self.durable, "delete"):
                self.durable.delete(key)
            return None

        self.memory.put(key, entry.data, timestamp_ms=entry.timestamp_ms)
        return entry.data

    def put(self, key: str, data: Dict[str, Any]) -> None:
        stamp = self.clock()
        self.memory.put(key, data, timestamp_ms=stamp)
        if self.durable is not None:
            self.durable.put(CacheEntry(key=key, data=data, timestamp_ms=stamp))

    def clear(self) -> None:
        self.memory.clear()
        if self.durable is not None:
            self.durable.clear()
