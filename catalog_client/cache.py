"""Raw response body caches.

Any object with ``cached(key)``, ``fetch(key)`` and ``store(key, body)``
can be passed to a Request. Expiry is the cache's business; the fetch path
only asks whether a key is cached.
"""

from __future__ import annotations

import hashlib
import logging
import time
from pathlib import Path
from threading import Lock
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class Cache(Protocol):
    def cached(self, key: str) -> bool: ...

    def fetch(self, key: str) -> bytes | None: ...

    def store(self, key: str, body: bytes) -> None: ...


class MemoryCache:
    """In-process cache, mainly for tests and short-lived scripts."""

    def __init__(self) -> None:
        self._bodies: dict[str, bytes] = {}
        self._lock = Lock()

    def cached(self, key: str) -> bool:
        return key in self._bodies

    def fetch(self, key: str) -> bytes | None:
        return self._bodies.get(key)

    def store(self, key: str, body: bytes) -> None:
        with self._lock:
            self._bodies[key] = body

    def __len__(self) -> int:
        return len(self._bodies)

    def clear(self) -> None:
        with self._lock:
            self._bodies.clear()


class FileCache:
    """One file per cache key, named by the MD5 hex digest of the key.

    Args:
        directory: Cache directory; created if missing.
        max_age_seconds: Entries older than this are treated as absent.
            None keeps entries until flushed.
    """

    def __init__(self, directory: Path | str, max_age_seconds: float | None = None) -> None:
        self.directory = Path(directory).expanduser()
        self.max_age_seconds = max_age_seconds
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / hashlib.md5(key.encode("utf-8")).hexdigest()

    def _is_expired(self, path: Path, now: float) -> bool:
        if self.max_age_seconds is None:
            return False
        return now - path.stat().st_mtime > self.max_age_seconds

    def cached(self, key: str) -> bool:
        path = self._path(key)
        try:
            return not self._is_expired(path, time.time())
        except FileNotFoundError:
            return False

    def fetch(self, key: str) -> bytes | None:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            return None

    def store(self, key: str, body: bytes) -> None:
        path = self._path(key)
        # Write then rename so readers never see a partial body
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(body)
        tmp.replace(path)
        logger.debug("Cached %d bytes for %s", len(body), key)

    def flush_expired(self) -> int:
        """Delete expired entries. Returns the number removed."""
        if self.max_age_seconds is None:
            return 0
        now = time.time()
        removed = 0
        for path in self.directory.iterdir():
            if path.is_file() and self._is_expired(path, now):
                path.unlink(missing_ok=True)
                removed += 1
        return removed

    def flush_all(self) -> int:
        """Delete every entry. Returns the number removed."""
        removed = 0
        for path in self.directory.iterdir():
            if path.is_file():
                path.unlink(missing_ok=True)
                removed += 1
        return removed
