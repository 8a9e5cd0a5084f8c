# storage.py  ──  named key-value slots for a page's working set, step and AI result
# Three backends share one small interface: MemoryStore (process-local dict),
# FileStore (one JSON file per key, written atomically) and RedisStore (shared
# desk across processes).
# Reads never raise: an absent, malformed or wrong-shaped value yields the
# caller's fallback. A failed write is logged, kept pending and returned to
# the caller as a warning string.
# No locking: two writers on the same key race and the last write wins.

import copy
import json
import logging
import math
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional, Protocol

import redis

from config import REDIS_KEY_PREFIX, REDIS_URL, STORAGE_BACKEND, STORAGE_DIR

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...
    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class FileStore:
    """One `<key>.json` file per slot under `directory`."""

    def __init__(self, directory: str | Path = STORAGE_DIR) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{_SAFE_KEY.sub('_', key)}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
            os.replace(tmp, self._path(key))
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class RedisStore:
    def __init__(
        self,
        url: str = REDIS_URL,
        prefix: str = REDIS_KEY_PREFIX,
        client: Optional[redis.Redis] = None,
    ) -> None:
        self.prefix = prefix
        self.client = client or redis.Redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> Optional[str]:
        return self.client.get(self.prefix + key)

    def set(self, key: str, value: str) -> None:
        self.client.set(self.prefix + key, value)

    def delete(self, key: str) -> None:
        self.client.delete(self.prefix + key)


def make_store(backend: str = STORAGE_BACKEND) -> KeyValueStore:
    backend = backend.lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "file":
        return FileStore()
    if backend == "redis":
        return RedisStore()
    raise ValueError(f"Unknown STORAGE_BACKEND {backend!r} (expected memory, file or redis)")


# Errors a backend may raise on read/write; all of them are recoverable here.
_STORE_ERRORS = (OSError, redis.RedisError)


class PersistenceAdapter:
    """Page-scoped persistence with an explicit init / flush / clear lifecycle."""

    def __init__(self, store: KeyValueStore, namespace: str = "") -> None:
        self.store = store
        self.namespace = namespace
        self._pending: dict[str, str] = {}
        self._initialized = False

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def init(self) -> "PersistenceAdapter":
        self._initialized = True
        logger.debug("💾 Persistence ready (%s, namespace=%r)", type(self.store).__name__, self.namespace)
        return self

    def load(self, key: str, fallback: Any) -> Any:
        """Stored value for `key`, or a copy of `fallback`.

        The stored value must decode as JSON and have the same container type
        as `fallback`; anything else is discarded wholesale.
        """
        try:
            raw = self.store.get(self._key(key))
        except _STORE_ERRORS as exc:
            logger.warning("⚠️  Could not read %s: %s. Using defaults.", key, exc)
            return copy.deepcopy(fallback)

        if raw is None:
            return copy.deepcopy(fallback)

        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("⚠️  Stored %s is not valid JSON (%s). Using defaults.", key, exc)
            return copy.deepcopy(fallback)

        if fallback is not None and not _same_shape(value, fallback):
            logger.warning(
                "⚠️  Stored %s has shape %s, expected %s. Using defaults.",
                key, type(value).__name__, type(fallback).__name__,
            )
            return copy.deepcopy(fallback)
        return value

    def save(self, key: str, value: Any) -> Optional[str]:
        """Write `value`; return None on success or a warning message."""
        try:
            raw = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            message = f"Could not serialize {key}: {exc}"
            logger.warning("⚠️  %s", message)
            return message

        try:
            self.store.set(self._key(key), raw)
        except _STORE_ERRORS as exc:
            self._pending[key] = raw
            message = f"Could not save {key} to local storage: {exc}"
            logger.warning("⚠️  %s", message)
            return message

        self._pending.pop(key, None)
        return None

    def clear(self, key: str) -> Optional[str]:
        self._pending.pop(key, None)
        try:
            self.store.delete(self._key(key))
        except _STORE_ERRORS as exc:
            message = f"Could not clear {key}: {exc}"
            logger.warning("⚠️  %s", message)
            return message
        return None

    def flush(self) -> list[str]:
        """Retry writes that failed earlier; return the warnings that remain."""
        warnings: list[str] = []
        for key, raw in list(self._pending.items()):
            try:
                self.store.set(self._key(key), raw)
            except _STORE_ERRORS as exc:
                warnings.append(f"Could not save {key} to local storage: {exc}")
                continue
            del self._pending[key]
        return warnings

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending)


def _same_shape(value: Any, fallback: Any) -> bool:
    # bool is an int subclass; a stored true must not pass for a step number
    if isinstance(fallback, bool) or isinstance(value, bool):
        return isinstance(value, bool) and isinstance(fallback, bool)
    if isinstance(fallback, (int, float)):
        return isinstance(value, (int, float)) and math.isfinite(value)
    return isinstance(value, type(fallback))
