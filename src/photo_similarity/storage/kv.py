"""Key-value stores backing the fingerprint cache, cooldowns and checkpoints.

Each concern owns its own store instance, so ``clear()`` only ever wipes the
data of one concern. All mutations go through batch calls that hold the
store lock; callers that need read-modify-write wrap it in ``transaction()``.
"""

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Interface for the opaque persistence layer."""

    def __init__(self):
        self._lock = threading.RLock()

    def get_batch(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return values for the keys that exist; missing keys are omitted."""
        raise NotImplementedError

    def put_batch(self, entries: Dict[str, Any]) -> None:
        raise NotImplementedError

    def delete_batch(self, keys: Iterable[str]) -> int:
        """Delete keys, returning how many existed."""
        raise NotImplementedError

    def keys(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def get(self, key: str, default: Any = None) -> Any:
        return self.get_batch([key]).get(key, default)

    def items(self, prefix: str = "") -> Dict[str, Any]:
        with self._lock:
            return self.get_batch(self.keys(prefix))

    @contextmanager
    def transaction(self) -> Iterator["KeyValueStore"]:
        """Hold the store lock across a read-modify-write sequence."""
        with self._lock:
            yield self


class InMemoryStore(KeyValueStore):
    """Process-local store, used in tests and for throwaway sessions."""

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Any] = {}

    def get_batch(self, keys: Iterable[str]) -> Dict[str, Any]:
        with self._lock:
            return {key: self._data[key] for key in keys if key in self._data}

    def put_batch(self, entries: Dict[str, Any]) -> None:
        if not entries:
            return
        with self._lock:
            self._data.update(entries)

    def delete_batch(self, keys: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if key in self._data:
                    del self._data[key]
                    removed += 1
        return removed

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            return [key for key in self._data if key.startswith(prefix)]

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStore(InMemoryStore):
    """Disk-backed store persisted as a single JSON document.

    Writes are flushed at the end of each batch call, or once at the end of
    the outermost ``transaction()``.
    """

    def __init__(self, store_file: Path):
        super().__init__()
        self.store_file = Path(store_file)
        self.store_file.parent.mkdir(parents=True, exist_ok=True)
        self._depth = 0
        self._dirty = False
        self.load()

    def load(self) -> None:
        if not self.store_file.exists():
            return
        try:
            with open(self.store_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._data = dict(data.get("entries", {}))
        except Exception as e:
            logger.warning(f"Failed to load store {self.store_file}: {e}")
            self._data = {}

    def save(self) -> None:
        tmp_file = self.store_file.with_suffix(self.store_file.suffix + ".tmp")
        with self._lock:
            payload = {"version": 1, "entries": self._data}
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_file, self.store_file)
            self._dirty = False

    def _flush(self) -> None:
        self._dirty = True
        if self._depth == 0:
            self.save()

    def put_batch(self, entries: Dict[str, Any]) -> None:
        if not entries:
            return
        with self._lock:
            super().put_batch(entries)
            self._flush()

    def delete_batch(self, keys: Iterable[str]) -> int:
        with self._lock:
            removed = super().delete_batch(keys)
            if removed:
                self._flush()
            return removed

    def clear(self) -> None:
        with self._lock:
            super().clear()
            self._flush()

    @contextmanager
    def transaction(self) -> Iterator["KeyValueStore"]:
        with self._lock:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
                if self._depth == 0 and self._dirty:
                    self.save()

    def size_bytes(self) -> int:
        try:
            return self.store_file.stat().st_size
        except FileNotFoundError:
            return 0
