"""Fingerprint cache keyed by photo id.

A photo with any entry, success or permanent failure, is never hashed again;
only ``clear()`` resets that.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

from ..models import CachedFingerprint, CacheStats, FingerprintStatus, HashResult
from ..storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

PREFIX = "fingerprint:"


class FingerprintCache:
    """Batch get/put of dHash results on top of a key-value store."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _key(self, photo_id: int) -> str:
        return f"{PREFIX}{photo_id}"

    @staticmethod
    def _decode(entry: dict) -> CachedFingerprint:
        status = FingerprintStatus(entry.get("status", FingerprintStatus.PERMANENT_FAILURE.value))
        raw_hash = entry.get("hash")
        return CachedFingerprint(
            hash=int(raw_hash) if raw_hash is not None else None,
            status=status,
        )

    def get(self, photo_id: int) -> Optional[CachedFingerprint]:
        return self.get_batch([photo_id]).get(photo_id)

    def get_batch(self, photo_ids: Iterable[int]) -> Dict[int, CachedFingerprint]:
        """Cached entries for the given ids; uncached ids are left out."""
        ids = list(photo_ids)
        if not ids:
            return {}
        raw = self.store.get_batch(self._key(photo_id) for photo_id in ids)
        result = {}
        for photo_id in ids:
            entry = raw.get(self._key(photo_id))
            if entry is not None:
                result[photo_id] = self._decode(entry)
        return result

    def pending(self, photo_ids: Iterable[int]) -> List[int]:
        """Ids with no entry at all; failed photos are not retried."""
        ids = list(photo_ids)
        cached = self.get_batch(ids)
        return [photo_id for photo_id in ids if photo_id not in cached]

    def put(self, photo_id: int, result: HashResult) -> None:
        self.put_batch({photo_id: result})

    def put_batch(self, results: Dict[int, HashResult]) -> None:
        if not results:
            return
        entries = {}
        for photo_id, result in results.items():
            cached = CachedFingerprint.from_result(result)
            entries[self._key(photo_id)] = {
                "hash": cached.hash,
                "status": cached.status.value,
            }
        self.store.put_batch(entries)

    def cached_ids(self) -> Set[int]:
        ids = set()
        for key in self.store.keys(PREFIX):
            try:
                ids.add(int(key[len(PREFIX):]))
            except ValueError:
                continue
        return ids

    def cleanup_stale(self, valid_photo_ids: Set[int]) -> int:
        """Drop entries for photos that no longer exist."""
        with self.store.transaction():
            stale = [photo_id for photo_id in self.cached_ids() if photo_id not in valid_photo_ids]
            removed = self.store.delete_batch(self._key(photo_id) for photo_id in stale)
        if removed:
            logger.info(f"Cleaned up {removed} stale fingerprint entries")
        return removed

    def stats(self) -> CacheStats:
        entries = self.store.items(PREFIX)
        success = sum(
            1 for entry in entries.values()
            if entry.get("status") == FingerprintStatus.SUCCESS.value
        )
        failed = len(entries) - success
        return CacheStats(total_count=len(entries), success_count=success, failed_count=failed)

    def clear(self) -> None:
        """Forget every fingerprint, including permanent failures."""
        self.store.clear()
        logger.info("Cleared fingerprint cache")
