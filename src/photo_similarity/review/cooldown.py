"""Cooldowns that keep recently shown photos and groups out of selection.

Three independent record kinds share one store:

* ``image:<photo id>`` - photo picked by random selection, expiring
* ``group:<group id>`` - group reviewed in similar mode, expiring
* ``owner:<quoted owner id>:<group id>`` - group reviewed in the resumable cleanup
  workflow, permanent
"""

import logging
import random
import time
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import quote

from ..config import CooldownSettings
from ..models import CooldownRecord, Photo
from ..storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

IMAGE_PREFIX = "image:"
GROUP_PREFIX = "group:"
OWNER_PREFIX = "owner:"

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    return int(time.time() * 1000)


class CooldownMode(str, Enum):
    EXPIRING = "expiring"
    PERMANENT = "permanent"


class CooldownTracker:
    """Records what was shown and answers what is still cooling down."""

    def __init__(
        self,
        store: KeyValueStore,
        settings: CooldownSettings = CooldownSettings(),
        clock: Callable[[], int] = now_ms,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.settings = settings
        self.clock = clock
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Record encoding
    # ------------------------------------------------------------------

    @staticmethod
    def _encode(record: CooldownRecord) -> dict:
        return {"processed_at": record.processed_at_ms, "expires_at": record.expires_at_ms}

    @staticmethod
    def _decode(subject_id: str, entry: dict) -> CooldownRecord:
        return CooldownRecord(
            subject_id=subject_id,
            processed_at_ms=int(entry["processed_at"]),
            expires_at_ms=entry.get("expires_at"),
        )

    def _records(self, prefix: str) -> Dict[str, CooldownRecord]:
        return {
            key[len(prefix):]: self._decode(key[len(prefix):], entry)
            for key, entry in self.store.items(prefix).items()
        }

    def _draw_ttl_ms(self, options: Sequence[int]) -> int:
        return self.rng.choice(list(options)) * DAY_MS

    @staticmethod
    def _owner_prefix(owner_id: str) -> str:
        # Owner ids may contain ":", so quote them to keep prefixes disjoint
        return f"{OWNER_PREFIX}{quote(owner_id, safe='')}:"

    # ------------------------------------------------------------------
    # Per-image regime
    # ------------------------------------------------------------------

    def record_images_picked(self, photo_ids: Iterable[int]) -> None:
        now = self.clock()
        entries = {}
        for photo_id in photo_ids:
            record = CooldownRecord(
                subject_id=str(photo_id),
                processed_at_ms=now,
                expires_at_ms=now + self._draw_ttl_ms(self.settings.image_cooldown_days),
            )
            entries[f"{IMAGE_PREFIX}{photo_id}"] = self._encode(record)
        self.store.put_batch(entries)

    def cooling_image_records(self) -> Dict[int, CooldownRecord]:
        now = self.clock()
        return {
            int(subject_id): record
            for subject_id, record in self._records(IMAGE_PREFIX).items()
            if record.is_active(now)
        }

    def cooling_image_ids(self) -> Set[int]:
        return set(self.cooling_image_records())

    def is_image_cooling(self, photo_id: int) -> bool:
        entry = self.store.get(f"{IMAGE_PREFIX}{photo_id}")
        if entry is None:
            return False
        return self._decode(str(photo_id), entry).is_active(self.clock())

    def select_available_images(self, photos: Sequence[Photo], count: int) -> List[Photo]:
        """
        Randomly pick ``count`` photos that are not cooling down, then record them.

        When too few photos are available, the rest is filled from cooling
        photos whose cooldown ends soonest.
        """
        if count <= 0 or not photos:
            return []

        with self.store.transaction():
            cooling = self.cooling_image_records()
            available = [photo for photo in photos if photo.id not in cooling]
            cooling_photos = [photo for photo in photos if photo.id in cooling]

            self.rng.shuffle(available)
            result = available[:count]

            if len(result) < count and cooling_photos:
                cooling_photos.sort(key=lambda photo: cooling[photo.id].expires_at_ms)
                result.extend(cooling_photos[:count - len(result)])

            self.record_images_picked(photo.id for photo in result)

        logger.debug(f"Selected {len(result)} photos ({len(cooling)} cooling down)")
        return result

    # ------------------------------------------------------------------
    # Per-group regimes
    # ------------------------------------------------------------------

    def mark_groups_processed(
        self,
        group_ids: Iterable[str],
        mode: CooldownMode = CooldownMode.EXPIRING,
        owner_id: Optional[str] = None,
        ttl_ms: Optional[int] = None,
    ) -> None:
        """
        Record reviewed groups.

        Args:
            group_ids: Groups the reviewer finished
            mode: EXPIRING excludes them until the TTL elapses, PERMANENT forever
            owner_id: Required for PERMANENT; permanent marks are per owner
            ttl_ms: Fixed TTL for EXPIRING; drawn from the settings when omitted
        """
        if mode is CooldownMode.PERMANENT and owner_id is None:
            raise ValueError("Permanent marks need an owner_id")

        now = self.clock()
        entries = {}
        for group_id in group_ids:
            if mode is CooldownMode.PERMANENT:
                key = f"{self._owner_prefix(owner_id)}{group_id}"
                expires_at = None
            else:
                key = f"{GROUP_PREFIX}{group_id}"
                ttl = ttl_ms if ttl_ms is not None else self._draw_ttl_ms(self.settings.group_cooldown_days)
                expires_at = now + ttl
            entries[key] = self._encode(CooldownRecord(group_id, now, expires_at))
        self.store.put_batch(entries)

    def cooling_group_ids(self) -> Set[str]:
        now = self.clock()
        return {
            group_id
            for group_id, record in self._records(GROUP_PREFIX).items()
            if record.is_active(now)
        }

    def is_group_cooling(self, group_id: str) -> bool:
        entry = self.store.get(f"{GROUP_PREFIX}{group_id}")
        if entry is None:
            return False
        return self._decode(group_id, entry).is_active(self.clock())

    def permanently_processed(self, owner_id: str) -> Set[str]:
        return set(self._records(self._owner_prefix(owner_id)))

    def excluded_group_ids(self, mode: CooldownMode, owner_id: Optional[str] = None) -> Set[str]:
        if mode is CooldownMode.PERMANENT:
            if owner_id is None:
                raise ValueError("Permanent exclusions are per owner")
            return self.permanently_processed(owner_id)
        return self.cooling_group_ids()

    def is_owner_fully_processed(self, owner_id: str, known_group_ids: Iterable[str]) -> bool:
        processed = self.permanently_processed(owner_id)
        return all(group_id in processed for group_id in known_group_ids)

    def reset_owner(self, owner_id: str) -> int:
        with self.store.transaction():
            return self.store.delete_batch(self.store.keys(self._owner_prefix(owner_id)))

    # ------------------------------------------------------------------
    # Garbage collection
    # ------------------------------------------------------------------

    def cleanup_expired(self) -> int:
        """Remove expiring records whose cooldown is over."""
        now = self.clock()
        with self.store.transaction():
            expired = [
                f"{prefix}{subject_id}"
                for prefix in (IMAGE_PREFIX, GROUP_PREFIX)
                for subject_id, record in self._records(prefix).items()
                if not record.is_active(now)
            ]
            removed = self.store.delete_batch(expired)
        if removed:
            logger.debug(f"Removed {removed} expired cooldown records")
        return removed

    def cleanup_stale(self, valid_photo_ids: Set[int]) -> int:
        """Remove image records for photos that no longer exist."""
        with self.store.transaction():
            stale = [
                f"{IMAGE_PREFIX}{subject_id}"
                for subject_id in self._records(IMAGE_PREFIX)
                if int(subject_id) not in valid_photo_ids
            ]
            removed = self.store.delete_batch(stale)
        if removed:
            logger.info(f"Cleaned up {removed} stale image cooldown records")
        return removed
