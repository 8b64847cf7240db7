"""Persisted position inside a partially reviewed batch, one per owner."""

import logging
from typing import Callable, Collection, Dict, Optional, Sequence, Tuple

from ..models import Batch, Checkpoint, SimilarGroup
from ..storage.kv import KeyValueStore
from .batching import assemble_batch
from .cooldown import now_ms

logger = logging.getLogger(__name__)

PREFIX = "checkpoint:"


class CheckpointStore:
    """Save, load and restore review checkpoints."""

    def __init__(self, store: KeyValueStore, clock: Callable[[], int] = now_ms):
        self.store = store
        self.clock = clock

    def _key(self, owner_id: str) -> str:
        return f"{PREFIX}{owner_id}"

    def save(self, owner_id: str, group_ids: Sequence[str], current_index: int) -> None:
        if current_index < 0:
            raise ValueError(f"current_index must not be negative, got {current_index}")
        if not group_ids:
            self.clear(owner_id)
            return
        self.store.put_batch({
            self._key(owner_id): {
                "group_ids": list(group_ids),
                "current_index": int(current_index),
                "saved_at": self.clock(),
            }
        })
        logger.debug(f"Saved checkpoint for {owner_id}: index={current_index}, groups={len(group_ids)}")

    def get(self, owner_id: str) -> Optional[Checkpoint]:
        entry = self.store.get(self._key(owner_id))
        if entry is None:
            return None
        return Checkpoint(
            owner_id=owner_id,
            group_ids=tuple(entry.get("group_ids", [])),
            current_index=int(entry.get("current_index", 0)),
            saved_at_ms=int(entry.get("saved_at", 0)),
        )

    def clear(self, owner_id: str) -> None:
        self.store.delete_batch([self._key(owner_id)])
        logger.debug(f"Cleared checkpoint for {owner_id}")

    def restore(
        self,
        owner_id: str,
        groups: Sequence[SimilarGroup],
        processed_group_ids: Collection[str],
    ) -> Optional[Tuple[Batch, int]]:
        """
        Rebuild the saved batch from the current groups.

        Groups that were processed in the meantime, or that no longer exist,
        are left out; the others keep their saved order. A checkpoint with
        nothing left is cleared and treated as absent.

        Returns:
            Tuple of (batch, index clamped into the batch), or None
        """
        checkpoint = self.get(owner_id)
        if checkpoint is None:
            return None

        groups_by_id: Dict[str, SimilarGroup] = {group.id: group for group in groups}
        remaining = [
            groups_by_id[group_id]
            for group_id in checkpoint.group_ids
            if group_id not in processed_group_ids and group_id in groups_by_id
        ]

        batch = assemble_batch(remaining)
        if batch.image_count == 0:
            self.clear(owner_id)
            return None

        index = min(max(checkpoint.current_index, 0), batch.image_count - 1)
        logger.info(f"Restored checkpoint batch for {owner_id}: {batch.image_count} images, starting at index {index}")
        return batch, index
