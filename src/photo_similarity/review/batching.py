"""Builds review batches out of ordered groups.

Small groups are chained into one batch so the reviewer is not interrupted
after every two or three photos; a big group is shown on its own.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from ..models import Batch, Photo, SimilarGroup

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 30
SMALL_GROUP_THRESHOLD = 10


def assemble_batch(groups: Iterable[SimilarGroup]) -> Batch:
    """Concatenate groups in order, recording where each one starts."""
    images: List[Photo] = []
    group_ids: List[str] = []
    boundaries: List[int] = []
    for group in groups:
        boundaries.append(len(images))
        group_ids.append(group.id)
        images.extend(group.images)
    return Batch(images=tuple(images), group_ids=tuple(group_ids), group_boundaries=tuple(boundaries))


class BatchPlanner:
    """Takes groups from the front of an ordered list until the batch is full."""

    def __init__(
        self,
        max_batch_size: int = MAX_BATCH_SIZE,
        small_group_threshold: int = SMALL_GROUP_THRESHOLD,
    ):
        self.max_batch_size = max_batch_size
        self.small_group_threshold = small_group_threshold

    def select_groups(self, available_groups: Sequence[SimilarGroup]) -> List[SimilarGroup]:
        selected: List[SimilarGroup] = []
        current_size = 0

        for group in available_groups:
            if current_size > 0 and current_size + group.size > self.max_batch_size:
                break

            selected.append(group)
            current_size += group.size

            # A big group fills the batch alone
            if group.size > self.small_group_threshold:
                break
            # Small groups are chained only while the total stays small
            if current_size > self.small_group_threshold:
                break

        return selected

    def build_batch(self, available_groups: Sequence[SimilarGroup]) -> Optional[Batch]:
        """
        Build the next batch from groups already filtered by cooldowns.

        Args:
            available_groups: Groups in presentation order

        Returns:
            The batch, or None when no groups are available
        """
        selected = self.select_groups(available_groups)
        if not selected:
            return None

        batch = assemble_batch(selected)
        logger.debug(f"Created batch: {batch.image_count} images, {batch.group_count} groups")
        return batch
