"""Casual review modes: random photos and similar groups under expiring cooldowns."""

import logging
from typing import List, Optional, Sequence

from ..models import Batch, Photo, SimilarGroup
from .batching import BatchPlanner
from .cooldown import CooldownMode, CooldownTracker

logger = logging.getLogger(__name__)

DEFAULT_RANDOM_COUNT = 30


class RecommendationEngine:
    """Picks what to show next outside of the resumable cleanup workflow."""

    def __init__(self, cooldowns: CooldownTracker, planner: Optional[BatchPlanner] = None):
        self.cooldowns = cooldowns
        self.planner = planner or BatchPlanner()

    def random_walk_batch(self, photos: Sequence[Photo], count: int = DEFAULT_RANDOM_COUNT) -> List[Photo]:
        """Random photos, preferring ones not shown recently."""
        self.cooldowns.cleanup_expired()
        selected = self.cooldowns.select_available_images(photos, count)
        logger.info(f"Random walk picked {len(selected)} of {len(photos)} photos")
        return selected

    def similar_batch(self, groups: Sequence[SimilarGroup]) -> Optional[Batch]:
        """Next batch of similar groups that are not cooling down."""
        cooling = self.cooldowns.excluded_group_ids(CooldownMode.EXPIRING)
        available = [group for group in groups if group.id not in cooling]
        if not available:
            logger.info("No similar groups available, all are cooling down")
            return None
        return self.planner.build_batch(available)

    def record_groups_processed(self, group_ids: Sequence[str]) -> None:
        self.cooldowns.mark_groups_processed(group_ids, CooldownMode.EXPIRING)
