"""Resumable cleanup workflow over the similar groups of one owner.

An owner (an album, a folder, a session) is analysed once; every photo ends
up in exactly one group, orphans as single-photo groups. The reviewer then
pulls batches, marks groups processed permanently, and can resume a
half-finished batch from a checkpoint after a restart.
"""

import asyncio
import logging
import threading
import time
from typing import AsyncIterator, Iterable, List, Optional, Sequence, Tuple, Union

from ..cancellation import CancelToken
from ..config import CleanupSettings
from ..grouping.detector import PROGRESS_CLUSTERED, SimilarGroupDetector
from ..models import (
    AnalysisResult,
    Batch,
    Checkpoint,
    CleanupInfo,
    CleanupState,
    Photo,
    SimilarGroup,
    StaleCleanupReport,
)
from ..storage.kv import KeyValueStore
from .batching import BatchPlanner
from .checkpoint import CheckpointStore
from .cooldown import CooldownMode, CooldownTracker, now_ms

logger = logging.getLogger(__name__)

ANALYSIS_PREFIX = "analysis:"
COMPLETED_PREFIX = "completed:"

PROGRESS_ORPHANS = 0.9
PROGRESS_PERSISTED = 0.95


def with_orphans(similar_groups: Sequence[SimilarGroup], photos: Sequence[Photo]) -> List[SimilarGroup]:
    """Similar groups (largest first) followed by one group per leftover photo, oldest first."""
    grouped_ids = {photo.id for group in similar_groups for photo in group.images}
    orphans = [
        SimilarGroup.from_photos([photo])
        for photo in photos
        if photo.id not in grouped_ids
    ]
    orphans.sort(key=lambda group: (group.start_time, group.images[0].id))
    return list(similar_groups) + orphans


class CleanupEngine:
    """Coordinates detection, batching, permanent cooldowns and checkpoints.

    Workflow state and the group cache share one lock, so a single engine can
    serve request threads and the event loop at once.
    """

    def __init__(
        self,
        detector: SimilarGroupDetector,
        cooldowns: CooldownTracker,
        checkpoints: CheckpointStore,
        progress_store: KeyValueStore,
        settings: CleanupSettings = CleanupSettings(),
        clock=time.monotonic,
    ):
        self.detector = detector
        self.cooldowns = cooldowns
        self.checkpoints = checkpoints
        self.progress_store = progress_store
        self.settings = settings
        self.planner = BatchPlanner(settings.max_batch_size, settings.small_group_threshold)
        self._clock = clock

        self._lock = threading.RLock()
        self.state = CleanupState.IDLE
        self.current_owner_id: Optional[str] = None
        self._cached_groups: Optional[List[SimilarGroup]] = None
        self._cached_owner_id: Optional[str] = None
        self._cached_at = 0.0

    # ------------------------------------------------------------------
    # Group cache
    # ------------------------------------------------------------------

    def invalidate_groups(self) -> None:
        """Drop cached groups; call whenever photos are added or deleted."""
        with self._lock:
            self._cached_groups = None
            self._cached_owner_id = None

    def _cache_groups(self, owner_id: str, groups: List[SimilarGroup]) -> None:
        with self._lock:
            self._cached_groups = groups
            self._cached_owner_id = owner_id
            self._cached_at = self._clock()

    def _valid_cached_groups(self, owner_id: str) -> Optional[List[SimilarGroup]]:
        with self._lock:
            if self._cached_groups is None or self._cached_owner_id != owner_id:
                return None
            if self._clock() - self._cached_at > self.settings.group_cache_ttl_seconds:
                self._cached_groups = None
                return None
            return self._cached_groups

    async def get_groups(
        self,
        owner_id: str,
        photos: Sequence[Photo],
        cancel_token: Optional[CancelToken] = None,
    ) -> List[SimilarGroup]:
        """Cached groups for the owner, or a fresh detection if the cache is stale."""
        cached = self._valid_cached_groups(owner_id)
        if cached is not None:
            return cached
        similar = await self.detector.detect_groups(photos, cancel_token)
        groups = with_orphans(similar, photos)
        self._cache_groups(owner_id, groups)
        return groups

    # ------------------------------------------------------------------
    # Analysis bookkeeping
    # ------------------------------------------------------------------

    def _save_analysis(self, owner_id: str, groups: Sequence[SimilarGroup]) -> AnalysisResult:
        result = AnalysisResult(
            owner_id=owner_id,
            group_ids=tuple(group.id for group in groups),
            group_sizes=tuple(group.size for group in groups),
            analyzed_at_ms=now_ms(),
        )
        with self.progress_store.transaction():
            self.progress_store.put_batch({
                f"{ANALYSIS_PREFIX}{owner_id}": {
                    "group_ids": list(result.group_ids),
                    "group_sizes": list(result.group_sizes),
                    "analyzed_at": result.analyzed_at_ms,
                }
            })
            self.progress_store.delete_batch([f"{COMPLETED_PREFIX}{owner_id}"])
        return result

    def get_analysis(self, owner_id: str) -> Optional[AnalysisResult]:
        entry = self.progress_store.get(f"{ANALYSIS_PREFIX}{owner_id}")
        if entry is None:
            return None
        return AnalysisResult(
            owner_id=owner_id,
            group_ids=tuple(entry.get("group_ids", [])),
            group_sizes=tuple(entry.get("group_sizes", [])),
            analyzed_at_ms=int(entry.get("analyzed_at", 0)),
        )

    def _mark_completed(self, owner_id: str) -> None:
        self.progress_store.put_batch({f"{COMPLETED_PREFIX}{owner_id}": True})

    def is_completed(self, owner_id: str) -> bool:
        return bool(self.progress_store.get(f"{COMPLETED_PREFIX}{owner_id}", False))

    # ------------------------------------------------------------------
    # Workflow state
    # ------------------------------------------------------------------

    def _set_state(self, state: CleanupState, owner_id: Optional[str] = None) -> None:
        with self._lock:
            self.state = state
            if owner_id is not None:
                self.current_owner_id = owner_id

    def _set_state_if_current(self, owner_id: str, state: CleanupState) -> None:
        with self._lock:
            if self.current_owner_id == owner_id:
                self.state = state

    def _state_snapshot(self) -> Tuple[Optional[str], CleanupState]:
        with self._lock:
            return self.current_owner_id, self.state

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    async def analyze(
        self,
        owner_id: str,
        photos: Sequence[Photo],
        cancel_token: Optional[CancelToken] = None,
    ) -> AsyncIterator[float]:
        """
        Analyse the owner's photos, yielding progress in [0, 1].

        On cancellation nothing is persisted or cached and the engine goes
        back to IDLE before the cancellation propagates.
        """
        self._set_state(CleanupState.ANALYZING, owner_id)
        yield 0.0

        if not photos:
            logger.info(f"Owner {owner_id} has no photos, skipping analysis")
            self._save_analysis(owner_id, [])
            self._cache_groups(owner_id, [])
            self._mark_completed(owner_id)
            self._set_state(CleanupState.COMPLETED)
            yield 1.0
            return

        logger.info(f"Analysing {owner_id} with {len(photos)} photos")

        similar_groups: List[SimilarGroup] = []
        try:
            async for step in self.detector.detect(photos, cancel_token):
                if step.groups is not None:
                    similar_groups = step.groups
                yield min(step.progress, PROGRESS_CLUSTERED)
        except (asyncio.CancelledError, Exception):
            self._set_state(CleanupState.IDLE)
            raise

        groups = with_orphans(similar_groups, photos)
        yield PROGRESS_ORPHANS

        result = self._save_analysis(owner_id, groups)
        self._cache_groups(owner_id, groups)
        yield PROGRESS_PERSISTED

        logger.info(
            f"Analysis complete: {len(similar_groups)} similar groups + "
            f"{len(groups) - len(similar_groups)} orphans = {result.total_groups} groups, "
            f"{result.total_images} photos"
        )

        if groups:
            self._set_state(CleanupState.READY)
        else:
            self._set_state(CleanupState.COMPLETED)
            self._mark_completed(owner_id)
        yield 1.0

    async def next_batch(
        self,
        owner_id: str,
        photos: Sequence[Photo],
        exclude_group_ids: Iterable[str] = (),
    ) -> Optional[Batch]:
        """
        Next batch of groups not yet processed for this owner.

        Args:
            owner_id: Owner being cleaned up
            photos: The owner's photos, used when groups must be re-detected
            exclude_group_ids: Extra groups to skip, e.g. the batch on screen

        Returns:
            The batch, or None once every group has been processed
        """
        groups = await self.get_groups(owner_id, photos)
        return self.next_batch_from_groups(owner_id, groups, exclude_group_ids)

    def next_batch_from_groups(
        self,
        owner_id: str,
        groups: Sequence[SimilarGroup],
        exclude_group_ids: Iterable[str] = (),
    ) -> Optional[Batch]:
        """Same as ``next_batch`` for callers that already hold the groups."""
        excluded = self.cooldowns.excluded_group_ids(CooldownMode.PERMANENT, owner_id)
        excluded |= set(exclude_group_ids)
        available = [group for group in groups if group.id not in excluded]

        if not available:
            self._set_state(CleanupState.COMPLETED, owner_id)
            self._mark_completed(owner_id)
            return None

        self._set_state(CleanupState.CLEANING, owner_id)
        return self.planner.build_batch(available)

    def mark_processed(self, owner_id: str, group_ids: Union[str, Sequence[str]]) -> bool:
        """
        Permanently mark groups as reviewed.

        Returns:
            True when this completes the owner
        """
        if isinstance(group_ids, str):
            group_ids = [group_ids]

        self.cooldowns.mark_groups_processed(group_ids, CooldownMode.PERMANENT, owner_id)
        logger.debug(f"Permanently marked {len(group_ids)} groups as processed for {owner_id}")

        analysis = self.get_analysis(owner_id)
        if analysis is not None and self.cooldowns.is_owner_fully_processed(owner_id, analysis.group_ids):
            self._mark_completed(owner_id)
            self._set_state_if_current(owner_id, CleanupState.COMPLETED)
            logger.info(f"Cleanup of {owner_id} completed")
            return True
        return False

    def remaining_group_ids(self, owner_id: str) -> List[str]:
        analysis = self.get_analysis(owner_id)
        if analysis is None:
            return []
        processed = self.cooldowns.permanently_processed(owner_id)
        return [group_id for group_id in analysis.group_ids if group_id not in processed]

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def save_checkpoint(self, owner_id: str, group_ids: Sequence[str], current_index: int) -> None:
        self.checkpoints.save(owner_id, group_ids, current_index)

    def get_checkpoint(self, owner_id: str) -> Optional[Checkpoint]:
        return self.checkpoints.get(owner_id)

    def clear_checkpoint(self, owner_id: str) -> None:
        self.checkpoints.clear(owner_id)

    async def restore_checkpoint(
        self,
        owner_id: str,
        photos: Sequence[Photo],
    ) -> Optional[Tuple[Batch, int]]:
        """Rebuild the checkpointed batch, or None if there is nothing to resume."""
        if self.checkpoints.get(owner_id) is None:
            return None

        groups = await self.get_groups(owner_id, photos)
        processed = self.cooldowns.permanently_processed(owner_id)
        restored = self.checkpoints.restore(owner_id, groups, processed)
        if restored is not None:
            self._set_state(CleanupState.CLEANING, owner_id)
        return restored

    # ------------------------------------------------------------------
    # Status and housekeeping
    # ------------------------------------------------------------------

    def cleanup_info(self, owner_id: str) -> CleanupInfo:
        analysis = self.get_analysis(owner_id)
        completed = self.is_completed(owner_id)
        processed = self.cooldowns.permanently_processed(owner_id)

        if analysis is None:
            total_groups = processed_groups = total_images = remaining_images = 0
        else:
            total_groups = analysis.total_groups
            total_images = analysis.total_images
            processed_groups = sum(1 for group_id in analysis.group_ids if group_id in processed)
            remaining_images = sum(
                size
                for group_id, size in zip(analysis.group_ids, analysis.group_sizes)
                if group_id not in processed
            )

        current_owner_id, current_state = self._state_snapshot()
        if completed:
            state = CleanupState.COMPLETED
        elif current_owner_id == owner_id:
            state = current_state
        elif analysis is None:
            state = CleanupState.IDLE
        elif total_groups == 0:
            state = CleanupState.COMPLETED
        else:
            state = CleanupState.READY

        return CleanupInfo(
            owner_id=owner_id,
            state=state,
            total_groups=total_groups,
            processed_groups=processed_groups,
            total_images=total_images,
            remaining_images=remaining_images,
            is_completed=completed,
        )

    def cleanup_progress(self, owner_id: str) -> float:
        return self.cleanup_info(owner_id).progress

    def reset_owner(self, owner_id: str) -> None:
        """Forget analysis, processed marks and checkpoint of one owner."""
        self.cooldowns.reset_owner(owner_id)
        self.checkpoints.clear(owner_id)
        self.progress_store.delete_batch([
            f"{ANALYSIS_PREFIX}{owner_id}",
            f"{COMPLETED_PREFIX}{owner_id}",
        ])
        with self._lock:
            if self.current_owner_id == owner_id:
                self.invalidate_groups()
                self.state = CleanupState.IDLE

    def exit_cleanup(self) -> None:
        with self._lock:
            self.state = CleanupState.IDLE
            self.current_owner_id = None
            self.invalidate_groups()

    def cleanup_stale(self, valid_photo_ids: Iterable[int]) -> StaleCleanupReport:
        """Garbage-collect fingerprints and cooldowns of photos that are gone."""
        valid = set(valid_photo_ids)
        report = StaleCleanupReport(
            fingerprints_removed=self.detector.fingerprints.cache.cleanup_stale(valid),
            image_picks_removed=self.cooldowns.cleanup_stale(valid),
            expired_records_removed=self.cooldowns.cleanup_expired(),
        )
        self.invalidate_groups()
        return report
