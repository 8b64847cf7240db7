"""Two-phase similar group detection.

Phase 1 scores photo pairs within a time window on metadata alone. Only
photos that appear in a candidate pair get fingerprinted. Phase 2 rescores
the candidate pairs with fingerprints and clusters them with the
constrained union-find.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Mapping, Optional, Sequence, Set, Tuple

from ..cancellation import CancelToken
from ..config import DetectionSettings
from ..models import Photo, SimilarGroup
from ..scanner.fingerprints import FingerprintService
from .scoring import (
    meta_score_only,
    passes_representative_check,
    score_pair,
    should_connect_with_group_size,
)
from .union_find import ConstrainedUnionFind

logger = logging.getLogger(__name__)

# Progress milestones reported by detect()
PROGRESS_START = 0.0
PROGRESS_PREFILTERED = 0.1
PROGRESS_HASHED = 0.7
PROGRESS_CLUSTERED = 0.85
PROGRESS_DONE = 1.0

_CANCEL_CHECK_INTERVAL = 256


@dataclass(frozen=True)
class DetectionProgress:
    """One step of a detection run; ``groups`` is set only on the final step."""

    progress: float
    stage: str
    groups: Optional[List[SimilarGroup]] = None


def sort_photos(photos: Sequence[Photo]) -> List[Photo]:
    return sorted(photos, key=lambda p: (p.timestamp_ms, p.id))


def find_candidate_pairs(
    sorted_photos: Sequence[Photo],
    time_window_ms: int,
    min_score: float,
) -> Tuple[List[Tuple[int, int]], Set[int]]:
    """
    Metadata pre-filter over photos sorted by timestamp.

    Returns:
        Tuple of (candidate index pairs, indices appearing in any pair)
    """
    pairs: List[Tuple[int, int]] = []
    indices: Set[int] = set()

    for i in range(len(sorted_photos)):
        for j in range(i + 1, len(sorted_photos)):
            if sorted_photos[j].timestamp_ms - sorted_photos[i].timestamp_ms > time_window_ms:
                break
            if meta_score_only(sorted_photos[i], sorted_photos[j]) >= min_score:
                pairs.append((i, j))
                indices.add(i)
                indices.add(j)

    return pairs, indices


def can_join_group(
    new_index: int,
    group_reps: List[int],
    photos: Sequence[Photo],
    hashes: Mapping[int, Optional[int]],
) -> bool:
    """A photo may join a group only if it matches at least one representative."""
    new_photo = photos[new_index]
    new_hash = hashes.get(new_photo.id)
    return any(
        passes_representative_check(
            new_photo,
            photos[rep_index],
            new_hash,
            hashes.get(photos[rep_index].id),
        )
        for rep_index in group_reps
    )


def cluster_candidates(
    sorted_photos: Sequence[Photo],
    candidate_pairs: Sequence[Tuple[int, int]],
    hashes: Mapping[int, Optional[int]],
    settings: DetectionSettings = DetectionSettings(),
    cancel_token: Optional[CancelToken] = None,
) -> ConstrainedUnionFind:
    """Run the constrained union-find over candidate pairs. CPU-bound, single-threaded."""
    union_find = ConstrainedUnionFind(sorted_photos, hashes, settings.max_group_size)

    for pair_number, (i, j) in enumerate(candidate_pairs):
        if cancel_token is not None and pair_number % _CANCEL_CHECK_INTERVAL == 0:
            cancel_token.raise_if_cancelled()

        root_i = union_find.find(i)
        root_j = union_find.find(j)
        if root_i == root_j:
            continue

        photo1 = sorted_photos[i]
        photo2 = sorted_photos[j]
        score = score_pair(photo1, photo2, hashes.get(photo1.id), hashes.get(photo2.id))

        combined_size = union_find.group_size[root_i] + union_find.group_size[root_j]
        if not should_connect_with_group_size(
            photo1,
            photo2,
            score,
            combined_size,
            max_group_size=settings.max_group_size,
            large_group_threshold=settings.large_group_threshold,
        ):
            continue

        # Both photos must match a representative of the other's group
        can_join_i = can_join_group(j, union_find.get_representatives(i), sorted_photos, hashes)
        can_join_j = can_join_group(i, union_find.get_representatives(j), sorted_photos, hashes)
        if can_join_i and can_join_j:
            union_find.try_union(i, j)

    return union_find


def collect_groups(
    sorted_photos: Sequence[Photo],
    union_find: ConstrainedUnionFind,
) -> List[SimilarGroup]:
    """Turn union-find roots into groups of two or more, largest first."""
    members = {}
    for index, photo in enumerate(sorted_photos):
        members.setdefault(union_find.find(index), []).append(photo)

    groups = [
        SimilarGroup.from_photos(group_photos)
        for group_photos in members.values()
        if len(group_photos) >= 2
    ]
    groups.sort(key=lambda group: group.size, reverse=True)
    return groups


class SimilarGroupDetector:
    """Detects groups of near-duplicate photos."""

    def __init__(
        self,
        fingerprints: FingerprintService,
        settings: DetectionSettings = DetectionSettings(),
    ):
        self.fingerprints = fingerprints
        self.settings = settings

    async def detect(
        self,
        photos: Sequence[Photo],
        cancel_token: Optional[CancelToken] = None,
    ) -> AsyncIterator[DetectionProgress]:
        """
        Detect similar groups, yielding progress along the way.

        Progress never decreases. The last item carries the groups (sorted
        by descending size). Cancellation raises ``asyncio.CancelledError``
        and no groups are yielded; fingerprints already written stay cached.

        Args:
            photos: All photos to consider
            cancel_token: Optional token for cooperative cancellation
        """
        yield DetectionProgress(PROGRESS_START, "start")

        if len(photos) < 2:
            yield DetectionProgress(PROGRESS_DONE, "complete", groups=[])
            return

        logger.info(f"Detecting similar groups from {len(photos)} photos")
        sorted_photos = sort_photos(photos)

        candidate_pairs, candidate_indices = find_candidate_pairs(
            sorted_photos,
            self.settings.time_window_ms,
            self.settings.candidate_min_score,
        )
        logger.info(
            f"Found {len(candidate_pairs)} candidate pairs, {len(candidate_indices)} unique photos"
        )
        yield DetectionProgress(PROGRESS_PREFILTERED, "prefiltered")

        if not candidate_pairs:
            yield DetectionProgress(PROGRESS_DONE, "complete", groups=[])
            return

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        candidate_photos = [sorted_photos[i] for i in sorted(candidate_indices)]
        hash_progress: asyncio.Queue = asyncio.Queue()
        hashing = asyncio.ensure_future(
            self.fingerprints.ensure_fingerprints(
                candidate_photos,
                cancel_token=cancel_token,
                on_progress=hash_progress.put_nowait,
            )
        )
        try:
            while not hashing.done() or not hash_progress.empty():
                getter = asyncio.ensure_future(hash_progress.get())
                await asyncio.wait({getter, hashing}, return_when=asyncio.FIRST_COMPLETED)
                if getter.done():
                    fraction = getter.result()
                    span = PROGRESS_HASHED - PROGRESS_PREFILTERED
                    yield DetectionProgress(PROGRESS_PREFILTERED + span * fraction, "hashing")
                else:
                    getter.cancel()
            hashes = hashing.result()
        finally:
            if not hashing.done():
                hashing.cancel()

        yield DetectionProgress(PROGRESS_HASHED, "hashed")

        union_find = await asyncio.to_thread(
            cluster_candidates,
            sorted_photos,
            candidate_pairs,
            hashes,
            self.settings,
            cancel_token,
        )
        yield DetectionProgress(PROGRESS_CLUSTERED, "clustered")

        groups = collect_groups(sorted_photos, union_find)
        logger.info(f"Detected {len(groups)} similar groups")
        yield DetectionProgress(PROGRESS_DONE, "complete", groups=groups)

    async def detect_groups(
        self,
        photos: Sequence[Photo],
        cancel_token: Optional[CancelToken] = None,
    ) -> List[SimilarGroup]:
        """Run ``detect`` to completion and return only the groups."""
        groups: List[SimilarGroup] = []
        async for step in self.detect(photos, cancel_token):
            if step.groups is not None:
                groups = step.groups
        return groups
