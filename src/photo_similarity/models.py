"""Core domain models for photos, fingerprints, groups and review batches."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Tuple, Union


DEFAULT_ASPECT_RATIO = 0.75


@dataclass(frozen=True)
class Photo:
    """A single photo record as provided by the photo store.

    ``width`` and ``height`` are the raw stored dimensions. ``orientation`` is
    the rotation in degrees (0, 90, 180, 270) that the viewer applies.
    """

    id: int
    timestamp_ms: int
    size_bytes: int
    width: int
    height: int
    bucket_name: Optional[str] = None
    orientation: int = 0
    path: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def _swaps_dimensions(self) -> bool:
        return self.orientation in (90, 270)

    @property
    def actual_width(self) -> int:
        return self.height if self._swaps_dimensions else self.width

    @property
    def actual_height(self) -> int:
        return self.width if self._swaps_dimensions else self.height

    @property
    def aspect_ratio(self) -> float:
        if self.actual_width > 0 and self.actual_height > 0:
            return self.actual_width / self.actual_height
        return DEFAULT_ASPECT_RATIO

    @property
    def has_dimension_info(self) -> bool:
        return self.width > 0 and self.height > 0

    @property
    def is_portrait(self) -> bool:
        return self.actual_height > self.actual_width


# ---------------------------------------------------------------------------
# Fingerprints
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HashSuccess:
    """Successful dHash computation. ``0`` is a valid hash."""

    hash: int


@dataclass(frozen=True)
class HashFailed:
    """Fingerprinting failed; the photo is never retried automatically."""

    reason: str


HashResult = Union[HashSuccess, HashFailed]


class FingerprintStatus(str, Enum):
    SUCCESS = "success"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass(frozen=True)
class CachedFingerprint:
    """A fingerprint cache entry: a hash, or a permanent failure marker."""

    hash: Optional[int]
    status: FingerprintStatus

    @property
    def is_success(self) -> bool:
        return self.status is FingerprintStatus.SUCCESS and self.hash is not None

    @property
    def is_failed(self) -> bool:
        return self.status is FingerprintStatus.PERMANENT_FAILURE

    @classmethod
    def from_result(cls, result: HashResult) -> "CachedFingerprint":
        if isinstance(result, HashSuccess):
            return cls(hash=result.hash, status=FingerprintStatus.SUCCESS)
        return cls(hash=None, status=FingerprintStatus.PERMANENT_FAILURE)


@dataclass(frozen=True)
class CacheStats:
    total_count: int
    success_count: int
    failed_count: int


# ---------------------------------------------------------------------------
# Groups and batches
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SimilarGroup:
    """Photos judged similar, ordered by timestamp.

    Similar groups always hold at least two photos; a single-photo group is
    the pseudo-group used for orphans during cleanup.
    """

    images: Tuple[Photo, ...]
    start_time: int
    end_time: int

    @classmethod
    def from_photos(cls, photos: List[Photo]) -> "SimilarGroup":
        if not photos:
            raise ValueError("A group needs at least one photo")
        ordered = tuple(sorted(photos, key=lambda p: p.timestamp_ms))
        return cls(
            images=ordered,
            start_time=ordered[0].timestamp_ms,
            end_time=ordered[-1].timestamp_ms,
        )

    @property
    def id(self) -> str:
        return f"{self.start_time}_{self.images[0].id}"

    @property
    def size(self) -> int:
        return len(self.images)

    @property
    def duration_ms(self) -> int:
        return self.end_time - self.start_time

    @property
    def photo_ids(self) -> List[int]:
        return [photo.id for photo in self.images]


@dataclass(frozen=True)
class Batch:
    """A review batch made of one or more consecutive groups.

    ``group_boundaries[i]`` is the index in ``images`` where the run of
    ``group_ids[i]`` starts; e.g. ``[0, 3, 8]`` means the first group covers
    images 0-2 and the second 3-7.
    """

    images: Tuple[Photo, ...]
    group_ids: Tuple[str, ...]
    group_boundaries: Tuple[int, ...]

    @property
    def group_count(self) -> int:
        return len(self.group_ids)

    @property
    def image_count(self) -> int:
        return len(self.images)

    def _group_end(self, position: int) -> int:
        if position + 1 < len(self.group_boundaries):
            return self.group_boundaries[position + 1]
        return len(self.images)

    def group_id_for_index(self, index: int) -> Optional[str]:
        for position, start in enumerate(self.group_boundaries):
            if start <= index < self._group_end(position):
                return self.group_ids[position]
        return None

    def is_last_in_group(self, index: int) -> bool:
        return any(
            index == self._group_end(position) - 1
            for position in range(len(self.group_boundaries))
        )

    def group_slices(self) -> Iterator[Tuple[str, Tuple[Photo, ...]]]:
        for position, start in enumerate(self.group_boundaries):
            yield self.group_ids[position], self.images[start:self._group_end(position)]


# ---------------------------------------------------------------------------
# Cooldowns, checkpoints, cleanup bookkeeping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CooldownRecord:
    """When a photo or group was last shown; ``expires_at_ms=None`` is permanent."""

    subject_id: str
    processed_at_ms: int
    expires_at_ms: Optional[int]

    @property
    def is_permanent(self) -> bool:
        return self.expires_at_ms is None

    def is_active(self, now_ms: int) -> bool:
        """True while the subject is excluded; it becomes available strictly after expiry."""
        if self.expires_at_ms is None:
            return True
        return now_ms <= self.expires_at_ms


@dataclass(frozen=True)
class Checkpoint:
    owner_id: str
    group_ids: Tuple[str, ...]
    current_index: int
    saved_at_ms: int = 0


@dataclass(frozen=True)
class AnalysisResult:
    """Per-owner summary persisted after an analysis run."""

    owner_id: str
    group_ids: Tuple[str, ...]
    group_sizes: Tuple[int, ...]
    analyzed_at_ms: int = 0

    @property
    def total_groups(self) -> int:
        return len(self.group_ids)

    @property
    def total_images(self) -> int:
        return sum(self.group_sizes)


class CleanupState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    READY = "ready"
    CLEANING = "cleaning"
    COMPLETED = "completed"


@dataclass(frozen=True)
class CleanupInfo:
    owner_id: str
    state: CleanupState
    total_groups: int
    processed_groups: int
    total_images: int
    remaining_images: int
    is_completed: bool

    @property
    def remaining_groups(self) -> int:
        return max(self.total_groups - self.processed_groups, 0)

    @property
    def progress(self) -> float:
        if self.total_groups <= 0:
            return 0.0
        return self.processed_groups / self.total_groups


@dataclass
class StaleCleanupReport:
    fingerprints_removed: int = 0
    image_picks_removed: int = 0
    expired_records_removed: int = 0
