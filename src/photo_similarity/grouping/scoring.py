"""Pairwise similarity scoring and connection rules.

Scores are built from metadata only (capture time, dimensions, file size,
bucket); fingerprints enter through the Hamming distance, which decides how
much metadata agreement a pair needs.
"""

from dataclasses import dataclass
from typing import Optional

from ..models import Photo
from ..scanner.image_utils import hamming_distance

CANDIDATE_MIN_SCORE = 25.0
LARGE_GROUP_THRESHOLD = 30
MAX_GROUP_SIZE = 50


def time_diff_seconds(photo1: Photo, photo2: Photo) -> int:
    return abs(photo1.timestamp_ms - photo2.timestamp_ms) // 1000


def same_resolution(photo1: Photo, photo2: Photo) -> bool:
    return (
        photo1.actual_width == photo2.actual_width
        and photo1.actual_height == photo2.actual_height
    )


def _time_score(seconds: int) -> float:
    if seconds < 5:
        return 25.0     # burst
    if seconds < 30:
        return 22.0     # quick re-framing
    if seconds < 60:
        return 18.0
    if seconds < 180:
        return 14.0     # multi-angle capture
    if seconds < 300:
        return 10.0
    if seconds < 600:
        return 5.0
    return 0.0


def _dimension_score(photo1: Photo, photo2: Photo) -> float:
    if same_resolution(photo1, photo2):
        return 20.0
    aspect_diff = abs(photo1.aspect_ratio - photo2.aspect_ratio)
    if aspect_diff < 0.02:
        return 12.0
    if aspect_diff < 0.1:
        return 6.0
    return 0.0


def _size_score(photo1: Photo, photo2: Photo) -> float:
    # Relative to the first (earlier) photo of the pair
    size_diff = abs(photo1.size_bytes - photo2.size_bytes) / max(photo1.size_bytes, 1)
    if size_diff < 0.05:
        return 10.0
    if size_diff < 0.10:
        return 8.0
    if size_diff < 0.20:
        return 5.0
    if size_diff < 0.30:
        return 2.0
    return 0.0


def _bucket_score(photo1: Photo, photo2: Photo) -> float:
    if photo1.bucket_name is not None and photo1.bucket_name == photo2.bucket_name:
        return 5.0
    return 0.0


def meta_score_only(photo1: Photo, photo2: Photo) -> float:
    """Cheap metadata score used to pick candidate pairs before hashing."""
    return (
        _time_score(time_diff_seconds(photo1, photo2))
        + _dimension_score(photo1, photo2)
        + _size_score(photo1, photo2)
        + _bucket_score(photo1, photo2)
    )


@dataclass(frozen=True)
class PairScore:
    meta_score: float
    hash_distance: Optional[int]


def score_pair(
    photo1: Photo,
    photo2: Photo,
    hash1: Optional[int],
    hash2: Optional[int],
) -> PairScore:
    """Full score: the metadata score plus the fingerprint distance, if both exist."""
    meta_score = meta_score_only(photo1, photo2)
    distance = None
    if hash1 is not None and hash2 is not None:
        distance = hamming_distance(hash1, hash2)
    return PairScore(meta_score=meta_score, hash_distance=distance)


def should_connect(photo1: Photo, photo2: Photo, score: PairScore) -> bool:
    """Whether a candidate pair is similar enough to link."""
    distance = score.hash_distance

    if distance is None:
        # No fingerprint: time, resolution and metadata must all agree
        return (
            time_diff_seconds(photo1, photo2) <= 180
            and same_resolution(photo1, photo2)
            and score.meta_score >= 55.0
        )
    if distance <= 6:
        return score.meta_score >= 15.0
    if distance <= 10:
        return score.meta_score >= 30.0
    if distance <= 14:
        return score.meta_score >= 45.0
    return False


def should_connect_with_group_size(
    photo1: Photo,
    photo2: Photo,
    score: PairScore,
    combined_size: int,
    max_group_size: int = MAX_GROUP_SIZE,
    large_group_threshold: int = LARGE_GROUP_THRESHOLD,
) -> bool:
    """``should_connect`` with stricter rules as the merged group grows."""
    if not should_connect(photo1, photo2, score):
        return False

    distance = score.hash_distance
    if combined_size > large_group_threshold:
        if distance is None or distance > 10:
            return False
        if score.meta_score < 40.0:
            return False

    if combined_size > max_group_size - 5:
        if distance is None or distance > 6:
            return False

    return True


def passes_representative_check(
    photo: Photo,
    representative: Photo,
    photo_hash: Optional[int],
    representative_hash: Optional[int],
) -> bool:
    """Whether ``photo`` is close enough to one representative of a group."""
    seconds = time_diff_seconds(photo, representative)
    same_res = same_resolution(photo, representative)

    if photo_hash is None or representative_hash is None:
        return seconds <= 60 and same_res

    distance = hamming_distance(photo_hash, representative_hash)
    if distance <= 8:
        return True
    if distance <= 12:
        return same_res or seconds <= 120
    return False
