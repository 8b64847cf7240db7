"""Grouping and clustering for similar photos."""

from .detector import (
    DetectionProgress,
    SimilarGroupDetector,
    cluster_candidates,
    collect_groups,
    find_candidate_pairs,
    sort_photos,
)
from .scoring import (
    PairScore,
    meta_score_only,
    passes_representative_check,
    score_pair,
    should_connect,
    should_connect_with_group_size,
)
from .union_find import ConstrainedUnionFind, GroupRepresentatives

__all__ = [
    "ConstrainedUnionFind",
    "DetectionProgress",
    "GroupRepresentatives",
    "PairScore",
    "SimilarGroupDetector",
    "cluster_candidates",
    "collect_groups",
    "find_candidate_pairs",
    "meta_score_only",
    "passes_representative_check",
    "score_pair",
    "should_connect",
    "should_connect_with_group_size",
    "sort_photos",
]
