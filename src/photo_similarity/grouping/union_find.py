"""Union-find with a group size cap and per-group representatives.

Each root keeps three representative members: the earliest, the latest and
the medoid (lowest average fingerprint distance to the other representative
candidates). New members must match one of them, which stops chains of weak
pairwise links from merging unrelated photos.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from ..models import Photo
from ..scanner.image_utils import hamming_distance
from .scoring import MAX_GROUP_SIZE


@dataclass(frozen=True)
class GroupRepresentatives:
    earliest: int
    latest: int
    medoid: int

    def to_list(self) -> List[int]:
        return list(dict.fromkeys([self.earliest, self.medoid, self.latest]))


class ConstrainedUnionFind:
    """Disjoint sets over indices into ``photos`` (sorted by timestamp)."""

    def __init__(
        self,
        photos: Sequence[Photo],
        hashes: Mapping[int, Optional[int]],
        max_group_size: int = MAX_GROUP_SIZE,
    ):
        self.photos = photos
        self.hashes = hashes
        self.max_group_size = max_group_size
        count = len(photos)
        self.parent = list(range(count))
        self.rank = [0] * count
        self.group_size = [1] * count
        self.representatives: Dict[int, GroupRepresentatives] = {
            i: GroupRepresentatives(i, i, i) for i in range(count)
        }

    def __len__(self) -> int:
        return len(self.parent)

    def hash_of(self, index: int) -> Optional[int]:
        return self.hashes.get(self.photos[index].id)

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def get_group_size(self, x: int) -> int:
        return self.group_size[self.find(x)]

    def get_representatives(self, x: int) -> List[int]:
        reps = self.representatives.get(self.find(x))
        return reps.to_list() if reps is not None else [x]

    def try_union(self, x: int, y: int) -> bool:
        """Merge the groups of ``x`` and ``y`` unless the result would be too large."""
        root_x = self.find(x)
        root_y = self.find(y)
        if root_x == root_y:
            return True

        new_size = self.group_size[root_x] + self.group_size[root_y]
        if new_size > self.max_group_size:
            return False

        if self.rank[root_x] < self.rank[root_y]:
            smaller, larger = root_x, root_y
        else:
            smaller, larger = root_y, root_x

        self.parent[smaller] = larger
        if self.rank[root_x] == self.rank[root_y]:
            self.rank[larger] += 1
        self.group_size[larger] = new_size

        reps_x = self.representatives.get(root_x)
        reps_y = self.representatives.get(root_y)
        if reps_x is not None and reps_y is not None:
            self.representatives[larger] = self._select_representatives(reps_x, reps_y)
        self.representatives.pop(smaller, None)
        return True

    def _select_representatives(
        self,
        reps_x: GroupRepresentatives,
        reps_y: GroupRepresentatives,
    ) -> GroupRepresentatives:
        candidates = list(dict.fromkeys([
            reps_x.earliest, reps_x.latest, reps_x.medoid,
            reps_y.earliest, reps_y.latest, reps_y.medoid,
        ]))
        earliest = min(candidates, key=lambda i: self.photos[i].timestamp_ms)
        latest = max(candidates, key=lambda i: self.photos[i].timestamp_ms)
        return GroupRepresentatives(earliest, latest, self._select_medoid(candidates))

    def _select_medoid(self, candidates: List[int]) -> int:
        if len(candidates) <= 1:
            return candidates[0]

        def average_distance(candidate: int) -> float:
            own_hash = self.hash_of(candidate)
            if own_hash is None:
                return math.inf
            distances = [
                hamming_distance(own_hash, other_hash)
                for other in candidates
                if other != candidate
                for other_hash in [self.hash_of(other)]
                if other_hash is not None
            ]
            if not distances:
                return math.inf
            return sum(distances) / len(distances)

        # min() keeps the first candidate on ties
        return min(candidates, key=average_distance)
