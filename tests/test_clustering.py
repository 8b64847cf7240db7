"""Tests for the constrained union-find and the detection pipeline."""

import asyncio
from itertools import combinations

import pytest

from photo_similarity.cancellation import CancelToken
from photo_similarity.config import DetectionSettings
from photo_similarity.grouping.detector import (
    cluster_candidates,
    collect_groups,
    find_candidate_pairs,
    sort_photos,
)
from photo_similarity.grouping.union_find import ConstrainedUnionFind, GroupRepresentatives

from helpers import (
    BASE_TS,
    HOUR_MS,
    InMemoryPixelSource,
    burst,
    make_detector,
    make_photo,
    sizes,
    three_bursts_and_two_singletons,
)


def run_clustering(photos, hashes, settings=DetectionSettings()):
    sorted_photos = sort_photos(photos)
    pairs, _ = find_candidate_pairs(sorted_photos, settings.time_window_ms, settings.candidate_min_score)
    union_find = cluster_candidates(sorted_photos, pairs, hashes, settings)
    return collect_groups(sorted_photos, union_find)


def assert_disjoint(groups):
    for group1, group2 in combinations(groups, 2):
        assert not set(group1.photo_ids) & set(group2.photo_ids)


class TestUnionFind:

    @pytest.fixture
    def photos(self):
        return [make_photo(i, BASE_TS + i * 1000) for i in range(6)]

    def test_find_after_union(self, photos):
        union_find = ConstrainedUnionFind(photos, {})
        assert union_find.try_union(0, 1)
        assert union_find.try_union(1, 2)
        assert union_find.find(0) == union_find.find(2)
        assert union_find.get_group_size(2) == 3
        assert union_find.find(3) == 3

    def test_union_respects_cap(self, photos):
        union_find = ConstrainedUnionFind(photos, {}, max_group_size=3)
        assert union_find.try_union(0, 1)
        assert union_find.try_union(2, 3)
        assert not union_find.try_union(1, 2)
        assert union_find.get_group_size(0) == 2

    def test_long_chain_has_no_recursion_limit(self):
        count = 5000
        photos = [make_photo(i, BASE_TS + i) for i in range(count)]
        union_find = ConstrainedUnionFind(photos, {}, max_group_size=count)
        for i in range(count - 1):
            union_find.parent[i] = i + 1
        assert union_find.find(0) == count - 1
        assert union_find.parent[0] == count - 1

    def test_representatives_track_earliest_and_latest(self, photos):
        hashes = {photo.id: 0 for photo in photos}
        union_find = ConstrainedUnionFind(photos, hashes)
        union_find.try_union(2, 3)
        union_find.try_union(3, 0)
        union_find.try_union(5, 0)
        reps = union_find.representatives[union_find.find(0)]
        assert reps.earliest == 0
        assert reps.latest == 5

    def test_medoid_prefers_photo_with_fingerprint(self, photos):
        hashes = {0: None, 1: 0b1, 2: 0b11}
        union_find = ConstrainedUnionFind(photos[:3], hashes)
        union_find.try_union(0, 1)
        union_find.try_union(1, 2)
        reps = union_find.representatives[union_find.find(0)]
        assert reps.medoid != 0

    def test_representative_list_is_deduplicated(self):
        assert GroupRepresentatives(1, 1, 1).to_list() == [1]
        assert GroupRepresentatives(1, 3, 2).to_list() == [1, 2, 3]


class TestClusterCandidates:

    def test_burst_becomes_one_group(self):
        photos, hashes = burst(1, 4, BASE_TS, 0)
        groups = run_clustering(photos, hashes)
        assert sizes(groups) == [4]
        assert groups[0].photo_ids == [1, 2, 3, 4]

    def test_no_group_exceeds_fifty(self):
        photos = [make_photo(i, BASE_TS + i * 500) for i in range(80)]
        hashes = {photo.id: 0 for photo in photos}
        groups = run_clustering(photos, hashes)
        assert groups
        assert max(sizes(groups)) <= 50
        assert_disjoint(groups)

    def test_chain_does_not_bridge_unrelated_photos(self):
        a = make_photo(1, BASE_TS)
        b = make_photo(2, BASE_TS + 1000)
        c = make_photo(3, BASE_TS + 2000)
        # a~b at 3 bits, b~c at 13 bits (links as a pair), a~c at 16 bits
        hashes = {1: 0, 2: 0b111, 3: 0xFFFF}
        groups = run_clustering([a, b, c], hashes)
        assert len(groups) == 1
        assert set(groups[0].photo_ids) == {1, 2}

    def test_failed_fingerprints_use_strict_rule(self):
        close = [make_photo(1, BASE_TS), make_photo(2, BASE_TS + 2000)]
        apart = [make_photo(3, BASE_TS + HOUR_MS), make_photo(4, BASE_TS + HOUR_MS + 200_000)]
        hashes = {1: None, 2: None, 3: None, 4: None}
        groups = run_clustering(close + apart, hashes)
        assert [group.photo_ids for group in groups] == [[1, 2]]

    def test_groups_sorted_by_size_and_disjoint(self):
        photos, hashes = three_bursts_and_two_singletons()
        groups = run_clustering(photos, hashes)
        assert sizes(groups) == [5, 4, 3]
        assert_disjoint(groups)
        assert all(group.size >= 2 for group in groups)

    def test_candidate_window_breaks_early(self):
        photos = [make_photo(1, BASE_TS), make_photo(2, BASE_TS + 601_000), make_photo(3, BASE_TS + 602_000)]
        pairs, indices = find_candidate_pairs(sort_photos(photos), 600_000, 25)
        assert pairs == [(1, 2)]
        assert indices == {1, 2}

    def test_cancelled_token_stops_clustering(self):
        photos, hashes = burst(1, 4, BASE_TS, 0)
        sorted_photos = sort_photos(photos)
        pairs, _ = find_candidate_pairs(sorted_photos, 600_000, 25)
        token = CancelToken()
        token.cancel()
        with pytest.raises(asyncio.CancelledError):
            cluster_candidates(sorted_photos, pairs, hashes, cancel_token=token)


class TestSimilarGroupDetector:

    def test_progress_is_monotonic_and_ends_with_groups(self):
        photos, hashes = three_bursts_and_two_singletons()
        detector = make_detector(hashes)

        async def collect():
            return [step async for step in detector.detect(photos)]

        steps = asyncio.run(collect())
        progress = [step.progress for step in steps]
        assert progress == sorted(progress)
        assert progress[0] == 0.0
        assert progress[-1] == 1.0
        assert sizes(steps[-1].groups) == [5, 4, 3]
        assert all(step.groups is None for step in steps[:-1])

    def test_too_few_photos_is_empty_result(self):
        detector = make_detector({})
        assert asyncio.run(detector.detect_groups([make_photo(1)])) == []
        assert asyncio.run(detector.detect_groups([])) == []

    def test_only_candidates_are_fingerprinted(self):
        photos, _ = burst(1, 3, BASE_TS, 0)
        loner = make_photo(99, BASE_TS + HOUR_MS)
        pixels = InMemoryPixelSource()
        detector = make_detector({}, pixel_source=pixels)

        groups = asyncio.run(detector.detect_groups(photos + [loner]))

        assert set(pixels.loads) == {1, 2, 3}
        # No pixels at all: the burst still groups under the metadata-only rule
        assert sizes(groups) == [3]

    def test_cancellation_publishes_nothing(self):
        photos, hashes = three_bursts_and_two_singletons()
        detector = make_detector(hashes)
        token = CancelToken()
        token.cancel()
        with pytest.raises(asyncio.CancelledError):
            asyncio.run(detector.detect_groups(photos, token))

    def test_hashing_progress_is_reported(self):
        photos, _ = burst(1, 25, BASE_TS, 0, spacing_ms=100)
        detector = make_detector({}, pixel_source=InMemoryPixelSource())

        async def collect():
            return [step async for step in detector.detect(photos)]

        stages = [step.stage for step in asyncio.run(collect())]
        assert stages.count("hashing") == 3
        assert stages[-1] == "complete"
