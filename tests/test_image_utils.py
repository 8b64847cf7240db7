"""Tests for difference hashing and EXIF orientation handling."""

import random

import pytest
from PIL import Image

from photo_similarity.models import HashFailed, HashSuccess
from photo_similarity.scanner.image_utils import (
    apply_exif_orientation,
    calculate_sample_size,
    compute_dhash,
    hamming_distance,
    orientation_to_degrees,
    read_exif_orientation,
)

from helpers import ALL_ONES, encode, gradient_image


class TestHammingDistance:

    def test_identity_is_zero(self):
        rng = random.Random(7)
        for _ in range(50):
            value = rng.getrandbits(64)
            assert hamming_distance(value, value) == 0

    def test_symmetric_and_bounded(self):
        rng = random.Random(11)
        for _ in range(50):
            a, b = rng.getrandbits(64), rng.getrandbits(64)
            assert hamming_distance(a, b) == hamming_distance(b, a)
            assert 0 <= hamming_distance(a, b) <= 64

    def test_extremes(self):
        assert hamming_distance(0, ALL_ONES) == 64
        assert hamming_distance(0b1011, 0b0001) == 2


class TestSampleSize:

    def test_small_image_is_not_reduced(self):
        assert calculate_sample_size(90, 80) == 1

    def test_shorter_side_stays_above_target(self):
        sample = calculate_sample_size(4000, 3000)
        assert sample == 32
        assert 3000 // sample >= 64
        assert 3000 // (sample * 2) < 64

    def test_power_of_two(self):
        sample = calculate_sample_size(1920, 1080)
        assert sample & (sample - 1) == 0


class TestOrientation:

    @pytest.mark.parametrize("tag, degrees", [(1, 0), (2, 0), (3, 180), (4, 180), (5, 90), (6, 90), (7, 270), (8, 270), (0, 0)])
    def test_degrees(self, tag, degrees):
        assert orientation_to_degrees(tag) == degrees

    def test_rotation_swaps_dimensions(self):
        image = Image.new("RGB", (40, 20))
        assert apply_exif_orientation(image, 6).size == (20, 40)
        assert apply_exif_orientation(image, 3).size == (40, 20)

    def test_normal_orientation_returns_same_image(self):
        image = Image.new("RGB", (40, 20))
        assert apply_exif_orientation(image, 1) is image

    def test_missing_exif_defaults_to_normal(self):
        assert read_exif_orientation(encode(gradient_image())) == 1

    def test_unreadable_source_defaults_to_normal(self):
        assert read_exif_orientation(b"not an image") == 1


class TestComputeDhash:

    def test_descending_gradient_sets_every_bit(self):
        result = compute_dhash(encode(gradient_image(descending=True)))
        assert result == HashSuccess(ALL_ONES)

    def test_ascending_gradient_is_zero_success(self):
        result = compute_dhash(encode(gradient_image(descending=False)))
        assert isinstance(result, HashSuccess)
        assert result.hash == 0

    def test_rotate_180_inverts_horizontal_gradient(self):
        result = compute_dhash(encode(gradient_image(descending=False)), orientation=3)
        assert result == HashSuccess(ALL_ONES)

    def test_mirror_inverts_horizontal_gradient(self):
        result = compute_dhash(encode(gradient_image(descending=False)), orientation=2)
        assert result == HashSuccess(ALL_ONES)

    def test_quarter_turn_makes_rows_flat(self):
        result = compute_dhash(encode(gradient_image(descending=True)), orientation=6)
        assert result == HashSuccess(0)

    def test_large_jpeg_uses_reduced_decode(self):
        data = encode(gradient_image(1024, 768, descending=True), "JPEG", quality=95)
        assert compute_dhash(data) == HashSuccess(ALL_ONES)

    def test_reencoding_changes_hash_little(self):
        image = gradient_image(320, 240)
        png = compute_dhash(encode(image))
        jpeg = compute_dhash(encode(image, "JPEG", quality=60))
        assert hamming_distance(png.hash, jpeg.hash) <= 6

    def test_garbage_bytes_fail(self):
        result = compute_dhash(b"\x00\x01definitely not an image")
        assert isinstance(result, HashFailed)
        assert result.reason

    def test_missing_file_fails(self, tmp_path):
        result = compute_dhash(tmp_path / "missing.jpg")
        assert isinstance(result, HashFailed)

    def test_reads_from_path(self, tmp_path):
        path = tmp_path / "ramp.png"
        gradient_image().save(path)
        assert compute_dhash(path) == HashSuccess(ALL_ONES)
