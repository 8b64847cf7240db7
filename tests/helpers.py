"""Builders shared by the test modules."""

import io
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
from PIL import Image

from photo_similarity.config import DetectionSettings
from photo_similarity.grouping.detector import SimilarGroupDetector
from photo_similarity.models import HashFailed, HashSuccess, Photo
from photo_similarity.scanner.cache import FingerprintCache
from photo_similarity.scanner.fingerprints import FingerprintService
from photo_similarity.scanner.pixel_source import PixelData, PixelSource
from photo_similarity.storage.kv import InMemoryStore

BASE_TS = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000
ALL_ONES = 0xFFFFFFFFFFFFFFFF


def make_photo(
    photo_id: int,
    timestamp_ms: int = BASE_TS,
    size_bytes: int = 2_000_000,
    width: int = 4000,
    height: int = 3000,
    bucket_name: Optional[str] = "Camera",
    orientation: int = 0,
) -> Photo:
    return Photo(
        id=photo_id,
        timestamp_ms=timestamp_ms,
        size_bytes=size_bytes,
        width=width,
        height=height,
        bucket_name=bucket_name,
        orientation=orientation,
    )


def gradient_image(width: int = 90, height: int = 80, descending: bool = True) -> Image.Image:
    """Grayscale horizontal ramp; every row gets brighter to the left when ``descending``."""
    ramp = np.linspace(250, 5, width) if descending else np.linspace(5, 250, width)
    pixels = np.tile(ramp.astype(np.uint8), (height, 1))
    return Image.fromarray(pixels).convert("RGB")


def encode(image: Image.Image, fmt: str = "PNG", **params) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **params)
    return buffer.getvalue()


class InMemoryPixelSource(PixelSource):
    """Serves encoded images from a dict and counts how often each photo is loaded."""

    def __init__(self, images: Optional[Dict[int, bytes]] = None, orientations: Optional[Dict[int, int]] = None):
        self.images = dict(images or {})
        self.orientations = dict(orientations or {})
        self.loads: Counter = Counter()

    def load(self, photo: Photo) -> PixelData:
        self.loads[photo.id] += 1
        if photo.id not in self.images:
            raise FileNotFoundError(f"No pixels for photo {photo.id}")
        return PixelData(self.images[photo.id], self.orientations.get(photo.id, 1))


def prefilled_cache(hashes: Dict[int, Optional[int]]) -> FingerprintCache:
    """Cache with a success entry per hash, or a permanent failure for ``None``."""
    cache = FingerprintCache(InMemoryStore())
    cache.put_batch({
        photo_id: HashSuccess(value) if value is not None else HashFailed("unreadable")
        for photo_id, value in hashes.items()
    })
    return cache


def make_detector(
    hashes: Dict[int, Optional[int]],
    pixel_source: Optional[PixelSource] = None,
    settings: DetectionSettings = DetectionSettings(),
) -> SimilarGroupDetector:
    service = FingerprintService(
        prefilled_cache(hashes),
        pixel_source or InMemoryPixelSource(),
        chunk_size=settings.hash_chunk_size,
        max_concurrent_decodes=settings.decode_concurrency,
    )
    return SimilarGroupDetector(service, settings)


def burst(
    first_id: int,
    count: int,
    start_ms: int,
    hash_base: int,
    spacing_ms: int = 1000,
) -> Tuple[List[Photo], Dict[int, int]]:
    """Burst of identical-looking shots; member hashes differ from each other by two bits."""
    photos = [make_photo(first_id + k, start_ms + k * spacing_ms) for k in range(count)]
    hashes = {photo.id: hash_base ^ (1 << k) for k, photo in enumerate(photos)}
    return photos, hashes


def three_bursts_and_two_singletons() -> Tuple[List[Photo], Dict[int, int]]:
    """Bursts of 4, 3 and 5 shots an hour apart, then two unrelated photos."""
    photos: List[Photo] = []
    hashes: Dict[int, int] = {}
    for first_id, count, offset, base in (
        (100, 4, 0, 0x0),
        (200, 3, HOUR_MS, 0x00000000FFFFFFFF),
        (300, 5, 2 * HOUR_MS, 0xFFFFFFFF00000000),
    ):
        members, member_hashes = burst(first_id, count, BASE_TS + offset, base)
        photos.extend(members)
        hashes.update(member_hashes)

    photos.append(make_photo(901, BASE_TS + 3 * HOUR_MS, width=1080, height=1920, size_bytes=300_000))
    photos.append(make_photo(902, BASE_TS + 4 * HOUR_MS, bucket_name="Screenshots"))
    hashes[901] = 0x0F0F0F0F0F0F0F0F
    hashes[902] = 0xF0F0F0F0F0F0F0F0
    return photos, hashes


class FakeClock:
    def __init__(self, now: int = BASE_TS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, delta: int) -> None:
        self.now += delta


def sizes(groups: Iterable) -> List[int]:
    return [group.size for group in groups]
