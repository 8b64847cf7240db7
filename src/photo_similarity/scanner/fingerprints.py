"""Computes missing fingerprints with bounded decode concurrency."""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence

from ..cancellation import CancelToken
from ..models import HashFailed, HashResult, HashSuccess, Photo
from .cache import FingerprintCache
from .image_utils import TARGET_DECODE_SIZE, compute_dhash
from .pixel_source import PixelSource

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class FingerprintService:
    """Fills the fingerprint cache for a set of photos.

    Photos are hashed in fixed-size chunks; within a chunk at most
    ``max_concurrent_decodes`` images are decoded at once. Each chunk is
    written back to the cache in one batch, so a cancelled run keeps the
    chunks it finished.
    """

    def __init__(
        self,
        cache: FingerprintCache,
        pixel_source: PixelSource,
        chunk_size: int = 10,
        max_concurrent_decodes: int = 3,
        target_size: int = TARGET_DECODE_SIZE,
    ):
        if chunk_size < 1 or max_concurrent_decodes < 1:
            raise ValueError("chunk_size and max_concurrent_decodes must be positive")
        self.cache = cache
        self.pixel_source = pixel_source
        self.chunk_size = chunk_size
        self.max_concurrent_decodes = max_concurrent_decodes
        self.target_size = target_size

    def fingerprint_photo(self, photo: Photo) -> HashResult:
        """Load and hash one photo; every error becomes ``HashFailed``."""
        try:
            pixels = self.pixel_source.load(photo)
        except MemoryError:
            return HashFailed("OOM")
        except Exception as e:
            return HashFailed(f"Cannot open source: {e}")
        return compute_dhash(pixels.source, pixels.orientation, self.target_size)

    async def _compute(self, photo: Photo, permits: asyncio.Semaphore) -> HashResult:
        async with permits:
            return await asyncio.to_thread(self.fingerprint_photo, photo)

    async def ensure_fingerprints(
        self,
        photos: Sequence[Photo],
        cancel_token: Optional[CancelToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[int, Optional[int]]:
        """
        Make sure every photo has a cache entry.

        Args:
            photos: Photos that need fingerprints
            cancel_token: Checked before each chunk
            on_progress: Called with the completed fraction after each chunk

        Returns:
            Mapping of photo id to hash, ``None`` for permanent failures
        """
        if not photos:
            return {}

        ids = [photo.id for photo in photos]
        cached = self.cache.get_batch(ids)
        need_compute: List[Photo] = [photo for photo in photos if photo.id not in cached]

        logger.info(f"Need to compute fingerprints for {len(need_compute)} of {len(photos)} photos")

        new_results: Dict[int, HashResult] = {}
        permits = asyncio.Semaphore(self.max_concurrent_decodes)
        total = len(need_compute)

        for start in range(0, total, self.chunk_size):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            chunk = need_compute[start:start + self.chunk_size]
            results = await asyncio.gather(*(self._compute(photo, permits) for photo in chunk))
            chunk_results = {photo.id: result for photo, result in zip(chunk, results)}

            for photo_id, result in chunk_results.items():
                if isinstance(result, HashFailed):
                    logger.warning(f"Fingerprint failed for photo {photo_id}: {result.reason}")

            self.cache.put_batch(chunk_results)
            new_results.update(chunk_results)

            if on_progress is not None:
                on_progress(min(start + len(chunk), total) / total)

        hashes: Dict[int, Optional[int]] = {
            photo_id: entry.hash for photo_id, entry in cached.items()
        }
        for photo_id, result in new_results.items():
            hashes[photo_id] = result.hash if isinstance(result, HashSuccess) else None

        return hashes
