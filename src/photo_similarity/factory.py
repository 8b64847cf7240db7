"""Wires stores, detector and engines together from Settings."""

import logging
from typing import Optional

from .config import Settings
from .grouping.detector import SimilarGroupDetector
from .review.batching import BatchPlanner
from .review.checkpoint import CheckpointStore
from .review.cooldown import CooldownTracker
from .review.engine import CleanupEngine
from .review.recommend import RecommendationEngine
from .scanner.cache import FingerprintCache
from .scanner.fingerprints import FingerprintService
from .scanner.pixel_source import FilePixelSource, PixelSource
from .storage.kv import InMemoryStore, JsonFileStore, KeyValueStore

logger = logging.getLogger(__name__)

STORE_FILES = {
    "fingerprints": "fingerprints.json",
    "cooldowns": "cooldowns.json",
    "checkpoints": "checkpoints.json",
    "progress": "cleanup_progress.json",
}


def open_store(settings: Settings, name: str, persistent: bool = True) -> KeyValueStore:
    if not persistent:
        return InMemoryStore()
    return JsonFileStore(settings.cache_dir / STORE_FILES[name])


def build_detector(
    settings: Settings,
    pixel_source: Optional[PixelSource] = None,
    fingerprint_store: Optional[KeyValueStore] = None,
) -> SimilarGroupDetector:
    detection = settings.detection
    fingerprints = FingerprintService(
        FingerprintCache(fingerprint_store or open_store(settings, "fingerprints")),
        pixel_source or FilePixelSource(),
        chunk_size=detection.hash_chunk_size,
        max_concurrent_decodes=detection.decode_concurrency,
        target_size=detection.target_decode_size,
    )
    return SimilarGroupDetector(fingerprints, detection)


def build_engines(
    settings: Settings,
    pixel_source: Optional[PixelSource] = None,
    persistent: bool = True,
):
    """
    Build the cleanup and recommendation engines sharing one cooldown store.

    Args:
        settings: Loaded settings
        pixel_source: Where pixels come from (files by default)
        persistent: Use JSON files under ``settings.cache_dir``, else memory only

    Returns:
        Tuple of (CleanupEngine, RecommendationEngine)
    """
    detector = build_detector(
        settings,
        pixel_source,
        open_store(settings, "fingerprints", persistent),
    )
    cooldowns = CooldownTracker(open_store(settings, "cooldowns", persistent), settings.cooldown)
    planner = BatchPlanner(settings.cleanup.max_batch_size, settings.cleanup.small_group_threshold)

    cleanup = CleanupEngine(
        detector,
        cooldowns,
        CheckpointStore(open_store(settings, "checkpoints", persistent)),
        open_store(settings, "progress", persistent),
        settings.cleanup,
    )
    recommend = RecommendationEngine(cooldowns, planner)
    if persistent:
        logger.info(f"Using persistent stores under {settings.cache_dir}")
    return cleanup, recommend
