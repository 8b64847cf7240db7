"""Settings for detection, batching and cooldowns.

Values come from the dataclass defaults, optionally overridden by a JSON file
with ``detection``/``cleanup``/``cooldown`` sections and then by environment
variables.
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionSettings:
    """Thresholds for candidate filtering and clustering."""

    time_window_ms: int = 10 * 60 * 1000
    candidate_min_score: float = 25.0
    max_group_size: int = 50
    large_group_threshold: int = 30
    hash_chunk_size: int = 10
    decode_concurrency: int = 3
    target_decode_size: int = 64


@dataclass(frozen=True)
class CleanupSettings:
    """Batch shaping for the review workflow."""

    max_batch_size: int = 30
    small_group_threshold: int = 10
    group_cache_ttl_seconds: float = 5 * 60


@dataclass(frozen=True)
class CooldownSettings:
    """Cooldown lengths in days; one option is drawn at random per record."""

    image_cooldown_days: Tuple[int, ...] = (7, 12, 24)
    group_cooldown_days: Tuple[int, ...] = (3, 5, 7)


@dataclass(frozen=True)
class Settings:
    detection: DetectionSettings = field(default_factory=DetectionSettings)
    cleanup: CleanupSettings = field(default_factory=CleanupSettings)
    cooldown: CooldownSettings = field(default_factory=CooldownSettings)
    cache_dir: Path = Path(".cache")


def _apply_section(section: Any, raw: Dict[str, Any]) -> Any:
    known = {f.name for f in fields(section)}
    updates = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning(f"Ignoring unknown setting: {key}")
            continue
        if isinstance(value, list):
            value = tuple(value)
        updates[key] = value
    return replace(section, **updates)


def load_settings(settings_path: Optional[Path] = None) -> Settings:
    """Build settings from defaults, an optional JSON file and the environment."""
    settings = Settings()

    if settings_path is not None:
        with open(settings_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        settings = replace(
            settings,
            detection=_apply_section(settings.detection, data.get("detection", {})),
            cleanup=_apply_section(settings.cleanup, data.get("cleanup", {})),
            cooldown=_apply_section(settings.cooldown, data.get("cooldown", {})),
        )
        if "cache_dir" in data:
            settings = replace(settings, cache_dir=Path(data["cache_dir"]))
        logger.info(f"Loaded settings from {settings_path}")

    cache_dir = os.getenv("PHOTO_SIMILARITY_CACHE_DIR")
    if cache_dir:
        settings = replace(settings, cache_dir=Path(cache_dir))

    concurrency = os.getenv("PHOTO_SIMILARITY_DECODE_CONCURRENCY")
    if concurrency:
        settings = replace(
            settings,
            detection=replace(settings.detection, decode_concurrency=int(concurrency)),
        )

    group_ttl = os.getenv("PHOTO_SIMILARITY_GROUP_CACHE_TTL")
    if group_ttl:
        settings = replace(
            settings,
            cleanup=replace(settings.cleanup, group_cache_ttl_seconds=float(group_ttl)),
        )

    return settings
