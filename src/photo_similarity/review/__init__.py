"""Batch building, cooldowns, checkpoints and the cleanup workflow."""

from .batching import BatchPlanner, assemble_batch
from .checkpoint import CheckpointStore
from .cooldown import CooldownMode, CooldownTracker
from .engine import CleanupEngine, with_orphans
from .recommend import RecommendationEngine

__all__ = [
    "BatchPlanner",
    "CheckpointStore",
    "CleanupEngine",
    "CooldownMode",
    "CooldownTracker",
    "RecommendationEngine",
    "assemble_batch",
    "with_orphans",
]
