"""Command-line interface: scan a directory and report similar photo groups."""

import argparse
import asyncio
import json
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import List

from tqdm import tqdm

from ..config import load_settings
from ..factory import build_detector, open_store
from ..grouping.detector import SimilarGroupDetector
from ..models import Photo, SimilarGroup
from .cache import FingerprintCache
from .scanner import PhotoScanner


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def run_detection(detector: SimilarGroupDetector, photos: List[Photo]) -> List[SimilarGroup]:
    """Run detection with a tqdm bar tracking the reported progress."""
    groups: List[SimilarGroup] = []
    with tqdm(total=100, desc="Detecting similar groups", unit="%") as pbar:
        async for step in detector.detect(photos):
            pbar.set_postfix_str(step.stage)
            pbar.update(round(step.progress * 100) - pbar.n)
            if step.groups is not None:
                groups = step.groups
    return groups


def build_report(scan_dir: Path, photos: List[Photo], groups: List[SimilarGroup], cache: FingerprintCache) -> dict:
    stats = cache.stats()
    grouped_ids = {photo.id for group in groups for photo in group.images}
    orphans = [photo for photo in photos if photo.id not in grouped_ids]
    return {
        "directory": str(scan_dir),
        "image_count": len(photos),
        "group_count": len(groups),
        "grouped_image_count": len(grouped_ids),
        "orphan_count": len(orphans),
        "fingerprints": {
            "total": stats.total_count,
            "success": stats.success_count,
            "failed": stats.failed_count,
        },
        "groups": [
            {
                "id": group.id,
                "size": group.size,
                "start_time": group.start_time,
                "end_time": group.end_time,
                "files": [photo.path for photo in group.images],
            }
            for group in groups
        ],
        "orphans": [photo.path for photo in orphans],
    }


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Scan photos and find groups of near-duplicate shots"
    )
    parser.add_argument(
        "directory",
        type=Path,
        help="Directory containing photos to scan",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="JSON settings file with detection/cleanup/cooldown sections",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Directory for the fingerprint cache (default: .cache or PHOTO_SIMILARITY_CACHE_DIR env var)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("similar_groups.json"),
        help="Output file for the group report",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Limit number of images to process (for testing)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=4,
        help="Number of parallel workers for reading metadata",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    if not args.directory.is_dir():
        logger.error(f"Directory not found: {args.directory}")
        sys.exit(1)

    settings = load_settings(args.settings)
    if args.cache_dir is not None:
        settings = replace(settings, cache_dir=args.cache_dir)

    scanner = PhotoScanner(max_workers=args.workers)
    photos = scanner.scan_photos(args.directory, recursive=True, limit=args.limit)
    if not photos:
        logger.error("No photos to analyse")
        sys.exit(1)

    fingerprint_store = open_store(settings, "fingerprints")
    detector = build_detector(settings, fingerprint_store=fingerprint_store)

    started = time.time()
    groups = asyncio.run(run_detection(detector, photos))
    elapsed = time.time() - started
    logger.info(f"Detection finished in {elapsed:.1f}s: {len(groups)} groups from {len(photos)} photos")

    for i, group in enumerate(groups[:5], 1):  # Show first 5
        logger.info(f"  Group {i}: {group.size} photos")
        for photo in group.images[:3]:  # Show first 3 in group
            logger.info(f"    - {photo.display_name}")

    report = build_report(args.directory, photos, groups, detector.fingerprints.cache)
    with open(args.output, "w") as f:
        json.dump(report, f, indent=2)

    logger.info(f"Results saved to {args.output}")
    logger.info(
        f"Fingerprint cache: {report['fingerprints']['total']} entries, "
        f"{fingerprint_store.size_bytes() / 1024:.1f} KB at {settings.cache_dir}"
    )


if __name__ == "__main__":
    main()
