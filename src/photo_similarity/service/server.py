"""HTTP service for the photo cleanup workflow.

The service owns no photos: it asks a PhotoStore for an owner's photos and
keeps only fingerprints, cooldowns, checkpoints and analysis results.
"""

import logging
import os
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from ..models import Batch, Checkpoint, CleanupInfo, Photo
from ..review.engine import CleanupEngine
from ..review.recommend import RecommendationEngine
from ..scanner.scanner import PhotoStore

logger = logging.getLogger(__name__)


class PhotoModel(BaseModel):
    id: int
    timestamp_ms: int
    size_bytes: int
    width: int
    height: int
    orientation: int = 0
    bucket_name: Optional[str] = None
    display_name: Optional[str] = None

    @classmethod
    def from_photo(cls, photo: Photo) -> "PhotoModel":
        return cls(
            id=photo.id,
            timestamp_ms=photo.timestamp_ms,
            size_bytes=photo.size_bytes,
            width=photo.width,
            height=photo.height,
            orientation=photo.orientation,
            bucket_name=photo.bucket_name,
            display_name=photo.display_name,
        )


class BatchModel(BaseModel):
    """A review batch; group ``i`` starts at ``images[group_boundaries[i]]``."""

    images: List[PhotoModel]
    group_ids: List[str]
    group_boundaries: List[int]

    @classmethod
    def from_batch(cls, batch: Batch) -> "BatchModel":
        return cls(
            images=[PhotoModel.from_photo(photo) for photo in batch.images],
            group_ids=list(batch.group_ids),
            group_boundaries=list(batch.group_boundaries),
        )


class NextBatchResponse(BaseModel):
    completed: bool
    batch: Optional[BatchModel] = None


class RestoredBatchResponse(BaseModel):
    batch: BatchModel
    current_index: int


class ProcessedRequest(BaseModel):
    group_ids: List[str]


class ProcessedResponse(BaseModel):
    completed: bool
    remaining_groups: int


class CheckpointModel(BaseModel):
    group_ids: List[str]
    current_index: int
    saved_at_ms: int = 0

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint) -> "CheckpointModel":
        return cls(
            group_ids=list(checkpoint.group_ids),
            current_index=checkpoint.current_index,
            saved_at_ms=checkpoint.saved_at_ms,
        )


class CleanupInfoModel(BaseModel):
    owner_id: str
    state: str
    total_groups: int
    processed_groups: int
    remaining_groups: int
    total_images: int
    remaining_images: int
    progress: float
    is_completed: bool

    @classmethod
    def from_info(cls, info: CleanupInfo) -> "CleanupInfoModel":
        return cls(
            owner_id=info.owner_id,
            state=info.state.value,
            total_groups=info.total_groups,
            processed_groups=info.processed_groups,
            remaining_groups=info.remaining_groups,
            total_images=info.total_images,
            remaining_images=info.remaining_images,
            progress=info.progress,
            is_completed=info.is_completed,
        )


class StaleCleanupRequest(BaseModel):
    valid_photo_ids: List[int]


class StaleCleanupResponse(BaseModel):
    fingerprints_removed: int
    image_picks_removed: int
    expired_records_removed: int


def create_app(
    engine: CleanupEngine,
    photo_store: PhotoStore,
    recommendations: Optional[RecommendationEngine] = None,
) -> FastAPI:
    """Create FastAPI application for the cleanup service."""

    app = FastAPI(
        title="Photo Similarity Service",
        description="Similar photo detection and resumable cleanup review",
        version="0.1.0",
    )

    def load_photos(owner_id: str) -> List[Photo]:
        try:
            return photo_store.list_photos(owner_id)
        except FileNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    @app.get("/health")
    @app.get("/healthz")  # Alias for K8s-style health checks
    async def health():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.post("/owners/{owner_id}/analyze", response_model=CleanupInfoModel)
    async def analyze(owner_id: str):
        """Detect groups for the owner and store the analysis."""
        photos = load_photos(owner_id)
        logger.info(f"Analyse requested for {owner_id} ({len(photos)} photos)")
        async for _progress in engine.analyze(owner_id, photos):
            pass
        return CleanupInfoModel.from_info(engine.cleanup_info(owner_id))

    @app.get("/owners/{owner_id}/info", response_model=CleanupInfoModel)
    async def info(owner_id: str):
        return CleanupInfoModel.from_info(engine.cleanup_info(owner_id))

    @app.get("/owners/{owner_id}/next-batch", response_model=NextBatchResponse)
    async def next_batch(owner_id: str, exclude: List[str] = Query(default=[])):
        """Next batch of unprocessed groups; ``completed`` once none are left."""
        photos = load_photos(owner_id)
        batch = await engine.next_batch(owner_id, photos, exclude)
        if batch is None:
            return NextBatchResponse(completed=True)
        return NextBatchResponse(completed=False, batch=BatchModel.from_batch(batch))

    @app.post("/owners/{owner_id}/processed", response_model=ProcessedResponse)
    async def mark_processed(owner_id: str, request: ProcessedRequest):
        if not request.group_ids:
            raise HTTPException(status_code=400, detail="No group ids provided")
        completed = engine.mark_processed(owner_id, request.group_ids)
        return ProcessedResponse(
            completed=completed,
            remaining_groups=len(engine.remaining_group_ids(owner_id)),
        )

    @app.get("/owners/{owner_id}/checkpoint", response_model=CheckpointModel)
    async def get_checkpoint(owner_id: str):
        checkpoint = engine.get_checkpoint(owner_id)
        if checkpoint is None:
            raise HTTPException(status_code=404, detail=f"No checkpoint for {owner_id}")
        return CheckpointModel.from_checkpoint(checkpoint)

    @app.put("/owners/{owner_id}/checkpoint")
    async def save_checkpoint(owner_id: str, checkpoint: CheckpointModel):
        if checkpoint.current_index < 0:
            raise HTTPException(status_code=400, detail="current_index must not be negative")
        engine.save_checkpoint(owner_id, checkpoint.group_ids, checkpoint.current_index)
        return {"status": "ok"}

    @app.delete("/owners/{owner_id}/checkpoint")
    async def clear_checkpoint(owner_id: str):
        engine.clear_checkpoint(owner_id)
        return {"status": "ok"}

    @app.post("/owners/{owner_id}/checkpoint/restore", response_model=RestoredBatchResponse)
    async def restore_checkpoint(owner_id: str):
        """Rebuild the checkpointed batch without the groups processed since."""
        photos = load_photos(owner_id)
        restored = await engine.restore_checkpoint(owner_id, photos)
        if restored is None:
            raise HTTPException(status_code=404, detail=f"Nothing to resume for {owner_id}")
        batch, index = restored
        return RestoredBatchResponse(batch=BatchModel.from_batch(batch), current_index=index)

    @app.post("/owners/{owner_id}/reset")
    async def reset_owner(owner_id: str):
        engine.reset_owner(owner_id)
        return {"status": "ok"}

    @app.post("/owners/{owner_id}/random", response_model=List[PhotoModel])
    async def random_photos(owner_id: str, count: int = Query(default=30, ge=1, le=500)):
        """Random photos the user has not seen recently."""
        if recommendations is None:
            raise HTTPException(status_code=404, detail="Recommendations are not enabled")
        photos = load_photos(owner_id)
        return [PhotoModel.from_photo(photo) for photo in recommendations.random_walk_batch(photos, count)]

    @app.post("/maintenance/cleanup-stale", response_model=StaleCleanupResponse)
    async def cleanup_stale(request: StaleCleanupRequest):
        report = engine.cleanup_stale(request.valid_photo_ids)
        logger.info(
            f"Stale cleanup: {report.fingerprints_removed} fingerprints, "
            f"{report.image_picks_removed} image picks, "
            f"{report.expired_records_removed} expired records"
        )
        return StaleCleanupResponse(
            fingerprints_removed=report.fingerprints_removed,
            image_picks_removed=report.image_picks_removed,
            expired_records_removed=report.expired_records_removed,
        )

    return app


def main():
    """Main entry point."""
    import argparse
    from pathlib import Path

    import uvicorn

    from ..config import load_settings
    from ..factory import build_engines
    from ..scanner.scanner import DirectoryPhotoStore

    parser = argparse.ArgumentParser(description="Photo similarity cleanup service")
    parser.add_argument(
        "photos_root",
        type=Path,
        nargs="?",
        default=Path(os.getenv("PHOTOS_ROOT", ".")),
        help="Root directory; each subdirectory is one owner (default: . or PHOTOS_ROOT env var)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=os.getenv("HOST", "127.0.0.1"),
        help="Host to bind to (default: 127.0.0.1 or HOST env var)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "8003")),
        help="Port to bind to (default: 8003 or PORT env var)",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        default=None,
        help="JSON settings file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("LOG_LEVEL", "info"),
        choices=["debug", "info", "warning", "error"],
        help="Logging level (default: info or LOG_LEVEL env var)",
    )

    args = parser.parse_args()

    # Configure logging
    log_level = getattr(logging, args.log_level.upper())
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = load_settings(args.settings)
    engine, recommendations = build_engines(settings)
    photo_store = DirectoryPhotoStore(args.photos_root)

    logger.info(f"Starting photo similarity service on {args.host}:{args.port}")
    logger.info(f"Photos root: {args.photos_root}")

    app = create_app(engine, photo_store, recommendations)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
