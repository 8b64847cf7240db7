"""Photo scanner for discovering images and reading their metadata."""

import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import List, Optional

from PIL import Image
from tqdm import tqdm

from ..models import Photo
from .image_utils import (
    extract_exif_data,
    is_supported_image,
    orientation_to_degrees,
)

logger = logging.getLogger(__name__)


def photo_id_for_path(file_path: Path) -> int:
    """Stable positive 63-bit id derived from the absolute path."""
    digest = hashlib.md5(str(file_path.resolve()).encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") & 0x7FFFFFFFFFFFFFFF


class PhotoScanner:
    """Scans directories for images and extracts metadata."""

    def __init__(self, max_workers: int = 4):
        """
        Initialize scanner.

        Args:
            max_workers: Number of parallel workers for reading headers
        """
        self.max_workers = max_workers

    def discover_images(self, directory: Path, recursive: bool = True) -> List[Path]:
        """
        Discover all supported images in directory.

        Args:
            directory: Directory to scan
            recursive: Whether to scan subdirectories

        Returns:
            List of image file paths
        """
        pattern = "**/*" if recursive else "*"
        image_files = sorted(
            f for f in directory.glob(pattern)
            if f.is_file() and is_supported_image(f)
        )

        logger.info(f"Discovered {len(image_files)} images in {directory}")
        if not image_files:
            logger.warning(f"No supported images found in {directory}")
            logger.warning("Supported formats: .jpg, .jpeg, .png, .heic, .heif, .webp, .bmp, .tiff")

        return image_files

    def read_photo(self, file_path: Path) -> Optional[Photo]:
        """
        Build a Photo from file headers without decoding pixels.

        The timestamp is EXIF DateTimeOriginal when present, else the file
        modification time. Width and height are the stored (unrotated) size.

        Returns:
            Photo, or None if the file cannot be opened
        """
        try:
            stat = file_path.stat()
            with Image.open(file_path) as image:
                width, height = image.size
                exif = extract_exif_data(image)
        except Exception as e:
            logger.warning(f"Failed to read {file_path}: {e}")
            return None

        taken = exif.get("DateTimeOriginal_parsed") or exif.get("DateTime_parsed")
        if taken is not None:
            timestamp_ms = int(taken.timestamp() * 1000)
        else:
            timestamp_ms = int(stat.st_mtime * 1000)

        try:
            orientation = int(exif.get("Orientation", 1))
        except (TypeError, ValueError):
            orientation = 1

        return Photo(
            id=photo_id_for_path(file_path),
            timestamp_ms=timestamp_ms,
            size_bytes=stat.st_size,
            width=width,
            height=height,
            bucket_name=file_path.parent.name or None,
            orientation=orientation_to_degrees(orientation),
            path=str(file_path),
            display_name=file_path.name,
        )

    def scan_photos(self, directory: Path, recursive: bool = True, limit: Optional[int] = None) -> List[Photo]:
        """
        Scan directory and return photo records sorted by timestamp.

        Args:
            directory: Directory to scan
            recursive: Whether to scan subdirectories
            limit: Maximum number of images to read (for testing)
        """
        image_files = self.discover_images(directory, recursive)
        if limit:
            image_files = image_files[:limit]
            logger.info(f"Limiting to {limit} images")

        photos: List[Photo] = []
        with tqdm(total=len(image_files), desc="Reading photo metadata") as pbar:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = {
                    executor.submit(self.read_photo, file_path): file_path
                    for file_path in image_files
                }
                for future in as_completed(futures):
                    photo = future.result()
                    if photo is not None:
                        photos.append(photo)
                    pbar.update(1)

        photos.sort(key=lambda p: (p.timestamp_ms, p.id))
        return photos


class PhotoStore:
    """Interface for listing the photos of an owner."""

    def list_photos(self, owner_id: str) -> List[Photo]:
        raise NotImplementedError


class InMemoryPhotoStore(PhotoStore):
    """Photos held in memory, keyed by owner."""

    def __init__(self, photos_by_owner=None):
        self.photos_by_owner = dict(photos_by_owner or {})

    def list_photos(self, owner_id: str) -> List[Photo]:
        return list(self.photos_by_owner.get(owner_id, []))


class DirectoryPhotoStore(PhotoStore):
    """
    Each owner is a subdirectory of ``root``; ``"."`` is the root itself.

    Scans are memoized per owner until ``refresh`` is called.
    """

    def __init__(self, root: Path, scanner: Optional[PhotoScanner] = None):
        self.root = root
        self.scanner = scanner or PhotoScanner()
        self._photos = {}

    def owner_directory(self, owner_id: str) -> Path:
        directory = (self.root / owner_id).resolve()
        root = self.root.resolve()
        if directory != root and root not in directory.parents:
            raise ValueError(f"Owner {owner_id!r} is outside {self.root}")
        return directory

    def list_photos(self, owner_id: str) -> List[Photo]:
        if owner_id not in self._photos:
            directory = self.owner_directory(owner_id)
            if not directory.is_dir():
                raise FileNotFoundError(f"Directory not found: {directory}")
            self._photos[owner_id] = self.scanner.scan_photos(directory)
        return list(self._photos[owner_id])

    def refresh(self, owner_id: Optional[str] = None) -> None:
        if owner_id is None:
            self._photos.clear()
        else:
            self._photos.pop(owner_id, None)
