"""Photo discovery, fingerprinting and the fingerprint cache."""

from .cache import FingerprintCache
from .fingerprints import FingerprintService
from .pixel_source import FilePixelSource, PixelData, PixelSource
from .scanner import DirectoryPhotoStore, InMemoryPhotoStore, PhotoScanner, PhotoStore

__all__ = [
    "DirectoryPhotoStore",
    "FilePixelSource",
    "FingerprintCache",
    "FingerprintService",
    "InMemoryPhotoStore",
    "PhotoScanner",
    "PhotoStore",
    "PixelData",
    "PixelSource",
]
