"""Access to decodable pixels for a photo."""

from dataclasses import dataclass
from pathlib import Path

from ..models import Photo
from .image_utils import ImageSource, read_exif_orientation


@dataclass(frozen=True)
class PixelData:
    """Encoded image plus the EXIF orientation needed to display it upright."""

    source: ImageSource
    orientation: int = 1


class PixelSource:
    """Interface for loading encoded pixels of a photo.

    Errors raised by ``load`` are recorded as fingerprint failures for that
    photo; they never abort detection.
    """

    def load(self, photo: Photo) -> PixelData:
        raise NotImplementedError


class FilePixelSource(PixelSource):
    """Reads photos from their ``path`` on the local filesystem."""

    def load(self, photo: Photo) -> PixelData:
        if not photo.path:
            raise FileNotFoundError(f"Photo {photo.id} has no file path")
        path = Path(photo.path)
        if not path.is_file():
            raise FileNotFoundError(f"Cannot open {path}")
        return PixelData(source=path, orientation=read_exif_orientation(path))
