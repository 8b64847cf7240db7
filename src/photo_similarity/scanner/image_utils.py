"""Image decoding, EXIF handling and difference-hash fingerprints."""

import io
import logging
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Optional, Union

import numpy as np
from PIL import Image, ExifTags

from ..models import HashFailed, HashResult, HashSuccess

# Register HEIC support
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
except ImportError:
    pass  # pillow-heif not installed, HEIC files won't be supported

logger = logging.getLogger(__name__)

HASH_WIDTH = 9
HASH_HEIGHT = 8
TARGET_DECODE_SIZE = 64

ORIENTATION_NORMAL = 1

# EXIF orientation -> transpose that brings the image upright
_ORIENTATION_TRANSPOSE = {
    2: Image.Transpose.FLIP_LEFT_RIGHT,
    3: Image.Transpose.ROTATE_180,
    4: Image.Transpose.FLIP_TOP_BOTTOM,
    5: Image.Transpose.TRANSPOSE,
    6: Image.Transpose.ROTATE_270,
    7: Image.Transpose.TRANSVERSE,
    8: Image.Transpose.ROTATE_90,
}

# EXIF orientation -> clockwise rotation in degrees applied by viewers
_ORIENTATION_DEGREES = {3: 180, 4: 180, 5: 90, 6: 90, 7: 270, 8: 270}

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".heic", ".heif", ".webp", ".bmp", ".tiff"}

ImageSource = Union[str, Path, bytes, BinaryIO]


def hamming_distance(hash1: int, hash2: int) -> int:
    """
    Number of differing bits between two 64-bit hashes.

    Rough guide for dHash distances:
    - <= 6: same scene, slight shake
    - 7-10: angle change or light crop
    - 11-14: borderline
    - > 14: most likely unrelated
    """
    return bin((hash1 ^ hash2) & 0xFFFFFFFFFFFFFFFF).count("1")


def calculate_sample_size(width: int, height: int, target_size: int = TARGET_DECODE_SIZE) -> int:
    """Largest power-of-two reduction keeping the shorter side near ``target_size``."""
    sample_size = 1
    min_dimension = min(width, height)
    while min_dimension // sample_size > target_size * 2:
        sample_size *= 2
    return sample_size


def orientation_to_degrees(orientation: int) -> int:
    return _ORIENTATION_DEGREES.get(orientation, 0)


def apply_exif_orientation(image: Image.Image, orientation: int) -> Image.Image:
    """Rotate/mirror ``image`` upright; unknown orientations are left untouched."""
    method = _ORIENTATION_TRANSPOSE.get(orientation)
    if method is None:
        return image
    return image.transpose(method)


def extract_exif_data(image: Image.Image) -> dict:
    """Extract relevant EXIF metadata from image."""
    exif_data = {}

    try:
        exif = image.getexif()
        for tag_id, value in exif.items():
            tag = ExifTags.TAGS.get(tag_id, tag_id)
            exif_data[tag] = value

        # DateTimeOriginal lives in the Exif sub-IFD
        for tag_id, value in exif.get_ifd(ExifTags.IFD.Exif).items():
            tag = ExifTags.TAGS.get(tag_id, tag_id)
            exif_data.setdefault(tag, value)

        # Parse datetime fields
        for date_field in ['DateTimeOriginal', 'DateTimeDigitized', 'DateTime']:
            if date_field in exif_data:
                try:
                    date_str = exif_data[date_field]
                    if isinstance(date_str, str):
                        # EXIF date format: "YYYY:MM:DD HH:MM:SS"
                        exif_data[f'{date_field}_parsed'] = datetime.strptime(
                            date_str, "%Y:%m:%d %H:%M:%S"
                        )
                except (ValueError, TypeError):
                    pass
    except (AttributeError, KeyError, OSError):
        pass

    return exif_data


def read_exif_orientation(source: ImageSource) -> int:
    """EXIF orientation tag of an image source, ``1`` when missing or unreadable."""
    try:
        with _open_image(source) as image:
            value = image.getexif().get(ExifTags.Base.Orientation, ORIENTATION_NORMAL)
        return int(value) if value else ORIENTATION_NORMAL
    except Exception as e:
        logger.debug(f"Could not read EXIF orientation: {e}")
        return ORIENTATION_NORMAL


def _open_image(source: ImageSource) -> Image.Image:
    if isinstance(source, (bytes, bytearray)):
        return Image.open(io.BytesIO(source))
    return Image.open(source)


def _decode_reduced(image: Image.Image, target_size: int) -> Image.Image:
    """Decode ``image`` at the reduced resolution chosen by ``calculate_sample_size``."""
    width, height = image.size
    sample_size = calculate_sample_size(width, height, target_size)

    if sample_size > 1:
        # JPEG decoders can downscale while decoding; other formats ignore this
        image.draft("RGB", (width // sample_size, height // sample_size))

    image = image.convert("RGB")

    remaining = sample_size // max(width // max(image.width, 1), 1)
    if remaining > 1:
        image = image.reduce(remaining)
    return image


def compute_dhash_from_image(image: Image.Image) -> int:
    """
    Compute the 64-bit difference hash of an upright RGB image.

    The image is resized to 9x8, converted to BT.601 luma and each row's
    eight adjacent pairs contribute one bit (1 when left > right). Bit
    ``row * 8 + col`` is set for pair ``col`` of ``row``.
    """
    scaled = image.resize((HASH_WIDTH, HASH_HEIGHT), Image.Resampling.BILINEAR)
    rgb = np.asarray(scaled.convert("RGB"), dtype=np.int64)
    gray = (rgb[:, :, 0] * 299 + rgb[:, :, 1] * 587 + rgb[:, :, 2] * 114) // 1000

    bits = (gray[:, :-1] > gray[:, 1:]).flatten()
    hash_value = 0
    for bit_index, is_set in enumerate(bits):
        if is_set:
            hash_value |= 1 << bit_index
    return hash_value


def compute_dhash(
    source: ImageSource,
    orientation: int = ORIENTATION_NORMAL,
    target_size: int = TARGET_DECODE_SIZE,
) -> HashResult:
    """
    Fingerprint an encoded image.

    Never raises: unreadable sources, invalid dimensions, decode errors and
    out-of-memory all come back as ``HashFailed``.

    Args:
        source: Path, raw bytes or binary file object
        orientation: EXIF orientation tag (1-8) to correct before hashing
        target_size: Shorter-side target for the reduced decode

    Returns:
        HashSuccess with the hash, or HashFailed with a reason
    """
    try:
        with _open_image(source) as image:
            width, height = image.size
            if width <= 0 or height <= 0:
                return HashFailed("Invalid image dimensions")

            decoded = _decode_reduced(image, target_size)

        upright = apply_exif_orientation(decoded, orientation)
        return HashSuccess(compute_dhash_from_image(upright))

    except MemoryError:
        return HashFailed("OOM")
    except Exception as e:
        return HashFailed(str(e) or type(e).__name__)


def is_supported_image(file_path: Path) -> bool:
    """Check if file is a supported image format."""
    return file_path.suffix.lower() in SUPPORTED_EXTENSIONS
