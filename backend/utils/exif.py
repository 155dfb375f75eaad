from __future__ import annotations

from io import BytesIO
from typing import Optional

import exifread
from PIL import Image

from config import logger

# --------------------------------------------------------------------------- #
# orientation                                                                 #
# --------------------------------------------------------------------------- #
_TRANSPOSE = {
    2: Image.Transpose.FLIP_LEFT_RIGHT,
    3: Image.Transpose.ROTATE_180,
    4: Image.Transpose.FLIP_TOP_BOTTOM,
    5: Image.Transpose.TRANSPOSE,
    6: Image.Transpose.ROTATE_270,
    7: Image.Transpose.TRANSVERSE,
    8: Image.Transpose.ROTATE_90,
}


def read_orientation(data: bytes) -> Optional[int]:
    """EXIF Orientation (1-8) of an encoded image, or ``None`` when absent."""
    try:
        tags = exifread.process_file(BytesIO(data), details=False, stop_tag="Orientation")
    except Exception as e:  # exifread raises assorted errors on odd files
        logger.debug("EXIF read failed: %s", e)
        return None
    tag = tags.get("Image Orientation")
    if tag is None:
        return None
    try:
        return int(tag.values[0])
    except (AttributeError, IndexError, TypeError, ValueError):
        return None


def apply_orientation(img: Image.Image, orientation: Optional[int]) -> Image.Image:
    """Rotate/flip ``img`` upright; orientation 1 or unknown values leave it untouched."""
    op = _TRANSPOSE.get(orientation or 1)
    if op is None:
        return img
    logger.debug("Applied EXIF orientation %s", orientation)
    return img.transpose(op)
