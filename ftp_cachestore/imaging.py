"""
Image introspection for listing entries: pixel dimensions and small thumbnails.
"""

import logging
from io import BytesIO

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif")
THUMBNAIL_SIZE = 50

_FORMATS = {
    "jpg": "JPEG",
    "jpeg": "JPEG",
    "png": "PNG",
    "gif": "GIF",
}

# Pillow raises a grab-bag of errors on truncated or hostile input
_DECODE_ERRORS = (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError)


def dimensions(data: bytes) -> tuple[int, int] | None:
    """Return (width, height) of an encoded image, or None if it cannot be decoded."""
    try:
        with Image.open(BytesIO(data)) as image:
            return image.size
    except _DECODE_ERRORS as e:
        logger.debug("Cannot read image dimensions: %s", e)
        return None


def thumbnail(data: bytes, extension: str, max_size: int = THUMBNAIL_SIZE) -> bytes | None:
    """
    Scale an image so its larger side is at most max_size pixels.

    Args:
        data: Encoded image bytes.
        extension: File extension selecting the output format.
        max_size: Bound for the larger dimension; images are never upscaled.

    Returns:
        Encoded thumbnail in the same format, or None on failure.
    """
    image_format = _FORMATS.get(extension.lower().lstrip("."))
    if image_format is None:
        return None
    try:
        with Image.open(BytesIO(data)) as image:
            image.load()
            image.thumbnail((max_size, max_size))
            if image_format == "JPEG" and image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            output = BytesIO()
            image.save(output, format=image_format)
            return output.getvalue()
    except _DECODE_ERRORS as e:
        logger.debug("Cannot create thumbnail: %s", e)
        return None
