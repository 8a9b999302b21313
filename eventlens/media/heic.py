"""On-demand HEIC/HEIF to JPEG conversion for display."""

import asyncio
import io
import logging

import pillow_heif
from PIL import Image

from eventlens.exceptions import ConversionError
from eventlens.media.images import encode_jpeg, heif_to_image
from eventlens.storage.base import ObjectStorage

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

DISPLAY_MAX_SIZE = (2500, 2500)
DISPLAY_QUALITY = 80
DEFAULT_TIMEOUT = 30.0


def _fit_for_display(img: Image.Image) -> bytes:
    # thumbnail() only ever shrinks
    img.thumbnail(DISPLAY_MAX_SIZE, Image.Resampling.LANCZOS)
    return encode_jpeg(img, quality=DISPLAY_QUALITY)


def heic_bytes_to_jpeg(data: bytes) -> bytes:
    """Convert with the Pillow plugin, falling back to a raw pillow-heif decode."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return _fit_for_display(img)
    except Exception as e:
        logger.info("Pillow HEIC conversion failed (%s); trying raw decode", e)

    heif_file = pillow_heif.open_heif(data, convert_hdr_to_8bit=True)
    return _fit_for_display(heif_to_image(heif_file))


async def convert_heic_to_jpeg(storage: ObjectStorage, key: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """
    Fetch *key* and return a display JPEG no larger than 2500x2500.

    Raises:
        ConversionError: decoding failed or took longer than *timeout* seconds
    """
    data = await storage.get(key)
    if not data:
        raise ConversionError("File not found in storage", key=key)

    try:
        return await asyncio.wait_for(asyncio.to_thread(heic_bytes_to_jpeg, data), timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.error("HEIC conversion of %s timed out after %ss", key, timeout)
        raise ConversionError(f"Conversion timed out after {timeout:g}s", key=key) from e
    except Exception as e:
        logger.error("HEIC conversion of %s failed: %s", key, e)
        raise ConversionError("Failed to convert image", key=key) from e
