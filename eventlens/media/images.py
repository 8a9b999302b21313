"""
Image derivation: thumbnails and dimensions via Pillow.

HEIC/HEIF decoding comes from pillow-heif's Pillow plugin, registered on import.
All functions here are CPU bound and synchronous; callers run them in a
worker thread.
"""

import io
import logging
from dataclasses import dataclass

import pillow_heif
from PIL import Image, ImageOps

from eventlens.media.exif import ExifData, extract_exif_data

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

THUMBNAIL_SIZE = (400, 400)
THUMBNAIL_QUALITY = 80


@dataclass
class ImageDerivatives:
    thumbnail: bytes
    width: int
    height: int
    exif: ExifData | None = None


def _to_rgb(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA", "P"):
        img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1])
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def encode_jpeg(img: Image.Image, quality: int = THUMBNAIL_QUALITY) -> bytes:
    output = io.BytesIO()
    _to_rgb(img).save(output, format="JPEG", quality=quality, optimize=True)
    return output.getvalue()


def make_thumbnail(img: Image.Image) -> bytes:
    """Center-crop to fill 400x400 and encode as JPEG."""
    img = ImageOps.exif_transpose(img)
    fitted = ImageOps.fit(_to_rgb(img), THUMBNAIL_SIZE, Image.Resampling.LANCZOS, centering=(0.5, 0.5))
    return encode_jpeg(fitted)


def heif_to_image(heif_file) -> Image.Image:
    return Image.frombytes(heif_file.mode, heif_file.size, bytes(heif_file.data), "raw", heif_file.mode, heif_file.stride)


def process_image(data: bytes, mime_type: str | None = None, context: str | None = None) -> ImageDerivatives:
    """
    Derive a thumbnail, dimensions and EXIF from an uploaded image.

    HEIC input that the Pillow plugin cannot open is decoded through
    pillow-heif directly.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            raw_exif = img.info.get("exif")
            return ImageDerivatives(
                thumbnail=make_thumbnail(img),
                width=img.width,
                height=img.height,
                exif=extract_exif_data(raw_exif, context) if raw_exif else None,
            )
    except Exception as e:
        if mime_type not in ("image/heic", "image/heif"):
            raise
        logger.info("Pillow could not open HEIC image%s (%s); decoding raw", f" {context}" if context else "", e)

    heif_file = pillow_heif.open_heif(data, convert_hdr_to_8bit=True)
    img = heif_to_image(heif_file)
    raw_exif = heif_file.info.get("exif")
    return ImageDerivatives(
        thumbnail=make_thumbnail(img),
        width=img.width,
        height=img.height,
        exif=extract_exif_data(raw_exif, context) if raw_exif else None,
    )
