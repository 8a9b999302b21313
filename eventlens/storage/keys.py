"""Storage key layout for media and banners."""

import mimetypes
import os

MEDIA_PREFIX = "media/"
EVENT_PREFIX = "events/"
SERIES_PREFIX = "series/"

_EXTENSION_OVERRIDES = {
    "image/jpeg": "jpg",
    "image/heic": "heic",
    "image/heif": "heif",
    "image/avif": "avif",
    "image/webp": "webp",
    "video/quicktime": "mov",
    "video/x-matroska": "mkv",
    "video/x-msvideo": "avi",
    "video/webm": "webm",
    "video/mp4": "mp4",
}


def file_extension(filename: str | None, mime_type: str) -> str:
    """Extension from the filename, else from the mime type, else ``bin``."""
    if filename:
        ext = os.path.splitext(filename)[1].lstrip(".").lower()
        if ext:
            return ext
    if mime_type in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[mime_type]
    guessed = mimetypes.guess_extension(mime_type)
    return guessed.lstrip(".") if guessed else "bin"


def media_original_key(media_id: str, ext: str) -> str:
    return f"{MEDIA_PREFIX}{media_id}/original.{ext}"


def media_thumbnail_key(media_id: str) -> str:
    return f"{MEDIA_PREFIX}{media_id}/thumbnail.jpg"


def event_banner_key(event_id: str, ext: str) -> str:
    return f"{EVENT_PREFIX}{event_id}/banner.{ext}"


def series_banner_key(series_id: str, ext: str) -> str:
    return f"{SERIES_PREFIX}{series_id}/banner.{ext}"
