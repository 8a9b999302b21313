"""
Upload validation.

Checks run before any storage call; a rejected file has no side effects.
"""

from dataclasses import dataclass

from eventlens.exceptions import ValidationError

MB = 1024 * 1024

ALLOWED_IMAGE_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/heic",
    "image/heif",
    "image/avif",
    "image/tiff",
})

ALLOWED_VIDEO_TYPES = frozenset({
    "video/mp4",
    "video/quicktime",
    "video/webm",
    "video/x-msvideo",
    "video/x-matroska",
})

ALLOWED_BANNER_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/gif"})

HEIC_TYPES = frozenset({"image/heic", "image/heif"})


@dataclass(frozen=True)
class UploadLimits:
    max_image_size: int = 50 * MB
    max_video_size: int = 5 * 1024 * MB
    max_banner_size: int = 10 * MB

    @classmethod
    def from_settings(cls, settings) -> "UploadLimits":
        return cls(
            max_image_size=settings.max_image_size,
            max_video_size=settings.max_video_size,
            max_banner_size=settings.max_banner_size,
        )


def _human_size(size: int) -> str:
    if size >= 1024 * MB:
        return f"{size / (1024 * MB):g}GB"
    return f"{size / MB:g}MB"


def media_category(mime_type: str | None) -> str | None:
    if mime_type in ALLOWED_IMAGE_TYPES:
        return "image"
    if mime_type in ALLOWED_VIDEO_TYPES:
        return "video"
    return None


def is_heic(mime_type: str | None) -> bool:
    return mime_type in HEIC_TYPES


def validate_media_file(mime_type: str | None, size: int, limits: UploadLimits = UploadLimits()) -> str:
    """
    Validate a photo or video upload.

    Returns:
        "image" or "video"

    Raises:
        ValidationError: unsupported type, empty file or size over the category ceiling
    """
    category = media_category(mime_type)
    if category is None:
        raise ValidationError(
            f"Unsupported file type: {mime_type or 'unknown'}",
            field="mime_type",
            details={"allowed_types": sorted(ALLOWED_IMAGE_TYPES | ALLOWED_VIDEO_TYPES)},
        )
    if size <= 0:
        raise ValidationError("File is empty", field="file_size")

    ceiling = limits.max_image_size if category == "image" else limits.max_video_size
    if size > ceiling:
        raise ValidationError(
            f"File too large. Maximum size for {category}s is {_human_size(ceiling)}",
            field="file_size",
            details={"max_size": ceiling, "size": size},
        )
    return category


def validate_banner_file(mime_type: str | None, size: int, limits: UploadLimits = UploadLimits()) -> None:
    if mime_type not in ALLOWED_BANNER_TYPES:
        raise ValidationError(
            f"Unsupported banner type: {mime_type or 'unknown'}",
            field="mime_type",
            details={"allowed_types": sorted(ALLOWED_BANNER_TYPES)},
        )
    if size > limits.max_banner_size:
        raise ValidationError(
            f"Banner too large. Maximum size is {_human_size(limits.max_banner_size)}",
            field="file_size",
            details={"max_size": limits.max_banner_size, "size": size},
        )
