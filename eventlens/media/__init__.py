from .exif import ExifData, dms_to_decimal, extract_exif_data
from .heic import convert_heic_to_jpeg
from .images import ImageDerivatives, process_image
from .validation import UploadLimits, media_category, validate_banner_file, validate_media_file
from .video import VideoMetadata, extract_video_metadata, generate_video_thumbnail, parse_iso6709

__all__ = [
    "ExifData",
    "ImageDerivatives",
    "UploadLimits",
    "VideoMetadata",
    "convert_heic_to_jpeg",
    "dms_to_decimal",
    "extract_exif_data",
    "extract_video_metadata",
    "generate_video_thumbnail",
    "media_category",
    "parse_iso6709",
    "process_image",
    "validate_banner_file",
    "validate_media_file",
]
