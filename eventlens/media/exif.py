"""
EXIF extraction.

Encoders disagree on whether the raw EXIF block starts with the 6-byte
``Exif\\0\\0`` marker, so parsing is attempted on the stripped buffer first
and retried on the untouched buffer if that fails.
"""

import io
import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from PIL import ExifTags, Image

logger = logging.getLogger(__name__)

EXIF_HEADER = b"Exif\x00\x00"
_TIFF_HEADERS = (b"II", b"MM")
_EXIF_DATE_FORMAT = "%Y:%m:%d %H:%M:%S"


@dataclass
class ExifData:
    make: str | None = None
    model: str | None = None
    lens_model: str | None = None
    focal_length: float | None = None
    f_number: float | None = None
    iso: int | None = None
    exposure_time: float | None = None
    flash: bool | None = None
    date_time_original: str | None = None
    gps_latitude: float | None = None
    gps_longitude: float | None = None
    width: int | None = None
    height: int | None = None
    orientation: int | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @property
    def taken_at(self) -> datetime | None:
        if not self.date_time_original:
            return None
        try:
            return datetime.fromisoformat(self.date_time_original)
        except ValueError:
            return None


def dms_to_decimal(dms, ref: str | None) -> float | None:
    """Convert a degrees/minutes/seconds triple to signed decimal degrees."""
    try:
        degrees, minutes, seconds = (float(v) for v in dms)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    value = degrees + minutes / 60 + seconds / 3600
    if ref and ref.strip().upper() in ("S", "W"):
        value = -value
    return value


def _parse(buffer: bytes) -> Image.Exif:
    if buffer[:2] in _TIFF_HEADERS or buffer.startswith(EXIF_HEADER):
        exif = Image.Exif()
        exif.load(buffer)
        return exif
    with Image.open(io.BytesIO(buffer)) as img:
        return img.getexif()


def _parse_with_fallback(buffer: bytes) -> Image.Exif:
    stripped = buffer[len(EXIF_HEADER):] if buffer.startswith(EXIF_HEADER) else buffer
    try:
        return _parse(stripped)
    except Exception:
        if stripped is buffer:
            raise
        return _parse(buffer)


def _text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    value = str(value).strip("\x00 ").strip()
    return value or None


def _number(value, cast=float):
    if value is None:
        return None
    if isinstance(value, tuple):
        value = value[0] if value else None
        if value is None:
            return None
    try:
        return cast(float(value))
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def _date(value) -> str | None:
    text = _text(value)
    if not text:
        return None
    try:
        return datetime.strptime(text[:19], _EXIF_DATE_FORMAT).isoformat()
    except ValueError:
        return None


def extract_exif_data(buffer: bytes | None, context: str | None = None) -> ExifData | None:
    """
    Parse camera metadata from a raw EXIF block or a whole image file.

    Returns None when there is no EXIF data or it cannot be parsed.
    """
    if not buffer:
        return None
    try:
        exif = _parse_with_fallback(buffer)
    except Exception as e:
        logger.warning("EXIF parse failed%s: %s", f" for {context}" if context else "", e)
        return None
    if not exif:
        return None

    details = exif.get_ifd(ExifTags.IFD.Exif)
    gps = exif.get_ifd(ExifTags.IFD.GPSInfo)

    flash = _number(details.get(ExifTags.Base.Flash), int)

    data = ExifData(
        make=_text(exif.get(ExifTags.Base.Make)),
        model=_text(exif.get(ExifTags.Base.Model)),
        lens_model=_text(details.get(ExifTags.Base.LensModel)),
        focal_length=_number(details.get(ExifTags.Base.FocalLength)),
        f_number=_number(details.get(ExifTags.Base.FNumber)),
        iso=_number(details.get(ExifTags.Base.ISOSpeedRatings), int),
        exposure_time=_number(details.get(ExifTags.Base.ExposureTime)),
        flash=bool(flash & 1) if flash is not None else None,
        date_time_original=_date(details.get(ExifTags.Base.DateTimeOriginal) or exif.get(ExifTags.Base.DateTime)),
        width=_number(details.get(ExifTags.Base.ExifImageWidth) or exif.get(ExifTags.Base.ImageWidth), int),
        height=_number(details.get(ExifTags.Base.ExifImageHeight) or exif.get(ExifTags.Base.ImageLength), int),
        orientation=_number(exif.get(ExifTags.Base.Orientation), int),
    )

    if gps:
        if gps.get(ExifTags.GPS.GPSLatitude) is not None:
            data.gps_latitude = dms_to_decimal(gps[ExifTags.GPS.GPSLatitude], _text(gps.get(ExifTags.GPS.GPSLatitudeRef)))
        if gps.get(ExifTags.GPS.GPSLongitude) is not None:
            data.gps_longitude = dms_to_decimal(
                gps[ExifTags.GPS.GPSLongitude], _text(gps.get(ExifTags.GPS.GPSLongitudeRef))
            )

    return data
