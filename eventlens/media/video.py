"""
Video metadata and poster frames via ffprobe/ffmpeg.

Both tools are invoked as subprocesses on a file path; callers holding bytes
write them to a temporary file first (see ``temporary_video_file``).
"""

import asyncio
import contextlib
import json
import logging
import os
import re
import subprocess
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime

from PIL import Image

from eventlens.media.images import make_thumbnail

logger = logging.getLogger(__name__)

FFPROBE_BIN = os.environ.get("FFPROBE_PATH", "ffprobe")
FFMPEG_BIN = os.environ.get("FFMPEG_PATH", "ffmpeg")
PROBE_TIMEOUT = 60
FRAME_TIMESTAMPS = ("00:00:01.000", "00:00:00.000")

ISO6709_PATTERN = re.compile(r"([+-]\d+\.\d+)([+-]\d+\.\d+)")

_CREATION_TAGS = ("creation_time", "com.apple.quicktime.creationdate", "date")
_LOCATION_TAGS = ("com.apple.quicktime.location.ISO6709", "location")
_MAKE_TAGS = ("com.apple.quicktime.make", "make")
_MODEL_TAGS = ("com.apple.quicktime.model", "model")


@dataclass
class VideoMetadata:
    duration: float | None = None
    width: int | None = None
    height: int | None = None
    creation_time: str | None = None
    make: str | None = None
    model: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @property
    def taken_at(self) -> datetime | None:
        if not self.creation_time:
            return None
        return datetime.fromisoformat(self.creation_time)


def parse_iso6709(value: str | None) -> tuple[float, float] | None:
    """Extract ``(latitude, longitude)`` from an ISO 6709 string such as ``+37.3349-122.0090+010.000/``."""
    if not value:
        return None
    match = ISO6709_PATTERN.search(value)
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))


def _first_tag(names, *tag_sets) -> str | None:
    for name in names:
        for tags in tag_sets:
            value = tags.get(name)
            if value:
                return str(value)
    return None


def _normalize_timestamp(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).isoformat()
    except ValueError:
        logger.debug("Unparseable video creation time: %s", value)
        return None


def parse_probe_output(probe: dict) -> VideoMetadata:
    streams = probe.get("streams", [])
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), {})
    fmt = probe.get("format", {})
    format_tags = fmt.get("tags", {}) or {}
    stream_tags = video_stream.get("tags", {}) or {}

    duration = fmt.get("duration") or video_stream.get("duration")
    metadata = VideoMetadata(
        duration=float(duration) if duration else None,
        width=video_stream.get("width"),
        height=video_stream.get("height"),
        creation_time=_normalize_timestamp(_first_tag(_CREATION_TAGS, format_tags, stream_tags)),
        make=_first_tag(_MAKE_TAGS, format_tags, stream_tags),
        model=_first_tag(_MODEL_TAGS, format_tags, stream_tags),
    )

    location = parse_iso6709(_first_tag(_LOCATION_TAGS, format_tags, stream_tags))
    if location:
        metadata.latitude, metadata.longitude = location
    return metadata


def _run_ffprobe(path: str) -> dict:
    result = subprocess.run(
        [FFPROBE_BIN, "-v", "error", "-print_format", "json", "-show_format", "-show_streams", path],
        capture_output=True,
        text=True,
        check=True,
        timeout=PROBE_TIMEOUT,
    )
    return json.loads(result.stdout or "{}")


async def extract_video_metadata(path: str) -> VideoMetadata | None:
    """Probe a video file. Returns None when ffprobe fails."""
    try:
        probe = await asyncio.to_thread(_run_ffprobe, path)
    except (OSError, subprocess.SubprocessError, json.JSONDecodeError) as e:
        logger.warning("ffprobe failed for %s: %s", path, e)
        return None
    return parse_probe_output(probe)


def _extract_frame(path: str) -> bytes | None:
    fd, frame_path = tempfile.mkstemp(suffix=".jpg")
    os.close(fd)
    try:
        for timestamp in FRAME_TIMESTAMPS:
            try:
                subprocess.run(
                    [FFMPEG_BIN, "-y", "-ss", timestamp, "-i", path, "-frames:v", "1", "-q:v", "2", frame_path],
                    check=True,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    timeout=PROBE_TIMEOUT,
                )
            except (OSError, subprocess.SubprocessError) as e:
                logger.debug("Frame extraction at %s failed for %s: %s", timestamp, path, e)
                continue
            if os.path.getsize(frame_path) > 0:
                with Image.open(frame_path) as frame:
                    return make_thumbnail(frame)
        return None
    finally:
        with contextlib.suppress(OSError):
            os.remove(frame_path)


async def generate_video_thumbnail(path: str) -> bytes | None:
    """
    Grab a poster frame one second in, falling back to the first frame for
    very short clips, and render it as a 400x400 JPEG thumbnail.
    """
    return await asyncio.to_thread(_extract_frame, path)


@contextlib.contextmanager
def temporary_video_file(data: bytes, suffix: str = ".tmp"):
    fd, path = tempfile.mkstemp(suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        yield path
    finally:
        with contextlib.suppress(OSError):
            os.remove(path)
