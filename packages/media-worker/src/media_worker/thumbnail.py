"""Grab a single JPEG frame of the source as the asset thumbnail."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from aristo_stream_shared import Resolution

logger = logging.getLogger(__name__)

THUMBNAIL_SIZE = Resolution(width=1280, height=720)
THUMBNAIL_CONTENT_TYPE = "image/jpeg"


class ThumbnailError(RuntimeError):
    """ffmpeg could not produce a thumbnail."""


def clamp_timestamp(timestamp: float, duration: float | None) -> float:
    """Keep the grab point inside the source (halfway through for clips shorter than timestamp)."""
    if duration is None or duration <= 0:
        return max(0.0, timestamp)
    if timestamp < duration:
        return max(0.0, timestamp)
    return duration / 2


def generate_thumbnail(
    source_path: str,
    out_path: str | Path,
    *,
    timestamp: float = 1.0,
    duration: float | None = None,
    size: Resolution = THUMBNAIL_SIZE,
    ffmpeg_path: str = "ffmpeg",
    timeout_sec: float = 60,
) -> str:
    """
    Write one frame at timestamp (seconds), scaled to size, to out_path.

    Returns out_path. Raises ThumbnailError if ffmpeg fails, times out, or
    writes nothing.
    """
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    at = clamp_timestamp(timestamp, duration)
    cmd = [
        ffmpeg_path,
        "-hide_banner",
        "-nostdin",
        "-loglevel", "error",
        "-y",
        "-ss", f"{at:.3f}",
        "-i", source_path,
        "-frames:v", "1",
        "-vf", f"scale={size.width}:{size.height}",
        "-q:v", "2",
        str(out),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_sec)
    except FileNotFoundError as e:
        raise ThumbnailError(f"ffmpeg not found: {ffmpeg_path}") from e
    except subprocess.TimeoutExpired as e:
        raise ThumbnailError(f"thumbnail timed out after {timeout_sec}s") from e
    if result.returncode != 0:
        tail = " | ".join((result.stderr or "").strip().splitlines()[-5:])
        raise ThumbnailError(f"ffmpeg exited {result.returncode}: {tail}")
    if not out.is_file() or out.stat().st_size == 0:
        raise ThumbnailError("ffmpeg wrote no thumbnail")
    logger.debug("thumbnail: grabbed frame at %.3fs -> %s", at, out.name)
    return str(out)
