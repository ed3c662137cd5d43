"""Read duration and frame size of a source video with ffprobe."""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass

from aristo_stream_shared import SourceUnreadable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceInfo:
    duration: float
    width: int
    height: int
    has_audio: bool = True


def _stderr_tail(text: str | None, lines: int = 5) -> str:
    if not text:
        return ""
    return " | ".join(text.strip().splitlines()[-lines:])


def probe_source(
    path: str,
    *,
    ffprobe_path: str = "ffprobe",
    timeout_sec: float = 60,
    asset_id: str | None = None,
) -> SourceInfo:
    """
    Run ffprobe on path and return its duration (seconds) and first video stream size.

    Raises SourceUnreadable when ffprobe is missing, fails, times out, or the
    file has no video stream or no positive duration.
    """
    cmd = [
        ffprobe_path,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        path,
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_sec)
    except FileNotFoundError as e:
        raise SourceUnreadable(f"ffprobe not found: {ffprobe_path}", asset_id=asset_id) from e
    except subprocess.TimeoutExpired as e:
        raise SourceUnreadable(
            f"ffprobe timed out after {timeout_sec}s", asset_id=asset_id
        ) from e
    if result.returncode != 0:
        raise SourceUnreadable(
            f"ffprobe exited {result.returncode}: {_stderr_tail(result.stderr)}",
            asset_id=asset_id,
        )
    try:
        data = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise SourceUnreadable("ffprobe returned invalid JSON", asset_id=asset_id) from e

    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise SourceUnreadable("source has no video stream", asset_id=asset_id)
    has_audio = any(s.get("codec_type") == "audio" for s in streams)

    raw_duration = (data.get("format") or {}).get("duration") or video.get("duration")
    try:
        duration = float(raw_duration)
    except (TypeError, ValueError):
        duration = 0.0
    if duration <= 0:
        raise SourceUnreadable(
            f"source has no positive duration (got {raw_duration!r})", asset_id=asset_id
        )

    info = SourceInfo(
        duration=duration,
        width=int(video.get("width") or 0),
        height=int(video.get("height") or 0),
        has_audio=has_audio,
    )
    logger.debug(
        "probe: asset_id=%s duration=%.3f size=%sx%s audio=%s",
        asset_id, info.duration, info.width, info.height, info.has_audio,
    )
    return info
