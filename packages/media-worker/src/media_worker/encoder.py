"""
Variant encoder: one ffmpeg HLS encode per quality, run in parallel.

Each quality is encoded into its own staging directory with keyframes forced
at every segment boundary, so all variants of an asset cut at the same
timestamps. ffmpeg's own media playlist is read back to build the Variant and
Segment records; the manifests that get published are rebuilt from those
records by aristo_stream_shared.manifest.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from aristo_stream_shared import (
    ProcessingConfig,
    Quality,
    Segment,
    Variant,
    VariantEncodeFailed,
    build_segment_key,
    build_variant_playlist_key,
    parse_media_playlist,
    parse_segment_index,
)
from aristo_stream_shared.keys import SEGMENT_FILENAME_PATTERN, VARIANT_PLAYLIST_FILENAME

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# Lines of ffmpeg output kept for error messages
_TAIL_LINES = 20
_PROGRESS_LINE_RE = re.compile(r"^[a-z0-9_]+=\S*$")
# Remainders shorter than this are rounding noise, not a segment
_MIN_SEGMENT_SEC = 1e-3


@dataclass
class EncodedVariant:
    """A finished encode: the Variant record plus local files to publish."""

    variant: Variant
    playlist_path: str
    segment_files: dict[str, str] = field(default_factory=dict)  # segment key -> local path


def plan_segment_durations(total_duration: float, segment_duration: float) -> list[float]:
    """
    Fixed-duration segmentation of a source: every segment is segment_duration
    long except the last, which holds the remainder (20s / 6s -> [6, 6, 6, 2]).
    """
    if total_duration <= 0:
        raise ValueError(f"total_duration must be > 0, got {total_duration}")
    if segment_duration <= 0:
        raise ValueError(f"segment_duration must be > 0, got {segment_duration}")
    full = int(total_duration // segment_duration)
    remainder = total_duration - full * segment_duration
    durations = [float(segment_duration)] * full
    if remainder > _MIN_SEGMENT_SEC or not durations:
        durations.append(round(remainder, 6))
    return durations


def _kbps(bits_per_second: int) -> int:
    return max(1, bits_per_second // 1000)


def build_hls_command(
    source_path: str,
    quality: Quality,
    output_dir: str | Path,
    *,
    segment_duration: float,
    ffmpeg_path: str = "ffmpeg",
    has_audio: bool = True,
) -> list[str]:
    """ffmpeg argv for one quality: H.264/AAC at the quality's bitrate, cut into HLS segments."""
    out = Path(output_dir)
    kbps = _kbps(quality.bandwidth)
    seg = f"{segment_duration:g}"
    cmd = [
        ffmpeg_path,
        "-hide_banner",
        "-nostdin",
        "-loglevel", "error",
        "-y",
        "-i", source_path,
        "-map", "0:v:0",
    ]
    if has_audio:
        cmd += ["-map", "0:a:0?"]
    cmd += [
        "-vf", f"scale={quality.resolution.width}:{quality.resolution.height}",
        "-c:v", "libx264",
        "-preset", "medium",
        "-b:v", f"{kbps}k",
        "-maxrate", f"{kbps}k",
        "-bufsize", f"{2 * kbps}k",
        # Keyframe at every segment boundary so segments of all variants align
        "-force_key_frames", f"expr:gte(t,n_forced*{seg})",
        "-sc_threshold", "0",
    ]
    if has_audio:
        cmd += ["-c:a", "aac", "-b:a", quality.audio_bitrate, "-ac", "2"]
    else:
        cmd += ["-an"]
    cmd += [
        "-f", "hls",
        "-hls_time", seg,
        "-hls_list_size", "0",
        "-hls_playlist_type", "vod",
        "-hls_segment_filename", str(out / SEGMENT_FILENAME_PATTERN),
        "-progress", "pipe:1",
        str(out / VARIANT_PLAYLIST_FILENAME),
    ]
    return cmd


def _parse_out_time(line: str) -> float | None:
    """Seconds encoded so far from an ffmpeg -progress line (out_time_us / out_time_ms are both µs)."""
    for prefix in ("out_time_us=", "out_time_ms="):
        if line.startswith(prefix):
            try:
                return int(line[len(prefix):]) / 1_000_000
            except ValueError:
                return None
    return None


def _collect_segments(
    playlist_path: Path,
    *,
    asset_id: str,
    label: str,
    key_prefix: str,
) -> tuple[list[Segment], dict[str, str]]:
    if not playlist_path.is_file():
        raise VariantEncodeFailed(
            f"ffmpeg produced no playlist for {label}", label=label, asset_id=asset_id
        )
    try:
        entries = parse_media_playlist(playlist_path.read_text())
    except ValueError as e:
        raise VariantEncodeFailed(
            f"unreadable playlist for {label}: {e}", label=label, asset_id=asset_id
        ) from e
    if not entries:
        raise VariantEncodeFailed(
            f"ffmpeg produced no segments for {label}", label=label, asset_id=asset_id
        )

    segments: list[Segment] = []
    files: dict[str, str] = {}
    for expected, (duration, uri) in enumerate(entries):
        filename = os.path.basename(uri)
        index = parse_segment_index(filename)
        if index != expected:
            raise VariantEncodeFailed(
                f"segment sequence for {label} is not gapless: expected index {expected}, got {uri!r}",
                label=label,
                asset_id=asset_id,
            )
        local = playlist_path.parent / filename
        if not local.is_file():
            raise VariantEncodeFailed(
                f"segment file missing for {label}: {filename}", label=label, asset_id=asset_id
            )
        key = build_segment_key(asset_id, label, index, key_prefix)
        segments.append(Segment(index=index, duration=duration, key=key))
        files[key] = str(local)
    return segments, files


def encode_variant(
    source_path: str,
    quality: Quality,
    staging_dir: str | Path,
    *,
    asset_id: str,
    key_prefix: str,
    source_duration: float,
    segment_duration: float,
    ffmpeg_path: str = "ffmpeg",
    has_audio: bool = True,
    timeout_sec: float | None = None,
    abort_event: threading.Event | None = None,
    on_progress: ProgressCallback | None = None,
) -> EncodedVariant:
    """
    Encode one quality into staging_dir/<label>/ and return its Variant.

    Progress is reported as the fraction of source_duration encoded so far.
    Raises VariantEncodeFailed on a non-zero exit, a timeout (ffmpeg is killed),
    an abort via abort_event, or a gapped/missing segment sequence.
    """
    label = quality.label
    if abort_event is not None and abort_event.is_set():
        raise VariantEncodeFailed(f"encode of {label} aborted", label=label, asset_id=asset_id)
    out_dir = Path(staging_dir) / label
    out_dir.mkdir(parents=True, exist_ok=True)
    cmd = build_hls_command(
        source_path,
        quality,
        out_dir,
        segment_duration=segment_duration,
        ffmpeg_path=ffmpeg_path,
        has_audio=has_audio,
    )
    logger.info(
        "encode: asset_id=%s label=%s start (bandwidth=%s resolution=%s)",
        asset_id, label, quality.bandwidth, quality.resolution,
    )
    logger.debug("encode: asset_id=%s label=%s cmd=%s", asset_id, label, " ".join(cmd))
    try:
        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
    except FileNotFoundError as e:
        raise VariantEncodeFailed(
            f"ffmpeg not found: {ffmpeg_path}", label=label, asset_id=asset_id
        ) from e

    timed_out = threading.Event()
    aborted = False

    def _on_deadline() -> None:
        timed_out.set()
        proc.kill()

    timer = threading.Timer(timeout_sec, _on_deadline) if timeout_sec else None
    if timer is not None:
        timer.daemon = True
        timer.start()

    tail: deque[str] = deque(maxlen=_TAIL_LINES)
    reported = 0.0
    try:
        for raw in proc.stdout:
            if abort_event is not None and abort_event.is_set():
                aborted = True
                proc.kill()
                break
            line = raw.strip()
            if not line:
                continue
            if not _PROGRESS_LINE_RE.match(line):
                tail.append(line)
                continue
            if line == "progress=end":
                fraction = 1.0
            else:
                seconds = _parse_out_time(line)
                if seconds is None:
                    continue
                fraction = min(1.0, max(0.0, seconds / source_duration))
            if fraction > reported:
                reported = fraction
                if on_progress is not None:
                    on_progress(fraction)
        returncode = proc.wait()
    finally:
        if timer is not None:
            timer.cancel()
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        if proc.stdout is not None:
            proc.stdout.close()

    if timed_out.is_set():
        raise VariantEncodeFailed(
            f"ffmpeg for {label} timed out after {timeout_sec}s", label=label, asset_id=asset_id
        )
    if aborted:
        raise VariantEncodeFailed(f"encode of {label} aborted", label=label, asset_id=asset_id)
    if returncode != 0:
        detail = " | ".join(tail) or "no output"
        raise VariantEncodeFailed(
            f"ffmpeg exited {returncode} for {label}: {detail}", label=label, asset_id=asset_id
        )

    playlist_path = out_dir / VARIANT_PLAYLIST_FILENAME
    segments, files = _collect_segments(
        playlist_path, asset_id=asset_id, label=label, key_prefix=key_prefix
    )
    variant = Variant(
        label=label,
        bandwidth=quality.bandwidth,
        resolution=quality.resolution,
        playlist_key=build_variant_playlist_key(asset_id, label, key_prefix),
        segments=segments,
    )
    if on_progress is not None and reported < 1.0:
        on_progress(1.0)
    logger.info(
        "encode: asset_id=%s label=%s complete segments=%s duration=%.3f",
        asset_id, label, len(segments), variant.total_duration,
    )
    return EncodedVariant(variant=variant, playlist_path=str(playlist_path), segment_files=files)


def encode_variants(
    source_path: str,
    config: ProcessingConfig,
    staging_dir: str | Path,
    *,
    asset_id: str,
    key_prefix: str,
    source_duration: float,
    has_audio: bool = True,
    max_parallel: int = 3,
    ffmpeg_path: str = "ffmpeg",
    on_progress: ProgressCallback | None = None,
) -> list[EncodedVariant]:
    """
    Encode every quality of config in parallel (at most max_parallel at once).

    Returns the encoded variants in ascending bandwidth order. On the first
    failure the remaining encodes are aborted and that failure is raised; no
    partial ladder is ever returned. on_progress receives the mean completion
    fraction across all qualities, called in order and never decreasing.
    """
    qualities = sorted(config.qualities, key=lambda q: q.bandwidth)
    abort_event = threading.Event()
    fractions = {q.label: 0.0 for q in qualities}
    fractions_lock = threading.Lock()
    last_overall = 0.0

    def _report(label: str) -> ProgressCallback:
        def report(fraction: float) -> None:
            nonlocal last_overall
            with fractions_lock:
                fractions[label] = max(fractions[label], fraction)
                overall = sum(fractions.values()) / len(fractions)
                if overall <= last_overall:
                    return
                last_overall = overall
                if on_progress is not None:
                    on_progress(overall)

        return report

    results: dict[str, EncodedVariant] = {}
    first_error: BaseException | None = None
    workers = max(1, min(max_parallel, len(qualities)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="encode") as pool:
        futures = {
            pool.submit(
                encode_variant,
                source_path,
                quality,
                staging_dir,
                asset_id=asset_id,
                key_prefix=key_prefix,
                source_duration=source_duration,
                segment_duration=config.segment_duration,
                ffmpeg_path=ffmpeg_path,
                has_audio=has_audio,
                timeout_sec=config.encode_timeout_sec,
                abort_event=abort_event,
                on_progress=_report(quality.label),
            ): quality.label
            for quality in qualities
        }
        for future in as_completed(futures):
            label = futures[future]
            if future.cancelled():
                continue
            try:
                results[label] = future.result()
            except Exception as e:
                if first_error is None:
                    first_error = e
                    abort_event.set()
                    for pending in futures:
                        pending.cancel()
                    logger.warning(
                        "encode: asset_id=%s label=%s failed, aborting remaining variants: %s",
                        asset_id, label, e,
                    )
                else:
                    logger.debug("encode: asset_id=%s label=%s stopped: %s", asset_id, label, e)
    if first_error is not None:
        raise first_error
    return [results[q.label] for q in qualities]
