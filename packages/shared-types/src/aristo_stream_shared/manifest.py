"""
HLS manifest builder (master and variant playlists).

Pure functions over Variant/Segment records: no I/O, and identical input
always yields byte-identical output. URIs are relative to the playlist that
contains them unless a public base URL is given, in which case they are
absolute under that base. No other host is ever embedded.
"""

import math

from .keys import build_master_key, relative_reference, resolve_url
from .models import RenditionIndex, Variant

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
HLS_VERSION = 3


def _reference(from_key: str, to_key: str, base_url: str | None) -> str:
    if base_url:
        return resolve_url(base_url, to_key)
    return relative_reference(from_key, to_key)


def _check_segments(variant: Variant) -> None:
    if not variant.segments:
        raise ValueError(f"Variant {variant.label} has no segments")
    indices = [s.index for s in variant.segments]
    if indices != list(range(len(indices))):
        raise ValueError(
            f"Variant {variant.label}: segment sequence is not gapless from 0: {indices}"
        )


def build_master_manifest(
    asset_id: str,
    variants: list[Variant],
    *,
    key_prefix: str,
    base_url: str | None = None,
) -> str:
    """
    Build the master playlist listing one stream-info entry per variant.

    Entries are emitted in ascending bandwidth order. Raises ValueError when
    variants is empty or two variants share a bandwidth.
    """
    if not variants:
        raise ValueError(f"Cannot build master manifest for {asset_id}: no variants")
    bandwidths = [v.bandwidth for v in variants]
    if len(set(bandwidths)) != len(bandwidths):
        raise ValueError(f"Duplicate variant bandwidths for {asset_id}: {bandwidths}")
    master_key = build_master_key(asset_id, key_prefix)
    lines = ["#EXTM3U", f"#EXT-X-VERSION:{HLS_VERSION}"]
    for variant in sorted(variants, key=lambda v: v.bandwidth):
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={variant.bandwidth},RESOLUTION={variant.resolution}"
        )
        lines.append(_reference(master_key, variant.playlist_key, base_url))
    return "\n".join(lines) + "\n"


def build_variant_manifest(variant: Variant, *, base_url: str | None = None) -> str:
    """
    Build the VOD media playlist of one variant.

    Segments are listed in index order with their exact durations; the target
    duration is the ceiling of the longest segment.
    """
    _check_segments(variant)
    target = max(1, math.ceil(max(s.duration for s in variant.segments)))
    lines = [
        "#EXTM3U",
        f"#EXT-X-VERSION:{HLS_VERSION}",
        f"#EXT-X-TARGETDURATION:{target}",
        "#EXT-X-MEDIA-SEQUENCE:0",
        "#EXT-X-PLAYLIST-TYPE:VOD",
    ]
    for segment in variant.segments:
        lines.append(f"#EXTINF:{segment.duration:.6f},")
        lines.append(_reference(variant.playlist_key, segment.key, base_url))
    lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


def build_manifests(
    index: RenditionIndex, *, base_url: str | None = None
) -> tuple[str, dict[str, str]]:
    """
    Regenerate the whole manifest tree of an asset from its rendition index.

    Returns (master_text, {variant_playlist_key: variant_text}).
    """
    variant_texts = {
        v.playlist_key: build_variant_manifest(v, base_url=base_url) for v in index.variants
    }
    master = build_master_manifest(
        index.asset_id, index.variants, key_prefix=index.key_prefix, base_url=base_url
    )
    return master, variant_texts


def parse_media_playlist(text: str) -> list[tuple[float, str]]:
    """
    Read (duration, uri) pairs from a media playlist, in order.

    Only #EXTINF entries and the URI line that follows each are considered;
    other tags and blank lines are ignored. Raises ValueError for a malformed
    #EXTINF or an #EXTINF with no URI.
    """
    entries: list[tuple[float, str]] = []
    pending: float | None = None
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("#EXTINF:"):
            value = line[len("#EXTINF:") :].split(",", 1)[0]
            try:
                pending = float(value)
            except ValueError as e:
                raise ValueError(f"Malformed #EXTINF line: {line!r}") from e
            continue
        if line.startswith("#"):
            continue
        if pending is not None:
            entries.append((pending, line))
            pending = None
    if pending is not None:
        raise ValueError("Playlist ends with #EXTINF but no segment URI")
    return entries
