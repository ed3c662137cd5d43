"""
Object-key layout for HLS output and thumbnails, plus URL helpers.

Single source of truth: the encoder, publisher, and repair tooling build keys
using only these functions. No duplicate key formatting elsewhere.

Master playlist:  {prefix}/hls/{asset_id}/master.m3u8
Variant playlist: {prefix}/hls/{asset_id}/{label}/playlist.m3u8
Segment:          {prefix}/hls/{asset_id}/{label}/segment_{index:03d}.ts
Rendition index:  {prefix}/hls/{asset_id}/renditions.json
Thumbnail:        {prefix}/thumbnails/{asset_id}/thumbnail.jpg

Parser behaviour: Invalid keys return None. Callers must check and handle accordingly.
"""

import posixpath
import re
from typing import NamedTuple

DEFAULT_KEY_PREFIX = "videos"
MASTER_FILENAME = "master.m3u8"
VARIANT_PLAYLIST_FILENAME = "playlist.m3u8"
RENDITION_INDEX_FILENAME = "renditions.json"
THUMBNAIL_FILENAME = "thumbnail.jpg"
SEGMENT_FILENAME_PATTERN = "segment_%03d.ts"

_SEGMENT_FILENAME_RE = re.compile(r"^segment_(\d{3,})\.ts$")


class SegmentKeyParts(NamedTuple):
    key_prefix: str
    asset_id: str
    label: str
    index: int


def _check_component(name: str, value: str) -> str:
    if not value or "/" in value or value in (".", ".."):
        raise ValueError(f"Invalid {name} for object key: {value!r}")
    return value


def _join(key_prefix: str, *parts: str) -> str:
    prefix = key_prefix.strip("/")
    return "/".join([prefix, *parts]) if prefix else "/".join(parts)


def asset_hls_prefix(asset_id: str, key_prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Prefix (with trailing slash) under which all HLS objects of the asset live."""
    return _join(key_prefix, "hls", _check_component("asset_id", asset_id)) + "/"


def asset_thumbnail_prefix(asset_id: str, key_prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Prefix (with trailing slash) under which the asset's thumbnail lives."""
    return _join(key_prefix, "thumbnails", _check_component("asset_id", asset_id)) + "/"


def build_master_key(asset_id: str, key_prefix: str = DEFAULT_KEY_PREFIX) -> str:
    return asset_hls_prefix(asset_id, key_prefix) + MASTER_FILENAME


def build_rendition_index_key(asset_id: str, key_prefix: str = DEFAULT_KEY_PREFIX) -> str:
    return asset_hls_prefix(asset_id, key_prefix) + RENDITION_INDEX_FILENAME


def build_variant_playlist_key(
    asset_id: str, label: str, key_prefix: str = DEFAULT_KEY_PREFIX
) -> str:
    return (
        asset_hls_prefix(asset_id, key_prefix)
        + f"{_check_component('label', label)}/{VARIANT_PLAYLIST_FILENAME}"
    )


def build_segment_key(
    asset_id: str, label: str, index: int, key_prefix: str = DEFAULT_KEY_PREFIX
) -> str:
    """
    Build the canonical segment object key.

    Zero-padding (3 digits, matching ffmpeg's segment_%03d.ts) keeps
    lexicographic order for the first 1000 segments.
    """
    if index < 0:
        raise ValueError(f"Segment index must be >= 0, got {index}")
    return (
        asset_hls_prefix(asset_id, key_prefix)
        + f"{_check_component('label', label)}/{SEGMENT_FILENAME_PATTERN % index}"
    )


def build_thumbnail_key(asset_id: str, key_prefix: str = DEFAULT_KEY_PREFIX) -> str:
    return asset_thumbnail_prefix(asset_id, key_prefix) + THUMBNAIL_FILENAME


def parse_segment_index(filename: str) -> int | None:
    """Return the index of an ffmpeg segment filename (segment_007.ts -> 7), or None."""
    match = _SEGMENT_FILENAME_RE.match(filename)
    if not match:
        return None
    return int(match.group(1))


def parse_segment_key(key: str) -> SegmentKeyParts | None:
    """
    Parse a segment object key.

    Args:
        key: Object key (e.g. videos/hls/asset-1/360p/segment_004.ts).

    Returns:
        SegmentKeyParts(key_prefix, asset_id, label, index), or None if the key is invalid.
    """
    parts = key.split("/")
    if len(parts) < 4 or "hls" not in parts:
        return None
    hls_pos = len(parts) - 4
    if parts[hls_pos] != "hls":
        return None
    asset_id, label, filename = parts[hls_pos + 1 :]
    if not asset_id or not label:
        return None
    index = parse_segment_index(filename)
    if index is None:
        return None
    return SegmentKeyParts("/".join(parts[:hls_pos]), asset_id, label, index)


def resolve_url(base_url: str | None, key: str) -> str:
    """Public reference for a key: base_url/key when a base is configured, otherwise the key."""
    if not base_url:
        return key
    return f"{base_url.rstrip('/')}/{key.lstrip('/')}"


def relative_reference(from_key: str, to_key: str) -> str:
    """Relative URI from the object at from_key to the object at to_key."""
    return posixpath.relpath(to_key, posixpath.dirname(from_key) or ".")
