"""Shared types and conventions for the aristo-stream HLS packaging pipeline."""

from .errors import (
    AssetNotFound,
    ConcurrentProcessingRejected,
    PermissionDenied,
    ProcessingError,
    SourceUnreadable,
    StoreUnavailable,
    VariantEncodeFailed,
)
from .interfaces import (
    AssetStore,
    ObjectStore,
    QueueMessage,
    QueueReceiver,
    QueueSender,
)
from .keys import (
    DEFAULT_KEY_PREFIX,
    SegmentKeyParts,
    asset_hls_prefix,
    asset_thumbnail_prefix,
    build_master_key,
    build_rendition_index_key,
    build_segment_key,
    build_thumbnail_key,
    build_variant_playlist_key,
    parse_segment_index,
    parse_segment_key,
    relative_reference,
    resolve_url,
)
from .logging_config import configure_logging
from .manifest import (
    MANIFEST_CONTENT_TYPE,
    build_manifests,
    build_master_manifest,
    build_variant_manifest,
    parse_media_playlist,
)
from .models import (
    DEFAULT_QUALITY_LABELS,
    DEFAULT_SEGMENT_DURATION_SEC,
    QUALITY_PRESETS,
    TERMINAL_STATUSES,
    AssetStatus,
    MediaAsset,
    ProcessAssetPayload,
    ProcessingConfig,
    ProcessResult,
    Quality,
    RenditionIndex,
    Resolution,
    Segment,
    StoredObject,
    Variant,
)

__version__ = "0.1.0"
__all__ = [
    "AssetNotFound",
    "AssetStatus",
    "AssetStore",
    "ConcurrentProcessingRejected",
    "DEFAULT_KEY_PREFIX",
    "DEFAULT_QUALITY_LABELS",
    "DEFAULT_SEGMENT_DURATION_SEC",
    "MANIFEST_CONTENT_TYPE",
    "MediaAsset",
    "ObjectStore",
    "PermissionDenied",
    "ProcessAssetPayload",
    "ProcessResult",
    "ProcessingConfig",
    "ProcessingError",
    "QUALITY_PRESETS",
    "Quality",
    "QueueMessage",
    "QueueReceiver",
    "QueueSender",
    "RenditionIndex",
    "Resolution",
    "Segment",
    "SegmentKeyParts",
    "SourceUnreadable",
    "StoreUnavailable",
    "StoredObject",
    "TERMINAL_STATUSES",
    "Variant",
    "VariantEncodeFailed",
    "asset_hls_prefix",
    "asset_thumbnail_prefix",
    "build_manifests",
    "build_master_key",
    "build_master_manifest",
    "build_rendition_index_key",
    "build_segment_key",
    "build_thumbnail_key",
    "build_variant_manifest",
    "build_variant_playlist_key",
    "configure_logging",
    "parse_media_playlist",
    "parse_segment_index",
    "parse_segment_key",
    "relative_reference",
    "resolve_url",
]
