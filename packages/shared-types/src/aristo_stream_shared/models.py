"""Pydantic models for media assets, quality ladders, variants, segments, and queue payloads."""

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

_RESOLUTION_RE = re.compile(r"^(\d+)x(\d+)$")


class AssetStatus(str, Enum):
    """Lifecycle status of a media asset."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({AssetStatus.READY, AssetStatus.ERROR})


class MediaAsset(BaseModel):
    """Media asset record (assets table). The record is authoritative for status."""

    asset_id: str = Field(..., description="Unique asset identifier")
    source_uri: str = Field(
        ..., description="s3://bucket/key of the original upload, or a local file path"
    )
    status: AssetStatus = Field(AssetStatus.PENDING, description="Current lifecycle status")
    processing_progress: int = Field(0, ge=0, le=100, description="0-100, advisory")
    error_message: str | None = Field(None, description="Message from the failing stage")
    thumbnail_url: str | None = Field(None, description="Thumbnail reference when ready")
    master_manifest_url: str | None = Field(
        None, description="Master playlist reference when ready"
    )
    processing_started_at: int | None = Field(
        None,
        description="Unix timestamp of the current processing claim; refreshed by every progress write",
    )
    processing_claim_id: str | None = Field(
        None, description="Token of the run holding the processing claim"
    )
    updated_at: int | None = Field(None, description="Unix timestamp of the last status write")
    title: str | None = Field(None, description="Optional display name")


class Resolution(BaseModel):
    """Target frame size (width x height in pixels)."""

    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"

    @classmethod
    def parse(cls, value: str) -> "Resolution":
        """Parse '640x360' into a Resolution. Raises ValueError if malformed."""
        match = _RESOLUTION_RE.match(value.strip())
        if not match:
            raise ValueError(f"Invalid resolution: {value!r} (expected WIDTHxHEIGHT)")
        return cls(width=int(match.group(1)), height=int(match.group(2)))


class Quality(BaseModel):
    """One rung of the quality ladder: label, target bandwidth, and target resolution."""

    label: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9_\-]+$")
    bandwidth: int = Field(..., gt=0, description="Target bandwidth in bits per second")
    resolution: Resolution
    audio_bitrate: str = Field("128k", description="AAC bitrate in ffmpeg notation")

    @field_validator("resolution", mode="before")
    @classmethod
    def parse_resolution_string(cls, v: object) -> object:
        if isinstance(v, str):
            return Resolution.parse(v)
        return v


# Ladder used by the upload pipeline (bandwidth in bits/s).
QUALITY_PRESETS: dict[str, Quality] = {
    "360p": Quality(
        label="360p", bandwidth=800_000, resolution=Resolution(width=640, height=360),
        audio_bitrate="96k",
    ),
    "480p": Quality(
        label="480p", bandwidth=1_400_000, resolution=Resolution(width=854, height=480),
        audio_bitrate="128k",
    ),
    "720p": Quality(
        label="720p", bandwidth=2_800_000, resolution=Resolution(width=1280, height=720),
        audio_bitrate="128k",
    ),
    "1080p": Quality(
        label="1080p", bandwidth=5_000_000, resolution=Resolution(width=1920, height=1080),
        audio_bitrate="192k",
    ),
}

DEFAULT_QUALITY_LABELS = ("360p", "480p", "720p")
DEFAULT_SEGMENT_DURATION_SEC = 6.0


class ProcessingConfig(BaseModel):
    """
    Per-run processing configuration.

    Qualities are kept in ascending bandwidth order; labels and bandwidths must be
    unique so every variant has its own sub-manifest path and stream-info entry.
    """

    qualities: list[Quality] = Field(..., min_length=1)
    segment_duration: float = Field(DEFAULT_SEGMENT_DURATION_SEC, gt=0)
    generate_thumbnail: bool = True
    thumbnail_timestamp: float = Field(1.0, ge=0)
    encode_timeout_sec: float | None = Field(None, gt=0)
    publish_timeout_sec: float | None = Field(None, gt=0)

    @model_validator(mode="after")
    def check_unique_and_sort(self) -> "ProcessingConfig":
        labels = [q.label for q in self.qualities]
        if len(set(labels)) != len(labels):
            raise ValueError(f"Duplicate quality labels: {labels}")
        bandwidths = [q.bandwidth for q in self.qualities]
        if len(set(bandwidths)) != len(bandwidths):
            raise ValueError(f"Duplicate quality bandwidths: {bandwidths}")
        self.qualities.sort(key=lambda q: q.bandwidth)
        return self

    @classmethod
    def from_labels(
        cls, labels: list[str] | tuple[str, ...], **kwargs: Any
    ) -> "ProcessingConfig":
        """Build a config from preset labels (e.g. ['360p', '720p']). Unknown labels raise ValueError."""
        unknown = [label for label in labels if label not in QUALITY_PRESETS]
        if unknown:
            raise ValueError(
                f"Unknown quality labels: {unknown} (known: {sorted(QUALITY_PRESETS)})"
            )
        qualities = [QUALITY_PRESETS[label].model_copy(deep=True) for label in labels]
        return cls(qualities=qualities, **kwargs)


class Segment(BaseModel):
    """One fixed-duration chunk of an encoded variant."""

    index: int = Field(..., ge=0)
    duration: float = Field(..., ge=0, description="Seconds")
    key: str = Field(..., description="Object-store key of the segment bytes")


class Variant(BaseModel):
    """One encoded rendition of an asset with its ordered, gapless segments."""

    label: str
    bandwidth: int = Field(..., gt=0)
    resolution: Resolution
    playlist_key: str = Field(..., description="Object-store key of the sub-manifest")
    segments: list[Segment] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_gapless(self) -> "Variant":
        indices = [s.index for s in self.segments]
        if indices != list(range(len(indices))):
            raise ValueError(
                f"Variant {self.label}: segment indices must be 0..{len(indices) - 1}, got {indices}"
            )
        return self

    @property
    def total_duration(self) -> float:
        return sum(s.duration for s in self.segments)


class RenditionIndex(BaseModel):
    """
    Variant and segment records for one asset.

    Stored next to the manifests so the manifest tree can be regenerated at any
    time (e.g. under a new public base URL) without re-encoding.
    """

    asset_id: str
    key_prefix: str
    segment_duration: float = Field(..., gt=0)
    variants: list[Variant] = Field(..., min_length=1)


class ProcessResult(BaseModel):
    """Result of a successful processing run."""

    master_manifest_url: str
    thumbnail_url: str | None = None


class StoredObject(BaseModel):
    """An object written to the store by the publisher."""

    bucket: str
    key: str
    content_type: str
    cache_control: str | None = None


# --- Processing queue ---

class ProcessAssetPayload(BaseModel):
    """Payload for the processing queue (sent by the upload-completion handler)."""

    asset_id: str = Field(..., min_length=1)
    config: ProcessingConfig | None = Field(
        None, description="Optional per-asset override of the worker's default config"
    )
