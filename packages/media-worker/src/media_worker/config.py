"""
App config from environment with defaults.
Uses pydantic-settings so all env vars are validated and documented in one model.
"""

from __future__ import annotations

import math

from aristo_stream_shared import (
    DEFAULT_KEY_PREFIX,
    DEFAULT_QUALITY_LABELS,
    DEFAULT_SEGMENT_DURATION_SEC,
    ProcessingConfig,
)
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_PARALLEL_ENCODES_LIMIT = 8


class MediaWorkerSettings(BaseSettings):
    """
    All environment variables used by the media worker.
    Env vars are read from os.environ (UPPER_SNAKE_CASE by default).
    """

    model_config = SettingsConfigDict(extra="ignore")

    # Output location
    media_bucket_name: str = "aristotest-videos"
    key_prefix: str = DEFAULT_KEY_PREFIX
    # Base for absolute manifest URLs (e.g. CDN origin). Empty: manifests use relative references.
    public_base_url: str = ""

    # Quality ladder and segmenting
    qualities: str = ",".join(DEFAULT_QUALITY_LABELS)
    segment_duration_sec: float = Field(DEFAULT_SEGMENT_DURATION_SEC, gt=0)
    generate_thumbnail: bool = True

    # Parallelism and deadlines
    max_parallel_encodes: int = 3
    encode_timeout_sec: float = Field(3600, gt=0)
    publish_timeout_sec: float = Field(600, gt=0)
    probe_timeout_sec: float = Field(60, gt=0)

    # Publishing
    cache_control: str = "public, max-age=3600"
    apply_public_read_policy: bool = True

    # Local staging root for downloads and encoder output; empty uses the system temp dir
    staging_dir: str = ""
    # A processing claim without a heartbeat for this long may be taken over by another worker;
    # must exceed worst_case_run_sec
    stale_processing_after_sec: int = Field(7200, gt=0)

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    @field_validator("max_parallel_encodes")
    @classmethod
    def clamp_parallel_encodes(cls, v: int) -> int:
        return max(1, min(MAX_PARALLEL_ENCODES_LIMIT, v))

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @model_validator(mode="after")
    def check_stale_window(self) -> MediaWorkerSettings:
        if self.stale_processing_after_sec <= self.worst_case_run_sec:
            raise ValueError(
                f"stale_processing_after_sec ({self.stale_processing_after_sec}) must exceed "
                f"the worst-case run of {self.worst_case_run_sec:g}s "
                "(probe + encode waves + publish deadlines)"
            )
        return self

    @property
    def worst_case_run_sec(self) -> float:
        """Longest a live run can go between claim and publish under the configured deadlines."""
        waves = math.ceil(max(1, len(self.quality_labels)) / self.max_parallel_encodes)
        return self.probe_timeout_sec + waves * self.encode_timeout_sec + self.publish_timeout_sec

    @property
    def quality_labels(self) -> list[str]:
        return [label.strip() for label in self.qualities.split(",") if label.strip()]

    def processing_config(self) -> ProcessingConfig:
        """Default per-asset ProcessingConfig built from QUALITIES and the timeouts."""
        return ProcessingConfig.from_labels(
            self.quality_labels,
            segment_duration=self.segment_duration_sec,
            generate_thumbnail=self.generate_thumbnail,
            encode_timeout_sec=self.encode_timeout_sec,
            publish_timeout_sec=self.publish_timeout_sec,
        )


def get_settings() -> MediaWorkerSettings:
    """Return validated settings from current environment."""
    return MediaWorkerSettings()
