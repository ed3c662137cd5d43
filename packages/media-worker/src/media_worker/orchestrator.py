"""
Processing orchestrator: drives one asset from raw upload to a published HLS tree.

Stages: claim -> fetch source -> probe -> encode variants (parallel) ->
thumbnail -> build manifests -> publish (master last) -> prune -> ready.
Any failure is recorded on the asset as status=error with the failing
stage's message before it is re-raised; the asset is never left in
processing by a run that has returned or raised. Status writes are fenced
on the run's claim id, so a run that lost its claim to a stale takeover
stops at its next write instead of publishing over the new owner.
"""

from __future__ import annotations

import logging
import tempfile
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path, PurePosixPath

from aristo_stream_shared import (
    AssetNotFound,
    AssetStatus,
    ConcurrentProcessingRejected,
    MediaAsset,
    ProcessingConfig,
    ProcessingError,
    ProcessResult,
    RenditionIndex,
    SourceUnreadable,
    build_manifests,
    build_thumbnail_key,
)
from aristo_stream_shared.interfaces import AssetStore, ObjectStore

from .encoder import encode_variants, plan_segment_durations
from .probe import probe_source
from .publisher import PackagedAsset, Publisher
from .thumbnail import ThumbnailError, generate_thumbnail

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "processing interrupted"

# Progress milestones (percent); encoding fills ENCODE_START..ENCODE_END
PROGRESS_SOURCE_FETCHED = 5
PROGRESS_PROBED = 10
PROGRESS_ENCODE_START = 10
PROGRESS_ENCODE_END = 80
PROGRESS_THUMBNAIL = 85
PROGRESS_MANIFESTS = 90
PROGRESS_PUBLISHED = 95

# Seconds between claim heartbeats while progress is flat
HEARTBEAT_INTERVAL_SEC = 60


def _parse_s3_uri(s3_uri: str) -> tuple[str, str] | None:
    """Extract (bucket, key) from s3://bucket/key."""
    if not s3_uri.startswith("s3://"):
        return None
    bucket, _, key = s3_uri[5:].partition("/")
    if not bucket or not key:
        return None
    return bucket, key


class _ProgressReporter:
    """
    Writes monotonically increasing progress for one claimed run; 100 is
    reserved for ready. Every write is fenced on the run's claim id and
    refreshes the claim's heartbeat (processing_started_at).
    """

    def __init__(
        self,
        store: AssetStore,
        asset_id: str,
        claim_id: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._asset_id = asset_id
        self._claim_id = claim_id
        self._clock = clock
        self._current = 0
        self._last_write = clock()
        self._lock = threading.Lock()

    def report(self, percent: float, *, force: bool = False) -> None:
        """
        Save progress when it increased, a heartbeat is due, or force is set.

        Raises ConcurrentProcessingRejected once another run holds the claim;
        other store failures are logged.
        """
        value = max(0, min(99, int(percent)))
        with self._lock:
            now = self._clock()
            heartbeat_due = now - self._last_write >= HEARTBEAT_INTERVAL_SEC
            if value <= self._current and not (force or heartbeat_due):
                return
            self._current = max(self._current, value)
            try:
                self._store.save_status(
                    self._asset_id,
                    AssetStatus.PROCESSING,
                    self._current,
                    claim_id=self._claim_id,
                    heartbeat_at=int(now),
                )
                self._last_write = now
            except ConcurrentProcessingRejected:
                raise
            except ProcessingError as e:
                # Progress writes are advisory
                logger.warning(
                    "processing: asset_id=%s progress=%s not saved: %s",
                    self._asset_id, self._current, e,
                )


class ProcessingOrchestrator:
    """Runs the processing pipeline for one asset at a time per asset id."""

    def __init__(
        self,
        asset_store: AssetStore,
        object_store: ObjectStore,
        publisher: Publisher,
        *,
        max_parallel_encodes: int = 3,
        staging_dir: str | None = None,
        stale_processing_after_sec: int | None = None,
        apply_public_read_policy: bool = False,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        probe_timeout_sec: float = 60,
        thumbnail_timeout_sec: float = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._asset_store = asset_store
        self._object_store = object_store
        self._publisher = publisher
        self._max_parallel_encodes = max(1, max_parallel_encodes)
        self._staging_dir = staging_dir or None
        self._stale_processing_after_sec = stale_processing_after_sec
        self._apply_public_read_policy = apply_public_read_policy
        self._ffmpeg_path = ffmpeg_path
        self._ffprobe_path = ffprobe_path
        self._probe_timeout_sec = probe_timeout_sec
        self._thumbnail_timeout_sec = thumbnail_timeout_sec
        self._clock = clock
        self._active: set[str] = set()
        self._active_lock = threading.Lock()
        self._policy_applied = False

    @contextmanager
    def _exclusive(self, asset_id: str) -> Iterator[None]:
        with self._active_lock:
            if asset_id in self._active:
                raise ConcurrentProcessingRejected(
                    f"asset {asset_id} is already being processed by this worker",
                    asset_id=asset_id,
                )
            self._active.add(asset_id)
        try:
            yield
        finally:
            with self._active_lock:
                self._active.discard(asset_id)

    def process_asset(self, asset_id: str, config: ProcessingConfig) -> ProcessResult:
        """
        Process one asset end to end and mark it ready.

        Raises AssetNotFound or ConcurrentProcessingRejected without touching
        the asset record. Every status write of the run is fenced on its claim:
        a run whose claim was taken over raises ConcurrentProcessingRejected
        before publishing or pruning and leaves the new owner's record alone.
        Any other failure marks the asset error (progress unchanged, message
        verbatim) and is re-raised.
        """
        with self._exclusive(asset_id):
            asset = self._asset_store.get(asset_id, consistent_read=True)
            if asset is None:
                raise AssetNotFound(f"asset {asset_id} not found", asset_id=asset_id)
            claim_id = uuid.uuid4().hex
            claimed = self._asset_store.try_begin_processing(
                asset_id,
                now=int(self._clock()),
                stale_after_sec=self._stale_processing_after_sec,
                claim_id=claim_id,
            )
            if not claimed:
                raise ConcurrentProcessingRejected(
                    f"asset {asset_id} is already processing", asset_id=asset_id
                )
            logger.info(
                "processing: asset_id=%s start claim=%s qualities=%s segment_duration=%s",
                asset_id, claim_id, [q.label for q in config.qualities], config.segment_duration,
            )
            progress = _ProgressReporter(self._asset_store, asset_id, claim_id, self._clock)
            try:
                result = self._run(asset, config, progress)
                self._asset_store.save_status(
                    asset_id,
                    AssetStatus.READY,
                    100,
                    master_manifest_url=result.master_manifest_url,
                    thumbnail_url=result.thumbnail_url,
                    clear_thumbnail_url=result.thumbnail_url is None,
                    claim_id=claim_id,
                )
            except ConcurrentProcessingRejected:
                logger.warning(
                    "processing: asset_id=%s claim=%s taken over by another run, abandoning",
                    asset_id, claim_id,
                )
                raise
            except Exception as e:
                kind = getattr(e, "kind", type(e).__name__)
                logger.error("processing: asset_id=%s failed (%s): %s", asset_id, kind, e)
                self._record_failure(asset_id, claim_id, str(e) or type(e).__name__)
                raise
            except BaseException:
                logger.error("processing: asset_id=%s interrupted", asset_id)
                self._record_failure(asset_id, claim_id, INTERRUPTED_MESSAGE)
                raise
            logger.info(
                "processing: asset_id=%s ready master=%s", asset_id, result.master_manifest_url
            )
            return result

    def _record_failure(self, asset_id: str, claim_id: str, message: str) -> None:
        try:
            self._asset_store.save_status(
                asset_id, AssetStatus.ERROR, error_message=message, claim_id=claim_id
            )
        except ConcurrentProcessingRejected:
            logger.warning(
                "processing: asset_id=%s error status not recorded, claim taken over", asset_id
            )
        except Exception:
            logger.exception("processing: asset_id=%s could not record error status", asset_id)

    def _fetch_source(self, asset: MediaAsset, staging: Path) -> str:
        uri = asset.source_uri
        if uri.startswith("s3://"):
            parsed = _parse_s3_uri(uri)
            if parsed is None:
                raise SourceUnreadable(f"invalid source uri: {uri}", asset_id=asset.asset_id)
            bucket, key = parsed
            local = staging / ("source" + (PurePosixPath(key).suffix or ".mp4"))
            try:
                self._object_store.download_file(bucket, key, str(local))
            except FileNotFoundError as e:
                raise SourceUnreadable(
                    f"source object not found: {uri}", asset_id=asset.asset_id
                ) from e
            return str(local)
        path = Path(uri)
        if not path.is_file():
            raise SourceUnreadable(f"source file not found: {uri}", asset_id=asset.asset_id)
        return str(path)

    def _ensure_public_read_policy(self) -> None:
        if not self._apply_public_read_policy or self._policy_applied:
            return
        self._publisher.set_public_read_policy()
        self._policy_applied = True

    def _run(
        self, asset: MediaAsset, config: ProcessingConfig, progress: _ProgressReporter
    ) -> ProcessResult:
        asset_id = asset.asset_id
        key_prefix = self._publisher.key_prefix
        if self._staging_dir:
            Path(self._staging_dir).mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix=f"aristo-{asset_id}-", dir=self._staging_dir) as tmp:
            staging = Path(tmp)
            source_path = self._fetch_source(asset, staging)
            progress.report(PROGRESS_SOURCE_FETCHED)

            info = probe_source(
                source_path,
                ffprobe_path=self._ffprobe_path,
                timeout_sec=self._probe_timeout_sec,
                asset_id=asset_id,
            )
            progress.report(PROGRESS_PROBED)
            logger.info(
                "processing: asset_id=%s source duration=%.3f size=%sx%s planned_segments=%s",
                asset_id, info.duration, info.width, info.height,
                len(plan_segment_durations(info.duration, config.segment_duration)),
            )

            encode_span = PROGRESS_ENCODE_END - PROGRESS_ENCODE_START
            encoded = encode_variants(
                source_path,
                config,
                staging / "hls",
                asset_id=asset_id,
                key_prefix=key_prefix,
                source_duration=info.duration,
                has_audio=info.has_audio,
                max_parallel=self._max_parallel_encodes,
                ffmpeg_path=self._ffmpeg_path,
                on_progress=lambda f: progress.report(PROGRESS_ENCODE_START + encode_span * f),
            )
            progress.report(PROGRESS_ENCODE_END)

            thumbnail_path: str | None = None
            thumbnail_key: str | None = None
            if config.generate_thumbnail:
                try:
                    thumbnail_path = generate_thumbnail(
                        source_path,
                        staging / "thumbnail.jpg",
                        timestamp=config.thumbnail_timestamp,
                        duration=info.duration,
                        ffmpeg_path=self._ffmpeg_path,
                        timeout_sec=self._thumbnail_timeout_sec,
                    )
                    thumbnail_key = build_thumbnail_key(asset_id, key_prefix)
                except ThumbnailError as e:
                    logger.warning("processing: asset_id=%s thumbnail skipped: %s", asset_id, e)
            progress.report(PROGRESS_THUMBNAIL)

            index = RenditionIndex(
                asset_id=asset_id,
                key_prefix=key_prefix,
                segment_duration=config.segment_duration,
                variants=[e.variant for e in encoded],
            )
            master_text, variant_texts = build_manifests(
                index, base_url=self._publisher.public_base_url or None
            )
            segment_files: dict[str, str] = {}
            for e in encoded:
                segment_files.update(e.segment_files)
            package = PackagedAsset(
                index=index,
                master_text=master_text,
                variant_texts=variant_texts,
                segment_files=segment_files,
                thumbnail_path=thumbnail_path,
                thumbnail_key=thumbnail_key,
            )
            progress.report(PROGRESS_MANIFESTS, force=True)

            self._ensure_public_read_policy()
            master_url = self._publisher.publish(
                asset_id, package, timeout_sec=config.publish_timeout_sec
            )
            progress.report(PROGRESS_PUBLISHED, force=True)
            try:
                self._publisher.prune_stale_objects(asset_id, package.keys())
            except ProcessingError as e:
                logger.warning("processing: asset_id=%s stale object pruning skipped: %s", asset_id, e)

        thumbnail_url = self._publisher.url_for(thumbnail_key) if thumbnail_key else None
        return ProcessResult(master_manifest_url=master_url, thumbnail_url=thumbnail_url)
