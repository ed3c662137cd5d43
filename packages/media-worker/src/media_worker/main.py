"""
Entrypoint for the media worker. Wires AWS adapters from env and runs the
processing loop (one process, one queue; encodes run in a thread pool).
"""

import logging

from aristo_stream_aws_adapters import (
    asset_store_from_env,
    object_store_from_env,
    processing_queue_receiver_from_env,
)
from aristo_stream_shared import configure_logging
from aristo_stream_shared.interfaces import AssetStore, ObjectStore

from .config import MediaWorkerSettings, get_settings
from .orchestrator import ProcessingOrchestrator
from .processing import run_processing_loop
from .publisher import Publisher

configure_logging()


def build_publisher(settings: MediaWorkerSettings, object_store: ObjectStore) -> Publisher:
    return Publisher(
        object_store,
        settings.media_bucket_name,
        key_prefix=settings.key_prefix,
        public_base_url=settings.public_base_url,
        cache_control=settings.cache_control or None,
    )


def build_orchestrator(
    settings: MediaWorkerSettings,
    asset_store: AssetStore,
    object_store: ObjectStore,
    publisher: Publisher,
) -> ProcessingOrchestrator:
    return ProcessingOrchestrator(
        asset_store,
        object_store,
        publisher,
        max_parallel_encodes=settings.max_parallel_encodes,
        staging_dir=settings.staging_dir or None,
        stale_processing_after_sec=settings.stale_processing_after_sec,
        apply_public_read_policy=settings.apply_public_read_policy,
        ffmpeg_path=settings.ffmpeg_path,
        ffprobe_path=settings.ffprobe_path,
        probe_timeout_sec=settings.probe_timeout_sec,
    )


def main() -> None:
    logger = logging.getLogger(__name__)
    settings = get_settings()
    default_config = settings.processing_config()
    logger.info(
        "media-worker starting (processing); bucket=%s prefix=%s qualities=%s "
        "segment_duration=%s max_parallel_encodes=%s public_base_url=%s",
        settings.media_bucket_name,
        settings.key_prefix,
        settings.quality_labels,
        settings.segment_duration_sec,
        settings.max_parallel_encodes,
        settings.public_base_url or "(relative)",
    )
    asset_store = asset_store_from_env()
    object_store = object_store_from_env()
    publisher = build_publisher(settings, object_store)
    orchestrator = build_orchestrator(settings, asset_store, object_store, publisher)
    receiver = processing_queue_receiver_from_env()
    run_processing_loop(receiver, orchestrator, default_config)


if __name__ == "__main__":
    main()
