"""
Processing loop: receive asset_id from the processing queue, run the orchestrator,
delete the message when the asset reached a terminal state.
"""

from __future__ import annotations

import json
import logging
import time

from aristo_stream_shared import ProcessAssetPayload, ProcessingConfig, ProcessingError
from aristo_stream_shared.interfaces import QueueReceiver
from pydantic import ValidationError

from .orchestrator import ProcessingOrchestrator

logger = logging.getLogger(__name__)


def _parse_processing_body(body: str | bytes) -> ProcessAssetPayload | None:
    """Parse queue message body as ProcessAssetPayload (JSON with asset_id, optional config)."""
    try:
        raw = body.decode() if isinstance(body, bytes) else body
        return ProcessAssetPayload.model_validate_json(raw)
    except (UnicodeDecodeError, ValidationError):
        return None


def _asset_id_from_body(body: str | bytes) -> str:
    """Extract asset_id for logging; return '?' if not parseable."""
    try:
        raw = body.decode() if isinstance(body, bytes) else body
        data = json.loads(raw)
        return str(data.get("asset_id") or "?") if isinstance(data, dict) else "?"
    except (UnicodeDecodeError, json.JSONDecodeError):
        return "?"


_INHERITED_DEADLINES = ("encode_timeout_sec", "publish_timeout_sec")


def _effective_config(
    override: ProcessingConfig | None, default_config: ProcessingConfig
) -> ProcessingConfig:
    """Message config with deadlines it leaves unset taken from the worker default."""
    if override is None:
        return default_config
    inherited = {
        name: getattr(default_config, name)
        for name in _INHERITED_DEADLINES
        if getattr(override, name) is None
    }
    return override.model_copy(update=inherited) if inherited else override


def process_one_processing_message(
    payload_str: str | bytes,
    orchestrator: ProcessingOrchestrator,
    default_config: ProcessingConfig,
) -> bool:
    """
    Process a single processing queue message.

    Returns True if the message should be deleted: the asset is ready, or it
    failed with a non-retryable error (already recorded as status=error, or a
    duplicate delivery of an asset that is being processed). Returns False for
    an invalid body. Retryable errors (e.g. StoreUnavailable) are re-raised so
    the message becomes visible again after the visibility timeout.
    """
    payload = _parse_processing_body(payload_str)
    if payload is None:
        logger.warning(
            "processing: asset_id=%s invalid message body", _asset_id_from_body(payload_str)
        )
        return False
    asset_id = payload.asset_id
    config = _effective_config(payload.config, default_config)
    try:
        result = orchestrator.process_asset(asset_id, config)
    except ProcessingError as e:
        if e.retryable:
            raise
        logger.warning(
            "processing: asset_id=%s dropped message (%s): %s", asset_id, e.kind, e
        )
        return True
    logger.info(
        "processing: asset_id=%s message done master=%s", asset_id, result.master_manifest_url
    )
    return True


def run_processing_loop(
    receiver: QueueReceiver,
    orchestrator: ProcessingOrchestrator,
    default_config: ProcessingConfig,
    *,
    poll_interval_sec: float = 5.0,
) -> None:
    """
    Long-running loop: receive messages from the processing queue, process each,
    delete on success.
    """
    logger.info("processing loop started")
    while True:
        messages = receiver.receive(max_messages=1)
        if messages:
            logger.debug("processing: received %s message(s)", len(messages))
        for msg in messages:
            body = msg.body
            try:
                ok = process_one_processing_message(body, orchestrator, default_config)
                if ok:
                    receiver.delete(msg.receipt_handle)
            except Exception as e:
                logger.exception(
                    "processing: asset_id=%s failed to process message: %s",
                    _asset_id_from_body(body),
                    e,
                )
                # Message will become visible again after visibility timeout
        if not messages:
            time.sleep(poll_interval_sec)
