"""
Build AWS adapter instances from environment variables.

Deployment passes resource names (table, queue URL) into the process
as env vars. Set these before constructing adapters so resource names are not
hardcoded.

Required env vars (per adapter):
- ASSETS_TABLE_NAME (asset_store_from_env)
- PROCESSING_QUEUE_URL (processing_queue_receiver_from_env / _sender_from_env)

Optional:
- AWS_REGION (default: boto3's own resolution)
- AWS_ENDPOINT_URL (e.g. MinIO or LocalStack)
- SQS_LONG_POLL_WAIT_SECONDS (default: 20, max 20) for receive long polling
- SQS_VISIBILITY_TIMEOUT_SEC: per-receive visibility timeout; unset keeps the queue default
- S3_CONNECT_TIMEOUT_SEC (default: 10), S3_READ_TIMEOUT_SEC (default: 60)
"""

import os

from .dynamodb_stores import DynamoDBAssetStore
from .s3_store import S3ObjectStore
from .sqs_queues import SQSQueueReceiver, SQSQueueSender


def _sqs_wait_time_seconds() -> int:
    """Long-poll wait time for SQS receive (0-20). Default 20 for responsive pickup."""
    val = os.environ.get("SQS_LONG_POLL_WAIT_SECONDS", "20")
    return min(20, max(0, int(val)))


def _sqs_visibility_timeout() -> int | None:
    val = os.environ.get("SQS_VISIBILITY_TIMEOUT_SEC")
    return int(val) if val else None


def _get_region() -> str | None:
    return os.environ.get("AWS_REGION") or None


def _get_endpoint_url() -> str | None:
    return os.environ.get("AWS_ENDPOINT_URL") or None


def asset_store_from_env() -> DynamoDBAssetStore:
    """Build DynamoDBAssetStore from ASSETS_TABLE_NAME."""
    table_name = os.environ["ASSETS_TABLE_NAME"]
    return DynamoDBAssetStore(
        table_name,
        region_name=_get_region(),
        endpoint_url=_get_endpoint_url(),
    )


def object_store_from_env() -> S3ObjectStore:
    """Build S3ObjectStore with region, endpoint and timeouts from env."""
    return S3ObjectStore(
        region_name=_get_region(),
        endpoint_url=_get_endpoint_url(),
        connect_timeout=float(os.environ.get("S3_CONNECT_TIMEOUT_SEC", "10")),
        read_timeout=float(os.environ.get("S3_READ_TIMEOUT_SEC", "60")),
    )


def processing_queue_sender_from_env() -> SQSQueueSender:
    """Build SQSQueueSender for the processing queue from PROCESSING_QUEUE_URL."""
    url = os.environ["PROCESSING_QUEUE_URL"]
    return SQSQueueSender(
        url,
        region_name=_get_region(),
        endpoint_url=_get_endpoint_url(),
    )


def processing_queue_receiver_from_env() -> SQSQueueReceiver:
    """Build SQSQueueReceiver for the processing queue from PROCESSING_QUEUE_URL."""
    url = os.environ["PROCESSING_QUEUE_URL"]
    return SQSQueueReceiver(
        url,
        region_name=_get_region(),
        endpoint_url=_get_endpoint_url(),
        wait_time_seconds=_sqs_wait_time_seconds(),
        visibility_timeout=_sqs_visibility_timeout(),
    )
