"""AWS implementations of aristo-stream cloud interfaces."""

from .dynamodb_stores import DynamoDBAssetStore
from .env_config import (
    asset_store_from_env,
    object_store_from_env,
    processing_queue_receiver_from_env,
    processing_queue_sender_from_env,
)
from .s3_store import S3ObjectStore
from .sqs_queues import SQSQueueReceiver, SQSQueueSender

__all__ = [
    "DynamoDBAssetStore",
    "S3ObjectStore",
    "SQSQueueReceiver",
    "SQSQueueSender",
    "asset_store_from_env",
    "object_store_from_env",
    "processing_queue_receiver_from_env",
    "processing_queue_sender_from_env",
]
