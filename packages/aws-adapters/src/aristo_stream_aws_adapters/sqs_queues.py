"""SQS implementations of QueueSender and QueueReceiver (processing queue)."""

import base64

import boto3
from aristo_stream_shared.interfaces import QueueMessage

# SQS caps a single receive at 10 messages
_MAX_RECEIVE = 10


def _encode_body(body: str | bytes) -> str:
    """Encode body for SQS (SQS MessageBody must be string)."""
    if isinstance(body, bytes):
        return base64.b64encode(body).decode("ascii")
    return body


class SQSQueueSender:
    """QueueSender implementation using SQS."""

    def __init__(
        self,
        queue_url: str,
        *,
        region_name: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self._queue_url = queue_url
        self._client = boto3.client(
            "sqs",
            region_name=region_name,
            endpoint_url=endpoint_url,
        )

    def send(self, body: str | bytes) -> None:
        """Send one message with the given body."""
        self._client.send_message(
            QueueUrl=self._queue_url,
            MessageBody=_encode_body(body),
        )


class SQSQueueReceiver:
    """QueueReceiver implementation using SQS long polling."""

    def __init__(
        self,
        queue_url: str,
        *,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        wait_time_seconds: int = 0,
        visibility_timeout: int | None = None,
    ) -> None:
        self._queue_url = queue_url
        self._wait_time_seconds = wait_time_seconds
        self._visibility_timeout = visibility_timeout
        self._client = boto3.client(
            "sqs",
            region_name=region_name,
            endpoint_url=endpoint_url,
        )

    def receive(self, max_messages: int = 1) -> list[QueueMessage]:
        """Receive up to max_messages. Returns empty list if none available."""
        params = {
            "QueueUrl": self._queue_url,
            "MaxNumberOfMessages": max(1, min(max_messages, _MAX_RECEIVE)),
            "WaitTimeSeconds": self._wait_time_seconds,
        }
        if self._visibility_timeout is not None:
            params["VisibilityTimeout"] = self._visibility_timeout
        resp = self._client.receive_message(**params)
        return [
            QueueMessage(receipt_handle=msg["ReceiptHandle"], body=msg["Body"])
            for msg in resp.get("Messages") or []
        ]

    def delete(self, receipt_handle: str) -> None:
        """Delete a message by its receipt handle after successful processing."""
        self._client.delete_message(
            QueueUrl=self._queue_url,
            ReceiptHandle=receipt_handle,
        )
