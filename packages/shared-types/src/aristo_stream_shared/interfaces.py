"""
Cloud-agnostic interfaces for the asset store, object store, and queues.

Implementations (e.g. AWS via DynamoDB, S3, SQS) live in separate packages
(aws-adapters). Pipeline logic depends on these interfaces and receives the
implementation by config; tests use in-memory fakes.
"""

from typing import Protocol, runtime_checkable

from .models import AssetStatus, MediaAsset


@runtime_checkable
class AssetStore(Protocol):
    """Store for media asset records (get, put, status updates, processing claim)."""

    def get(self, asset_id: str, *, consistent_read: bool = False) -> MediaAsset | None:
        """Return the asset if it exists, otherwise None."""
        ...

    def put(self, asset: MediaAsset) -> None:
        """Create or overwrite an asset record."""
        ...

    def save_status(
        self,
        asset_id: str,
        status: AssetStatus,
        progress: int | None = None,
        *,
        error_message: str | None = None,
        master_manifest_url: str | None = None,
        thumbnail_url: str | None = None,
        clear_thumbnail_url: bool = False,
        claim_id: str | None = None,
        heartbeat_at: int | None = None,
    ) -> None:
        """
        Persist status and optional fields. None leaves a field unchanged;
        clear_thumbnail_url removes a previous thumbnail reference.

        With claim_id the write only applies while that run still holds the
        processing claim, otherwise ConcurrentProcessingRejected is raised.
        heartbeat_at refreshes processing_started_at. Raises AssetNotFound
        for a missing record and StoreUnavailable if the store cannot be
        reached.
        """
        ...

    def try_begin_processing(
        self,
        asset_id: str,
        *,
        now: int,
        stale_after_sec: int | None = None,
        claim_id: str | None = None,
    ) -> bool:
        """
        Atomically move the asset to processing (progress 0, error cleared,
        processing_started_at=now, processing_claim_id=claim_id). Returns
        False when the asset is already processing and its claim is younger
        than stale_after_sec (or when stale_after_sec is None). Returns False
        if the asset does not exist.
        """
        ...


@runtime_checkable
class ObjectStore(Protocol):
    """Object storage: put/get objects with content metadata, list, delete, bucket policy."""

    def put_object(
        self,
        bucket: str,
        key: str,
        body: bytes,
        *,
        content_type: str,
        cache_control: str | None = None,
    ) -> None:
        """Write bytes to bucket/key, overwriting any existing object."""
        ...

    def put_file(
        self,
        bucket: str,
        key: str,
        path: str,
        *,
        content_type: str,
        cache_control: str | None = None,
    ) -> None:
        """Upload a local file to bucket/key. May use multipart for large files."""
        ...

    def download(self, bucket: str, key: str) -> bytes:
        """Return the object body. Raises FileNotFoundError if the key does not exist."""
        ...

    def download_file(self, bucket: str, key: str, path: str) -> None:
        """Download bucket/key to a local path. Raises FileNotFoundError if missing."""
        ...

    def exists(self, bucket: str, key: str) -> bool:
        """Return True if the object exists, False otherwise."""
        ...

    def list_object_keys(self, bucket: str, prefix: str) -> list[str]:
        """Return all keys under prefix, sorted."""
        ...

    def delete(self, bucket: str, key: str) -> None:
        """Delete one object. Deleting a missing key is not an error."""
        ...

    def get_bucket_policy(self, bucket: str) -> str | None:
        """Return the bucket policy JSON, or None when the bucket has no policy."""
        ...

    def set_bucket_policy(self, bucket: str, policy_json: str) -> None:
        """Replace the bucket policy."""
        ...


class QueueMessage:
    """A message received from a queue (body + receipt handle for delete)."""

    def __init__(self, receipt_handle: str, body: str | bytes) -> None:
        self.receipt_handle = receipt_handle
        self.body = body


@runtime_checkable
class QueueSender(Protocol):
    """Send messages to a queue."""

    def send(self, body: str | bytes) -> None:
        """Send one message with the given body."""
        ...


@runtime_checkable
class QueueReceiver(Protocol):
    """Receive and delete messages from a queue."""

    def receive(self, max_messages: int = 1) -> list[QueueMessage]:
        """Receive up to max_messages. Returns empty list if none available."""
        ...

    def delete(self, receipt_handle: str) -> None:
        """Delete a message by its receipt handle after successful processing."""
        ...
