"""
Error taxonomy for the processing pipeline.

Every stage raises a ProcessingError subclass. `kind` is a stable string for
logs and the operator CLI; `retryable` tells the queue worker whether the
message should go back to the queue or be dropped.
"""


class ProcessingError(Exception):
    """Base class for pipeline failures."""

    kind = "processing_error"
    retryable = False

    def __init__(self, message: str, *, asset_id: str | None = None) -> None:
        super().__init__(message)
        self.asset_id = asset_id


class SourceUnreadable(ProcessingError):
    """The original upload is missing, unreadable, or not a video ffprobe understands."""

    kind = "source_unreadable"


class VariantEncodeFailed(ProcessingError):
    """ffmpeg failed (or timed out) for one quality of the ladder."""

    kind = "variant_encode_failed"

    def __init__(
        self, message: str, *, label: str, asset_id: str | None = None
    ) -> None:
        super().__init__(message, asset_id=asset_id)
        self.label = label


class StoreUnavailable(ProcessingError):
    """Object store or asset store could not be reached, or the publish deadline passed."""

    kind = "store_unavailable"
    retryable = True


class PermissionDenied(ProcessingError):
    """Credentials were rejected by the object store."""

    kind = "permission_denied"


class ConcurrentProcessingRejected(ProcessingError):
    """The asset is already being processed."""

    kind = "concurrent_processing_rejected"


class AssetNotFound(ProcessingError):
    """No asset record (or rendition index) exists for the id."""

    kind = "asset_not_found"
