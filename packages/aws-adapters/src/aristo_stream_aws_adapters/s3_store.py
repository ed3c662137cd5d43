"""S3 implementation of ObjectStore."""

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import boto3
from aristo_stream_shared import PermissionDenied, StoreUnavailable
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

# Minimum S3 multipart part size (except last) is 5 MB
MULTIPART_CHUNK_SIZE = 8 * 1024 * 1024  # 8 MB
MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100 MB: use multipart above this

_PERMISSION_CODES = frozenset(
    {
        "AccessDenied",
        "403",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "AllAccessDisabled",
        "ExpiredToken",
    }
)
_MISSING_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


@contextmanager
def _translate_errors(action: str, bucket: str, key: str = "") -> Iterator[None]:
    """Map botocore failures onto the pipeline's PermissionDenied / StoreUnavailable."""
    target = f"s3://{bucket}/{key}" if key else f"s3://{bucket}"
    try:
        yield
    except ClientError as e:
        code = _error_code(e)
        if code in _PERMISSION_CODES:
            raise PermissionDenied(f"{action} {target}: access denied ({code})") from e
        raise StoreUnavailable(f"{action} {target} failed: {code or e}") from e
    except NoCredentialsError as e:
        raise PermissionDenied(f"{action} {target}: no AWS credentials") from e
    except BotoCoreError as e:
        raise StoreUnavailable(f"{action} {target} failed: {e}") from e


def _object_metadata(content_type: str, cache_control: str | None) -> dict[str, str]:
    params = {"ContentType": content_type}
    if cache_control:
        params["CacheControl"] = cache_control
    return params


class S3ObjectStore:
    """ObjectStore implementation using S3 (or an S3-compatible endpoint such as MinIO)."""

    def __init__(
        self,
        *,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        connect_timeout: float = 10,
        read_timeout: float = 60,
        max_attempts: int = 3,
    ) -> None:
        self._client = boto3.client(
            "s3",
            region_name=region_name,
            endpoint_url=endpoint_url,
            config=Config(
                connect_timeout=connect_timeout,
                read_timeout=read_timeout,
                retries={"max_attempts": max_attempts, "mode": "standard"},
            ),
        )

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
        with _translate_errors("put", bucket, key):
            self._client.put_object(
                Bucket=bucket, Key=key, Body=body, **_object_metadata(content_type, cache_control)
            )

    def put_file(
        self,
        bucket: str,
        key: str,
        path: str,
        *,
        content_type: str,
        cache_control: str | None = None,
    ) -> None:
        """Upload a file from local path; uses multipart for files over 100 MB."""
        metadata = _object_metadata(content_type, cache_control)
        file_size = os.path.getsize(path)
        with _translate_errors("put", bucket, key):
            if file_size >= MULTIPART_THRESHOLD:
                self._upload_multipart(bucket, key, path, metadata)
            else:
                with open(path, "rb") as f:
                    self._client.put_object(Bucket=bucket, Key=key, Body=f, **metadata)

    def _upload_multipart(
        self, bucket: str, key: str, path: str, metadata: dict[str, str]
    ) -> None:
        """Upload using S3 multipart API for large files."""
        resp = self._client.create_multipart_upload(Bucket=bucket, Key=key, **metadata)
        upload_id = resp["UploadId"]
        parts: list[dict[str, Any]] = []
        try:
            with open(path, "rb") as f:
                part_number = 1
                while True:
                    chunk = f.read(MULTIPART_CHUNK_SIZE)
                    if not chunk:
                        break
                    part_resp = self._client.upload_part(
                        Bucket=bucket,
                        Key=key,
                        UploadId=upload_id,
                        PartNumber=part_number,
                        Body=chunk,
                    )
                    parts.append({"ETag": part_resp["ETag"], "PartNumber": part_number})
                    part_number += 1
            self._client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except Exception:
            self._client.abort_multipart_upload(
                Bucket=bucket, Key=key, UploadId=upload_id
            )
            raise

    def download(self, bucket: str, key: str) -> bytes:
        """Download object from bucket/key. Raises FileNotFoundError if the key does not exist."""
        with _translate_errors("get", bucket, key):
            try:
                resp = self._client.get_object(Bucket=bucket, Key=key)
            except ClientError as e:
                if _error_code(e) in _MISSING_CODES:
                    raise FileNotFoundError(f"s3://{bucket}/{key}") from e
                raise
            return resp["Body"].read()

    def download_file(self, bucket: str, key: str, path: str) -> None:
        """Download bucket/key to a local path. Raises FileNotFoundError if missing."""
        with _translate_errors("get", bucket, key):
            try:
                self._client.download_file(bucket, key, path)
            except ClientError as e:
                if _error_code(e) in _MISSING_CODES:
                    raise FileNotFoundError(f"s3://{bucket}/{key}") from e
                raise

    def exists(self, bucket: str, key: str) -> bool:
        """Return True if the object exists, False otherwise."""
        with _translate_errors("head", bucket, key):
            try:
                self._client.head_object(Bucket=bucket, Key=key)
                return True
            except ClientError as e:
                if _error_code(e) in _MISSING_CODES:
                    return False
                raise

    def list_object_keys(self, bucket: str, prefix: str) -> list[str]:
        """Return all keys under prefix, sorted."""
        keys: list[str] = []
        with _translate_errors("list", bucket, prefix):
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return sorted(keys)

    def delete(self, bucket: str, key: str) -> None:
        """Delete one object. S3 treats deleting a missing key as success."""
        with _translate_errors("delete", bucket, key):
            self._client.delete_object(Bucket=bucket, Key=key)

    def get_bucket_policy(self, bucket: str) -> str | None:
        """Return the bucket policy JSON, or None when the bucket has no policy."""
        with _translate_errors("get policy", bucket):
            try:
                resp = self._client.get_bucket_policy(Bucket=bucket)
            except ClientError as e:
                if _error_code(e) == "NoSuchBucketPolicy":
                    return None
                raise
            return resp["Policy"]

    def set_bucket_policy(self, bucket: str, policy_json: str) -> None:
        """Replace the bucket policy."""
        with _translate_errors("put policy", bucket):
            self._client.put_bucket_policy(Bucket=bucket, Policy=policy_json)
