"""
Object store publisher: uploads a packaged asset so readers never see a
master playlist that points at missing objects.

Upload order: segments, rendition index, thumbnail, variant playlists, and
the master playlist last. Every object carries its content type and the
configured Cache-Control. Re-publishing overwrites the same keys.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import PurePosixPath

from aristo_stream_shared import (
    DEFAULT_KEY_PREFIX,
    MANIFEST_CONTENT_TYPE,
    ProcessingError,
    RenditionIndex,
    StoreUnavailable,
    StoredObject,
    asset_hls_prefix,
    asset_thumbnail_prefix,
    build_master_key,
    build_rendition_index_key,
    resolve_url,
)
from aristo_stream_shared.interfaces import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_CACHE_CONTROL = "public, max-age=3600"
CONTENT_TYPES = {
    ".m3u8": MANIFEST_CONTENT_TYPE,
    ".ts": "video/MP2T",
    ".jpg": "image/jpeg",
    ".json": "application/json",
}
POLICY_VERSION = "2012-10-17"


def content_type_for_key(key: str) -> str:
    return CONTENT_TYPES.get(PurePosixPath(key).suffix.lower(), "application/octet-stream")


@dataclass
class PackagedAsset:
    """Everything the publisher uploads for one asset."""

    index: RenditionIndex
    master_text: str
    variant_texts: dict[str, str]  # variant playlist key -> playlist text
    segment_files: dict[str, str]  # segment key -> local path
    thumbnail_path: str | None = None
    thumbnail_key: str | None = None

    @property
    def master_key(self) -> str:
        return build_master_key(self.index.asset_id, self.index.key_prefix)

    @property
    def index_key(self) -> str:
        return build_rendition_index_key(self.index.asset_id, self.index.key_prefix)

    def keys(self) -> set[str]:
        """All object keys this package writes."""
        keys = {self.master_key, self.index_key, *self.variant_texts, *self.segment_files}
        if self.thumbnail_key and self.thumbnail_path:
            keys.add(self.thumbnail_key)
        return keys


class Publisher:
    """Uploads HLS trees for one bucket/prefix and manages its public-read policy."""

    def __init__(
        self,
        store: ObjectStore,
        bucket: str,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        public_base_url: str = "",
        cache_control: str | None = DEFAULT_CACHE_CONTROL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._bucket = bucket
        self._key_prefix = key_prefix
        self._public_base_url = public_base_url.rstrip("/")
        self._cache_control = cache_control
        self._clock = clock

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def key_prefix(self) -> str:
        return self._key_prefix

    @property
    def public_base_url(self) -> str:
        return self._public_base_url

    def url_for(self, key: str) -> str:
        """Public reference for key (absolute under the base URL, else the bare key)."""
        return resolve_url(self._public_base_url, key)

    # --- uploads ---

    def _check_deadline(self, deadline: float | None, asset_id: str, written: int) -> None:
        if deadline is not None and self._clock() > deadline:
            raise StoreUnavailable(
                f"publish deadline exceeded after {written} objects", asset_id=asset_id
            )

    def _put_bytes(self, key: str, body: bytes) -> StoredObject:
        content_type = content_type_for_key(key)
        self._store.put_object(
            self._bucket, key, body, content_type=content_type, cache_control=self._cache_control
        )
        return StoredObject(
            bucket=self._bucket, key=key, content_type=content_type, cache_control=self._cache_control
        )

    def _put_path(self, key: str, path: str) -> StoredObject:
        content_type = content_type_for_key(key)
        self._store.put_file(
            self._bucket, key, path, content_type=content_type, cache_control=self._cache_control
        )
        return StoredObject(
            bucket=self._bucket, key=key, content_type=content_type, cache_control=self._cache_control
        )

    def _check_namespace(self, asset_id: str, keys: Iterable[str]) -> None:
        hls_prefix = asset_hls_prefix(asset_id, self._key_prefix)
        thumb_prefix = asset_thumbnail_prefix(asset_id, self._key_prefix)
        outside = sorted(
            k for k in keys if not (k.startswith(hls_prefix) or k.startswith(thumb_prefix))
        )
        if outside:
            raise ValueError(f"keys outside the namespace of asset {asset_id}: {outside}")

    def publish_manifests(
        self,
        asset_id: str,
        master_text: str,
        variant_texts: dict[str, str],
        *,
        deadline: float | None = None,
    ) -> list[StoredObject]:
        """Upload variant playlists (sorted by key), then the master playlist."""
        master_key = build_master_key(asset_id, self._key_prefix)
        self._check_namespace(asset_id, [master_key, *variant_texts])
        written: list[StoredObject] = []
        for key in sorted(variant_texts):
            self._check_deadline(deadline, asset_id, len(written))
            written.append(self._put_bytes(key, variant_texts[key].encode("utf-8")))
        self._check_deadline(deadline, asset_id, len(written))
        written.append(self._put_bytes(master_key, master_text.encode("utf-8")))
        return written

    def publish(
        self,
        asset_id: str,
        package: PackagedAsset,
        *,
        timeout_sec: float | None = None,
    ) -> str:
        """
        Upload the whole package, master playlist last, and return the master URL.

        Raises ValueError if any key lies outside the asset's namespace, and
        StoreUnavailable when timeout_sec elapses before the master is written.
        Store errors propagate unchanged.
        """
        if package.index.asset_id != asset_id or package.index.key_prefix != self._key_prefix:
            raise ValueError(
                f"package for {package.index.asset_id!r} (prefix {package.index.key_prefix!r}) "
                f"cannot be published as {asset_id!r} under {self._key_prefix!r}"
            )
        self._check_namespace(asset_id, package.keys())
        deadline = self._clock() + timeout_sec if timeout_sec else None
        written: list[StoredObject] = []

        for key in sorted(package.segment_files):
            self._check_deadline(deadline, asset_id, len(written))
            written.append(self._put_path(key, package.segment_files[key]))
        logger.info(
            "publish: asset_id=%s segments uploaded count=%s", asset_id, len(written)
        )

        self._check_deadline(deadline, asset_id, len(written))
        written.append(
            self._put_bytes(package.index_key, package.index.model_dump_json(indent=2).encode("utf-8"))
        )
        if package.thumbnail_path and package.thumbnail_key:
            self._check_deadline(deadline, asset_id, len(written))
            written.append(self._put_path(package.thumbnail_key, package.thumbnail_path))

        written.extend(
            self.publish_manifests(
                asset_id, package.master_text, package.variant_texts, deadline=deadline
            )
        )
        master_url = self.url_for(package.master_key)
        logger.info(
            "publish: asset_id=%s complete objects=%s master=%s", asset_id, len(written), master_url
        )
        return master_url

    def prune_stale_objects(self, asset_id: str, keep_keys: Iterable[str]) -> list[str]:
        """
        Delete objects under the asset's HLS prefix that keep_keys does not list
        (e.g. a dropped quality or trailing segments of a longer earlier encode).
        Individual delete failures are logged and skipped. Returns deleted keys.
        """
        keep = set(keep_keys)
        prefix = asset_hls_prefix(asset_id, self._key_prefix)
        stale = [k for k in self._store.list_object_keys(self._bucket, prefix) if k not in keep]
        deleted: list[str] = []
        for key in stale:
            try:
                self._store.delete(self._bucket, key)
                deleted.append(key)
            except ProcessingError as e:
                logger.warning(
                    "publish: asset_id=%s failed to delete stale key=%s: %s", asset_id, key, e
                )
        if deleted:
            logger.info("publish: asset_id=%s pruned stale objects count=%s", asset_id, len(deleted))
        return deleted

    # --- bucket policy ---

    def public_read_statement(self, prefix: str | None = None) -> dict:
        """Bucket policy statement granting anonymous s3:GetObject under prefix."""
        prefix = (self._key_prefix if prefix is None else prefix).strip("/")
        resource = (
            f"arn:aws:s3:::{self._bucket}/{prefix}/*" if prefix else f"arn:aws:s3:::{self._bucket}/*"
        )
        suffix = "".join(ch for ch in prefix.title() if ch.isalnum()) or "All"
        return {
            "Sid": f"PublicRead{suffix}",
            "Effect": "Allow",
            "Principal": {"AWS": ["*"]},
            "Action": ["s3:GetObject"],
            "Resource": [resource],
        }

    def set_public_read_policy(self, prefix: str | None = None) -> bool:
        """
        Ensure the bucket policy grants public read under prefix (default: key_prefix).

        Other statements are preserved; a statement with the same Sid is replaced.
        Writes only when the document changes. Returns True if the policy was written.
        """
        statement = self.public_read_statement(prefix)
        current = self._store.get_bucket_policy(self._bucket)
        document = json.loads(current) if current else {"Version": POLICY_VERSION, "Statement": []}
        statements = document.get("Statement") or []
        if isinstance(statements, dict):
            statements = [statements]
        if statement in statements:
            logger.debug("publish: bucket=%s policy already grants %s", self._bucket, statement["Sid"])
            return False
        document["Statement"] = [s for s in statements if s.get("Sid") != statement["Sid"]] + [
            statement
        ]
        document.setdefault("Version", POLICY_VERSION)
        self._store.set_bucket_policy(self._bucket, json.dumps(document))
        logger.info(
            "publish: bucket=%s public read policy set (sid=%s resource=%s)",
            self._bucket, statement["Sid"], statement["Resource"][0],
        )
        return True
