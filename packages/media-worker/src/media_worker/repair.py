"""
Manifest repair: regenerate and re-upload an asset's manifests from its
rendition index, e.g. after PUBLIC_BASE_URL changed. Segments are not touched.
"""

from __future__ import annotations

import logging

from aristo_stream_shared import (
    AssetNotFound,
    AssetStatus,
    RenditionIndex,
    build_manifests,
    build_master_key,
    build_rendition_index_key,
)
from aristo_stream_shared.interfaces import AssetStore, ObjectStore

from .publisher import Publisher

logger = logging.getLogger(__name__)


def load_rendition_index(
    asset_id: str, object_store: ObjectStore, bucket: str, key_prefix: str
) -> RenditionIndex:
    """Read renditions.json for the asset. Raises AssetNotFound if it was never published."""
    key = build_rendition_index_key(asset_id, key_prefix)
    try:
        raw = object_store.download(bucket, key)
    except FileNotFoundError as e:
        raise AssetNotFound(
            f"no rendition index for asset {asset_id} at {key}", asset_id=asset_id
        ) from e
    return RenditionIndex.model_validate_json(raw)


def rebase_manifests(
    asset_id: str,
    asset_store: AssetStore,
    object_store: ObjectStore,
    publisher: Publisher,
) -> str:
    """
    Rebuild the asset's master and variant playlists with the publisher's
    public base URL, upload them (master last), and record the new master URL.

    Only ready assets are rebased (ValueError otherwise). Returns the master URL.
    """
    asset = asset_store.get(asset_id, consistent_read=True)
    if asset is None:
        raise AssetNotFound(f"asset {asset_id} not found", asset_id=asset_id)
    if asset.status != AssetStatus.READY:
        raise ValueError(f"asset {asset_id} is {asset.status.value}, only ready assets can be rebased")

    index = load_rendition_index(asset_id, object_store, publisher.bucket, publisher.key_prefix)
    master_text, variant_texts = build_manifests(
        index, base_url=publisher.public_base_url or None
    )
    written = publisher.publish_manifests(asset_id, master_text, variant_texts)
    master_url = publisher.url_for(build_master_key(asset_id, publisher.key_prefix))
    asset_store.save_status(asset_id, AssetStatus.READY, master_manifest_url=master_url)
    logger.info(
        "repair: asset_id=%s manifests rebased objects=%s master=%s",
        asset_id, len(written), master_url,
    )
    return master_url
