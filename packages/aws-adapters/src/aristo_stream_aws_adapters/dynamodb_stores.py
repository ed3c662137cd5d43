"""DynamoDB implementation of AssetStore (status, progress, and the processing claim)."""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import boto3
from aristo_stream_shared import (
    AssetNotFound,
    AssetStatus,
    ConcurrentProcessingRejected,
    MediaAsset,
    StoreUnavailable,
)
from botocore.exceptions import BotoCoreError, ClientError


def _asset_to_item(asset: MediaAsset) -> dict[str, Any]:
    """Convert MediaAsset to DynamoDB item (native types for resource API)."""
    d = asset.model_dump(mode="json")
    return {k: v for k, v in d.items() if v is not None}


def _item_to_asset(item: dict[str, Any]) -> MediaAsset:
    """Convert DynamoDB item to MediaAsset."""
    return MediaAsset.model_validate(item)


def _is_conditional_failure(e: ClientError) -> bool:
    return e.response["Error"]["Code"] == "ConditionalCheckFailedException"


@contextmanager
def _store_errors(action: str, asset_id: str) -> Iterator[None]:
    try:
        yield
    except ClientError as e:
        raise StoreUnavailable(
            f"assets table {action} failed: {e.response['Error']['Code']}", asset_id=asset_id
        ) from e
    except BotoCoreError as e:
        raise StoreUnavailable(f"assets table {action} failed: {e}", asset_id=asset_id) from e


class DynamoDBAssetStore:
    """AssetStore: DynamoDB assets table keyed by asset_id."""

    def __init__(
        self,
        table_name: str,
        *,
        region_name: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        self._table_name = table_name
        self._resource = boto3.resource(
            "dynamodb",
            region_name=region_name,
            endpoint_url=endpoint_url,
        )
        self._table = self._resource.Table(table_name)

    def get(self, asset_id: str, *, consistent_read: bool = False) -> MediaAsset | None:
        """Return the asset if it exists, otherwise None."""
        with _store_errors("get", asset_id):
            resp = self._table.get_item(
                Key={"asset_id": asset_id},
                ConsistentRead=consistent_read,
            )
        item = resp.get("Item")
        if not item:
            return None
        return _item_to_asset(item)

    def put(self, asset: MediaAsset) -> None:
        """Create or overwrite an asset record."""
        with _store_errors("put", asset.asset_id):
            self._table.put_item(Item=_asset_to_item(asset))

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
        Update status and selected attributes of an existing asset.

        None leaves a field unchanged. Raises AssetNotFound when no record
        exists (the update never creates one). With claim_id the update is
        conditional on processing_claim_id; a record claimed by another run
        raises ConcurrentProcessingRejected.
        """
        updates = ["#st = :st", "updated_at = :now"]
        removes: list[str] = []
        expr_names = {"#st": "status"}
        expr_values: dict[str, Any] = {
            ":st": AssetStatus(status).value,
            ":now": int(time.time()),
        }
        if progress is not None:
            updates.append("processing_progress = :pp")
            expr_values[":pp"] = progress
        if error_message is not None:
            updates.append("error_message = :em")
            expr_values[":em"] = error_message
        if master_manifest_url is not None:
            updates.append("master_manifest_url = :mm")
            expr_values[":mm"] = master_manifest_url
        if thumbnail_url is not None:
            updates.append("thumbnail_url = :th")
            expr_values[":th"] = thumbnail_url
        elif clear_thumbnail_url:
            removes.append("thumbnail_url")
        if heartbeat_at is not None:
            updates.append("processing_started_at = :hb")
            expr_values[":hb"] = heartbeat_at
        condition = "attribute_exists(asset_id)"
        if claim_id is not None:
            condition += " AND processing_claim_id = :claim"
            expr_values[":claim"] = claim_id
        update_expression = "SET " + ", ".join(updates)
        if removes:
            update_expression += " REMOVE " + ", ".join(removes)

        with _store_errors("update", asset_id):
            try:
                self._table.update_item(
                    Key={"asset_id": asset_id},
                    UpdateExpression=update_expression,
                    ConditionExpression=condition,
                    ExpressionAttributeNames=expr_names,
                    ExpressionAttributeValues=expr_values,
                )
            except ClientError as e:
                if not _is_conditional_failure(e):
                    raise
                if claim_id is not None and self.get(asset_id, consistent_read=True) is not None:
                    raise ConcurrentProcessingRejected(
                        f"asset {asset_id} processing claim lost", asset_id=asset_id
                    ) from e
                raise AssetNotFound(f"asset {asset_id} not found", asset_id=asset_id) from e

    def try_begin_processing(
        self,
        asset_id: str,
        *,
        now: int,
        stale_after_sec: int | None = None,
        claim_id: str | None = None,
    ) -> bool:
        """
        Claim the asset for processing.

        Performs a conditional update: SET status=processing, progress=0,
        processing_started_at=now, processing_claim_id=claim_id and REMOVE
        error_message, only if the item exists AND it is not already
        processing (or its claim has not been refreshed for stale_after_sec).
        Returns True if this worker won the claim, False otherwise.
        """
        condition = "attribute_exists(asset_id) AND (#st <> :processing"
        expr_values: dict[str, Any] = {
            ":processing": AssetStatus.PROCESSING.value,
            ":zero": 0,
            ":now": now,
        }
        if stale_after_sec is not None:
            condition += (
                " OR attribute_not_exists(processing_started_at)"
                " OR processing_started_at < :stale"
            )
            expr_values[":stale"] = now - stale_after_sec
        condition += ")"
        update_expression = (
            "SET #st = :processing, processing_progress = :zero, "
            "processing_started_at = :now, updated_at = :now"
        )
        if claim_id is not None:
            update_expression += ", processing_claim_id = :claim REMOVE error_message"
            expr_values[":claim"] = claim_id
        else:
            update_expression += " REMOVE error_message, processing_claim_id"

        with _store_errors("claim", asset_id):
            try:
                self._table.update_item(
                    Key={"asset_id": asset_id},
                    UpdateExpression=update_expression,
                    ConditionExpression=condition,
                    ExpressionAttributeNames={"#st": "status"},
                    ExpressionAttributeValues=expr_values,
                )
                return True
            except ClientError as e:
                if _is_conditional_failure(e):
                    return False
                raise
