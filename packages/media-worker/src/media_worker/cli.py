"""
Operator CLI for the media pipeline.

Usage:
  aristo-media reprocess <asset_id> [--qualities 360p,480p,720p] [--segment-duration 6]
  aristo-media set-public-policy [--prefix videos]
  aristo-media rebase-manifests <asset_id> [<asset_id> ...]

Reads the same env vars as the worker (ASSETS_TABLE_NAME, MEDIA_BUCKET_NAME,
PUBLIC_BASE_URL, AWS_REGION, AWS_ENDPOINT_URL, ...). Exit code 0 on success, 1 on failure.
"""

from __future__ import annotations

import argparse
import sys

from aristo_stream_aws_adapters import asset_store_from_env, object_store_from_env
from aristo_stream_shared import ProcessingConfig, ProcessingError

from .config import MediaWorkerSettings, get_settings
from .main import build_orchestrator, build_publisher
from .repair import rebase_manifests


def _print_error(asset_id: str | None, e: Exception) -> None:
    kind = getattr(e, "kind", "invalid")
    prefix = f"{asset_id}: " if asset_id else ""
    print(f"{prefix}error [{kind}]: {e}", file=sys.stderr)


def _cmd_reprocess(args: argparse.Namespace, settings: MediaWorkerSettings) -> int:
    labels = (
        [q.strip() for q in args.qualities.split(",") if q.strip()]
        if args.qualities
        else settings.quality_labels
    )
    config = ProcessingConfig.from_labels(
        labels,
        segment_duration=args.segment_duration or settings.segment_duration_sec,
        generate_thumbnail=settings.generate_thumbnail,
        encode_timeout_sec=settings.encode_timeout_sec,
        publish_timeout_sec=settings.publish_timeout_sec,
    )
    asset_store = asset_store_from_env()
    object_store = object_store_from_env()
    publisher = build_publisher(settings, object_store)
    orchestrator = build_orchestrator(settings, asset_store, object_store, publisher)
    result = orchestrator.process_asset(args.asset_id, config)
    print(f"{args.asset_id}: ready master={result.master_manifest_url}")
    if result.thumbnail_url:
        print(f"{args.asset_id}: thumbnail={result.thumbnail_url}")
    return 0


def _cmd_set_public_policy(args: argparse.Namespace, settings: MediaWorkerSettings) -> int:
    publisher = build_publisher(settings, object_store_from_env())
    changed = publisher.set_public_read_policy(args.prefix)
    prefix = settings.key_prefix if args.prefix is None else args.prefix
    state = "updated" if changed else "already up to date"
    print(f"bucket {publisher.bucket}: public read policy for '{prefix}' {state}")
    return 0


def _cmd_rebase_manifests(args: argparse.Namespace, settings: MediaWorkerSettings) -> int:
    asset_store = asset_store_from_env()
    object_store = object_store_from_env()
    publisher = build_publisher(settings, object_store)
    failures = 0
    for asset_id in args.asset_ids:
        try:
            master_url = rebase_manifests(asset_id, asset_store, object_store, publisher)
        except (ProcessingError, ValueError) as e:
            _print_error(asset_id, e)
            failures += 1
            continue
        print(f"{asset_id}: master={master_url}")
    return 1 if failures else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aristo-media", description="Operator tools for the HLS packaging pipeline."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("reprocess", help="Re-run processing for one asset in this process")
    p.add_argument("asset_id", help="Asset ID to process")
    p.add_argument("--qualities", help="Comma-separated preset labels (default: QUALITIES)")
    p.add_argument(
        "--segment-duration", type=float, help="Segment length in seconds (default: SEGMENT_DURATION_SEC)"
    )
    p.set_defaults(func=_cmd_reprocess)

    p = sub.add_parser("set-public-policy", help="Grant anonymous read on the output prefix")
    p.add_argument("--prefix", help="Key prefix to expose (default: KEY_PREFIX)")
    p.set_defaults(func=_cmd_set_public_policy)

    p = sub.add_parser(
        "rebase-manifests", help="Regenerate manifests with the current PUBLIC_BASE_URL"
    )
    p.add_argument("asset_ids", nargs="+", metavar="asset_id", help="Asset IDs to rebase")
    p.set_defaults(func=_cmd_rebase_manifests)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    try:
        return args.func(args, settings)
    except (ProcessingError, ValueError) as e:
        _print_error(getattr(args, "asset_id", None), e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
