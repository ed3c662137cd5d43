"""Tests for the operator CLI (stores from env are replaced by in-memory fakes)."""

import json

import pytest
from aristo_stream_shared import AssetStatus, MediaAsset

from media_worker import cli

BUCKET = "media"


@pytest.fixture
def cli_env(monkeypatch, asset_store, object_store):
    monkeypatch.setenv("MEDIA_BUCKET_NAME", BUCKET)
    monkeypatch.setenv("KEY_PREFIX", "videos")
    monkeypatch.setenv("PUBLIC_BASE_URL", "")
    monkeypatch.setenv("QUALITIES", "360p,480p,720p")
    monkeypatch.setenv("APPLY_PUBLIC_READ_POLICY", "false")
    monkeypatch.setattr(cli, "asset_store_from_env", lambda: asset_store)
    monkeypatch.setattr(cli, "object_store_from_env", lambda: object_store)


def test_requires_subcommand(cli_env) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.main([])
    assert exc_info.value.code == 2


def test_set_public_policy(cli_env, object_store, capsys) -> None:
    assert cli.main(["set-public-policy"]) == 0
    assert "public read policy for 'videos' updated" in capsys.readouterr().out
    statement = json.loads(object_store.get_bucket_policy(BUCKET))["Statement"][0]
    assert statement["Resource"] == ["arn:aws:s3:::media/videos/*"]

    assert cli.main(["set-public-policy"]) == 0
    assert "already up to date" in capsys.readouterr().out
    assert object_store.policy_writes == 1


def test_set_public_policy_custom_prefix(cli_env, object_store, capsys) -> None:
    assert cli.main(["set-public-policy", "--prefix", "public"]) == 0
    statement = json.loads(object_store.get_bucket_policy(BUCKET))["Statement"][0]
    assert statement["Sid"] == "PublicReadPublic"
    assert "'public'" in capsys.readouterr().out


def test_reprocess(cli_env, asset_store, object_store, fake_ffmpeg, source_file, capsys) -> None:
    asset_store.put(MediaAsset(asset_id="a1", source_uri=str(source_file), status=AssetStatus.ERROR))
    assert cli.main(["reprocess", "a1"]) == 0
    out = capsys.readouterr().out
    assert "a1: ready master=videos/hls/a1/master.m3u8" in out
    assert "a1: thumbnail=videos/thumbnails/a1/thumbnail.jpg" in out
    assert asset_store.get("a1").status == AssetStatus.READY


def test_reprocess_with_overrides(cli_env, asset_store, object_store, fake_ffmpeg, source_file) -> None:
    asset_store.put(MediaAsset(asset_id="a1", source_uri=str(source_file)))
    assert cli.main(["reprocess", "a1", "--qualities", "360p", "--segment-duration", "4"]) == 0
    keys = object_store.list_object_keys(BUCKET, "videos/hls/a1/360p/")
    assert len([k for k in keys if k.endswith(".ts")]) == 5
    assert object_store.list_object_keys(BUCKET, "videos/hls/a1/720p/") == []


def test_reprocess_unknown_quality(cli_env, capsys) -> None:
    assert cli.main(["reprocess", "a1", "--qualities", "4k"]) == 1
    assert "Unknown quality labels" in capsys.readouterr().err


def test_reprocess_unknown_asset(cli_env, capsys) -> None:
    assert cli.main(["reprocess", "a1"]) == 1
    assert "a1: error [asset_not_found]" in capsys.readouterr().err


def test_reprocess_encode_failure(cli_env, asset_store, fake_ffmpeg, source_file, capsys) -> None:
    fake_ffmpeg.fail_labels["480p"] = 1
    asset_store.put(MediaAsset(asset_id="a1", source_uri=str(source_file)))
    assert cli.main(["reprocess", "a1"]) == 1
    assert "error [variant_encode_failed]" in capsys.readouterr().err
    assert asset_store.get("a1").status == AssetStatus.ERROR


def test_rebase_manifests_reports_each_asset(
    cli_env, monkeypatch, asset_store, object_store, fake_ffmpeg, source_file, capsys
) -> None:
    asset_store.put(MediaAsset(asset_id="a1", source_uri=str(source_file)))
    assert cli.main(["reprocess", "a1"]) == 0
    capsys.readouterr()

    monkeypatch.setenv("PUBLIC_BASE_URL", "https://cdn.example.com/")
    assert cli.main(["rebase-manifests", "a1", "missing"]) == 1
    captured = capsys.readouterr()
    assert "a1: master=https://cdn.example.com/videos/hls/a1/master.m3u8" in captured.out
    assert "missing: error [asset_not_found]" in captured.err
    assert "https://cdn.example.com/" in object_store.text(BUCKET, "videos/hls/a1/master.m3u8")
