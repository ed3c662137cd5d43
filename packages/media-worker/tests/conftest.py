"""Pytest fixtures for media-worker tests: in-memory stores and a fake ffmpeg/ffprobe."""

import io
import json
import subprocess
import threading
from collections.abc import Callable
from pathlib import Path

import pytest
from aristo_stream_shared import (
    AssetNotFound,
    AssetStatus,
    ConcurrentProcessingRejected,
    MediaAsset,
    StoreUnavailable,
)
from aristo_stream_shared.keys import SEGMENT_FILENAME_PATTERN

from media_worker.encoder import plan_segment_durations


class InMemoryAssetStore:
    """AssetStore with the same claim semantics as the DynamoDB store; records every status write."""

    def __init__(self) -> None:
        self.assets: dict[str, MediaAsset] = {}
        self.writes: list[tuple[AssetStatus, int | None]] = []
        self.fail_progress_writes = False

    def get(self, asset_id: str, *, consistent_read: bool = False) -> MediaAsset | None:
        return self.assets.get(asset_id)

    def put(self, asset: MediaAsset) -> None:
        self.assets[asset.asset_id] = asset

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
        if self.fail_progress_writes and status == AssetStatus.PROCESSING:
            raise StoreUnavailable("assets table unreachable", asset_id=asset_id)
        asset = self.assets.get(asset_id)
        if asset is None:
            raise AssetNotFound(f"asset {asset_id} not found", asset_id=asset_id)
        if claim_id is not None and asset.processing_claim_id != claim_id:
            raise ConcurrentProcessingRejected(
                f"asset {asset_id} processing claim lost", asset_id=asset_id
            )
        update: dict = {"status": status}
        if progress is not None:
            update["processing_progress"] = progress
        if error_message is not None:
            update["error_message"] = error_message
        if master_manifest_url is not None:
            update["master_manifest_url"] = master_manifest_url
        if thumbnail_url is not None:
            update["thumbnail_url"] = thumbnail_url
        elif clear_thumbnail_url:
            update["thumbnail_url"] = None
        if heartbeat_at is not None:
            update["processing_started_at"] = heartbeat_at
        self.assets[asset_id] = asset.model_copy(update=update)
        self.writes.append((status, progress))

    def try_begin_processing(
        self,
        asset_id: str,
        *,
        now: int,
        stale_after_sec: int | None = None,
        claim_id: str | None = None,
    ) -> bool:
        asset = self.assets.get(asset_id)
        if asset is None:
            return False
        if asset.status == AssetStatus.PROCESSING:
            started = asset.processing_started_at
            if stale_after_sec is None:
                return False
            if started is not None and started >= now - stale_after_sec:
                return False
        self.assets[asset_id] = asset.model_copy(
            update={
                "status": AssetStatus.PROCESSING,
                "processing_progress": 0,
                "processing_started_at": now,
                "processing_claim_id": claim_id,
                "error_message": None,
            }
        )
        self.writes.append((AssetStatus.PROCESSING, 0))
        return True


class InMemoryObjectStore:
    """ObjectStore keeping objects in a dict; records put order and can fail chosen keys."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.metadata: dict[tuple[str, str], dict] = {}
        self.put_log: list[str] = []
        self.policies: dict[str, str] = {}
        self.policy_writes = 0
        self.fail_put: Callable[[str], bool] | None = None
        self.fail_delete: Callable[[str], bool] | None = None

    def _store(self, bucket, key, body, content_type, cache_control) -> None:
        if self.fail_put is not None and self.fail_put(key):
            raise StoreUnavailable(f"put {key} failed")
        self.objects[(bucket, key)] = body
        self.metadata[(bucket, key)] = {"content_type": content_type, "cache_control": cache_control}
        self.put_log.append(key)

    def put_object(self, bucket, key, body, *, content_type, cache_control=None) -> None:
        self._store(bucket, key, body, content_type, cache_control)

    def put_file(self, bucket, key, path, *, content_type, cache_control=None) -> None:
        self._store(bucket, key, Path(path).read_bytes(), content_type, cache_control)

    def download(self, bucket: str, key: str) -> bytes:
        if (bucket, key) not in self.objects:
            raise FileNotFoundError(f"s3://{bucket}/{key}")
        return self.objects[(bucket, key)]

    def download_file(self, bucket: str, key: str, path: str) -> None:
        Path(path).write_bytes(self.download(bucket, key))

    def exists(self, bucket: str, key: str) -> bool:
        return (bucket, key) in self.objects

    def list_object_keys(self, bucket: str, prefix: str) -> list[str]:
        return sorted(k for b, k in self.objects if b == bucket and k.startswith(prefix))

    def delete(self, bucket: str, key: str) -> None:
        if self.fail_delete is not None and self.fail_delete(key):
            raise StoreUnavailable(f"delete {key} failed")
        self.objects.pop((bucket, key), None)
        self.metadata.pop((bucket, key), None)

    def get_bucket_policy(self, bucket: str) -> str | None:
        return self.policies.get(bucket)

    def set_bucket_policy(self, bucket: str, policy_json: str) -> None:
        self.policies[bucket] = policy_json
        self.policy_writes += 1

    def text(self, bucket: str, key: str) -> str:
        return self.objects[(bucket, key)].decode("utf-8")

    def keys(self, bucket: str) -> set[str]:
        return {k for b, k in self.objects if b == bucket}


class _HangingOutput:
    """stdout of a process that prints nothing until it is killed."""

    def __init__(self, killed: threading.Event) -> None:
        self._killed = killed

    def __iter__(self):
        self._killed.wait(5)
        return iter(())

    def close(self) -> None:
        pass


class FakeProcess:
    """Popen stand-in with scripted output and exit code."""

    def __init__(self, lines: list[str], returncode: int = 0, *, hang: bool = False) -> None:
        self._exit_code = returncode
        self._killed = threading.Event()
        self.killed = False
        self.returncode: int | None = None
        if hang:
            self.stdout = _HangingOutput(self._killed)
        else:
            self.stdout = io.StringIO("".join(line + "\n" for line in lines))

    def kill(self) -> None:
        self.killed = True
        self._killed.set()

    def wait(self, timeout: float | None = None) -> int:
        if self.returncode is None:
            self.returncode = -9 if self._killed.is_set() else self._exit_code
        return self.returncode

    def poll(self) -> int | None:
        return self.returncode


def _arg(cmd: list[str], flag: str) -> str:
    return cmd[cmd.index(flag) + 1]


class FakeFfmpeg:
    """
    Scripted ffmpeg/ffprobe. Encodes write ffmpeg-style playlists and segment
    files for the source duration; failures and hangs are chosen per label.
    """

    def __init__(self) -> None:
        self.duration = 20.0
        self.width = 1920
        self.height = 1080
        self.has_audio = True
        self.probe_returncode = 0
        self.thumbnail_returncode = 0
        self.fail_labels: dict[str, int] = {}
        self.hang_labels: set[str] = set()
        self.skip_segment_labels: set[str] = set()
        self.encode_cmds: list[list[str]] = []
        self.processes: list[FakeProcess] = []
        self.before_encode: Callable[[str], None] | None = None
        self._lock = threading.Lock()

    def _playlist(self, durations: list[float], skip: bool) -> str:
        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            f"#EXT-X-TARGETDURATION:{int(max(durations) + 0.999)}",
            "#EXT-X-MEDIA-SEQUENCE:0",
            "#EXT-X-PLAYLIST-TYPE:VOD",
        ]
        for i, d in enumerate(durations):
            if skip and i == 1:
                continue
            lines.append(f"#EXTINF:{d:.6f},")
            lines.append(SEGMENT_FILENAME_PATTERN % i)
        lines.append("#EXT-X-ENDLIST")
        return "\n".join(lines) + "\n"

    def popen(self, cmd: list[str], **kwargs) -> FakeProcess:
        out_playlist = Path(cmd[-1])
        label = out_playlist.parent.name
        with self._lock:
            self.encode_cmds.append(cmd)
        if self.before_encode is not None:
            self.before_encode(label)
        if label in self.hang_labels:
            proc = FakeProcess([], hang=True)
        elif label in self.fail_labels:
            proc = FakeProcess(
                [f"[libx264 @ 0x1] error encoding {label}", "Conversion failed!"],
                self.fail_labels[label],
            )
        else:
            durations = plan_segment_durations(self.duration, float(_arg(cmd, "-hls_time")))
            for i in range(len(durations)):
                (out_playlist.parent / (SEGMENT_FILENAME_PATTERN % i)).write_bytes(
                    f"{label}-{i}".encode()
                )
            out_playlist.write_text(
                self._playlist(durations, skip=label in self.skip_segment_labels)
            )
            lines: list[str] = []
            elapsed = 0.0
            for d in durations:
                elapsed += d
                lines += [f"out_time_us={int(elapsed * 1_000_000)}", "progress=continue"]
            lines.append("progress=end")
            proc = FakeProcess(lines)
        with self._lock:
            self.processes.append(proc)
        return proc

    def run(self, cmd: list[str], **kwargs) -> subprocess.CompletedProcess:
        if "-print_format" in cmd:
            if self.probe_returncode != 0:
                return subprocess.CompletedProcess(cmd, self.probe_returncode, "", "moov atom not found")
            streams = [{"codec_type": "video", "width": self.width, "height": self.height}]
            if self.has_audio:
                streams.append({"codec_type": "audio"})
            body = {"format": {"duration": f"{self.duration:.6f}"}, "streams": streams}
            return subprocess.CompletedProcess(cmd, 0, json.dumps(body), "")
        if self.thumbnail_returncode != 0:
            return subprocess.CompletedProcess(cmd, self.thumbnail_returncode, "", "decode error")
        Path(cmd[-1]).write_bytes(b"\xff\xd8jpeg")
        return subprocess.CompletedProcess(cmd, 0, "", "")


@pytest.fixture
def asset_store() -> InMemoryAssetStore:
    return InMemoryAssetStore()


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def fake_ffmpeg(monkeypatch) -> FakeFfmpeg:
    """Route subprocess.Popen/run (ffmpeg, ffprobe) to a FakeFfmpeg."""
    fake = FakeFfmpeg()
    monkeypatch.setattr(subprocess, "Popen", fake.popen)
    monkeypatch.setattr(subprocess, "run", fake.run)
    return fake


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    path = tmp_path / "upload.mp4"
    path.write_bytes(b"not really a video")
    return path
