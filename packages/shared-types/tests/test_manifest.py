"""Tests for the HLS master/variant manifest builder."""

import pytest

from aristo_stream_shared import (
    QUALITY_PRESETS,
    RenditionIndex,
    Segment,
    Variant,
    build_manifests,
    build_master_manifest,
    build_segment_key,
    build_variant_manifest,
    build_variant_playlist_key,
    parse_media_playlist,
)


def _variant(label: str, durations: list[float], asset_id: str = "a1") -> Variant:
    preset = QUALITY_PRESETS[label]
    return Variant(
        label=label,
        bandwidth=preset.bandwidth,
        resolution=preset.resolution,
        playlist_key=build_variant_playlist_key(asset_id, label),
        segments=[
            Segment(index=i, duration=d, key=build_segment_key(asset_id, label, i))
            for i, d in enumerate(durations)
        ],
    )


@pytest.fixture
def ladder() -> list[Variant]:
    """Three-quality ladder of a 20 s source cut into 6 s segments."""
    return [_variant(label, [6.0, 6.0, 6.0, 2.0]) for label in ("360p", "480p", "720p")]


class TestMasterManifest:
    """Master playlist content and ordering."""

    def test_three_quality_ladder_relative(self, ladder: list[Variant]) -> None:
        text = build_master_manifest("a1", ladder, key_prefix="videos")
        assert text == (
            "#EXTM3U\n"
            "#EXT-X-VERSION:3\n"
            "#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360\n"
            "360p/playlist.m3u8\n"
            "#EXT-X-STREAM-INF:BANDWIDTH=1400000,RESOLUTION=854x480\n"
            "480p/playlist.m3u8\n"
            "#EXT-X-STREAM-INF:BANDWIDTH=2800000,RESOLUTION=1280x720\n"
            "720p/playlist.m3u8\n"
        )

    def test_absolute_under_base_url(self, ladder: list[Variant]) -> None:
        text = build_master_manifest(
            "a1", ladder, key_prefix="videos", base_url="https://cdn.example.com"
        )
        uris = [line for line in text.splitlines() if not line.startswith("#")]
        assert uris == [
            "https://cdn.example.com/videos/hls/a1/360p/playlist.m3u8",
            "https://cdn.example.com/videos/hls/a1/480p/playlist.m3u8",
            "https://cdn.example.com/videos/hls/a1/720p/playlist.m3u8",
        ]

    def test_no_host_embedded_without_base(self, ladder: list[Variant]) -> None:
        text = build_master_manifest("a1", ladder, key_prefix="videos")
        assert "http" not in text
        assert "localhost" not in text

    def test_entries_ascending_regardless_of_input_order(self, ladder: list[Variant]) -> None:
        text = build_master_manifest("a1", list(reversed(ladder)), key_prefix="videos")
        bandwidths = [
            int(line.split("BANDWIDTH=")[1].split(",")[0])
            for line in text.splitlines()
            if line.startswith("#EXT-X-STREAM-INF")
        ]
        assert bandwidths == sorted(bandwidths)
        assert len(bandwidths) == 3

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValueError, match="no variants"):
            build_master_manifest("a1", [], key_prefix="videos")

    def test_duplicate_bandwidth_rejected(self) -> None:
        v1 = _variant("360p", [6.0])
        v2 = v1.model_copy(update={"label": "360b", "playlist_key": "videos/hls/a1/360b/playlist.m3u8"})
        with pytest.raises(ValueError, match="Duplicate"):
            build_master_manifest("a1", [v1, v2], key_prefix="videos")

    def test_deterministic(self, ladder: list[Variant]) -> None:
        first = build_master_manifest("a1", ladder, key_prefix="videos")
        second = build_master_manifest("a1", [v.model_copy(deep=True) for v in ladder], key_prefix="videos")
        assert first == second


class TestVariantManifest:
    """Variant (media) playlist content."""

    def test_four_segments_last_shorter(self, ladder: list[Variant]) -> None:
        text = build_variant_manifest(ladder[0])
        assert text == (
            "#EXTM3U\n"
            "#EXT-X-VERSION:3\n"
            "#EXT-X-TARGETDURATION:6\n"
            "#EXT-X-MEDIA-SEQUENCE:0\n"
            "#EXT-X-PLAYLIST-TYPE:VOD\n"
            "#EXTINF:6.000000,\n"
            "segment_000.ts\n"
            "#EXTINF:6.000000,\n"
            "segment_001.ts\n"
            "#EXTINF:6.000000,\n"
            "segment_002.ts\n"
            "#EXTINF:2.000000,\n"
            "segment_003.ts\n"
            "#EXT-X-ENDLIST\n"
        )

    def test_target_duration_is_ceiling(self) -> None:
        text = build_variant_manifest(_variant("360p", [6.006, 5.5]))
        assert "#EXT-X-TARGETDURATION:7\n" in text

    def test_absolute_segment_uris(self) -> None:
        text = build_variant_manifest(
            _variant("480p", [4.0]), base_url="https://cdn.example.com/"
        )
        assert "https://cdn.example.com/videos/hls/a1/480p/segment_000.ts\n" in text

    def test_gapped_sequence_rejected(self) -> None:
        v = _variant("360p", [6.0, 6.0])
        gapped = v.model_copy(
            update={"segments": [v.segments[0], v.segments[1].model_copy(update={"index": 2})]}
        )
        with pytest.raises(ValueError, match="gapless"):
            build_variant_manifest(gapped)

    def test_no_segments_rejected(self) -> None:
        with pytest.raises(ValueError, match="no segments"):
            build_variant_manifest(_variant("360p", []))


class TestBuildManifests:
    """Whole-tree regeneration from a rendition index."""

    def test_tree(self, ladder: list[Variant]) -> None:
        index = RenditionIndex(
            asset_id="a1", key_prefix="videos", segment_duration=6.0, variants=ladder
        )
        master, variants = build_manifests(index)
        assert master.startswith("#EXTM3U\n")
        assert sorted(variants) == [
            "videos/hls/a1/360p/playlist.m3u8",
            "videos/hls/a1/480p/playlist.m3u8",
            "videos/hls/a1/720p/playlist.m3u8",
        ]
        assert build_manifests(index) == (master, variants)


class TestParseMediaPlaylist:
    """Reading #EXTINF entries back from a playlist."""

    def test_parses_own_output(self, ladder: list[Variant]) -> None:
        entries = parse_media_playlist(build_variant_manifest(ladder[1]))
        assert entries == [
            (6.0, "segment_000.ts"),
            (6.0, "segment_001.ts"),
            (6.0, "segment_002.ts"),
            (2.0, "segment_003.ts"),
        ]

    def test_parses_ffmpeg_style(self) -> None:
        text = (
            "#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:7\n"
            "#EXT-X-MEDIA-SEQUENCE:0\n#EXT-X-PLAYLIST-TYPE:VOD\n"
            "#EXTINF:6.006000,\nsegment_000.ts\n"
            "#EXTINF:1.968000,\nsegment_001.ts\n#EXT-X-ENDLIST\n"
        )
        assert parse_media_playlist(text) == [(6.006, "segment_000.ts"), (1.968, "segment_001.ts")]

    def test_malformed_extinf(self) -> None:
        with pytest.raises(ValueError, match="Malformed"):
            parse_media_playlist("#EXTM3U\n#EXTINF:abc,\nsegment_000.ts\n")

    def test_dangling_extinf(self) -> None:
        with pytest.raises(ValueError):
            parse_media_playlist("#EXTM3U\n#EXTINF:6.0,\n")
