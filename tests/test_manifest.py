import pytest

from vidstream.core.exceptions import ManifestValidationError
from vidstream.models.domain import EncodedSegment, Segment, VariantFile
from vidstream.services.transcoding.manifest import (
    ManifestBuilder,
    playlist_sha256,
    validate_segment_sequence,
)

UUID = "3f1c2d4e-0000-4000-8000-000000000001"


def _variant(resolution, durations=(4.0, 4.0, 2.0), width=0, height=0, fps=0.0, codecs=""):
    offset = 100
    segments = []
    for index, duration in enumerate(durations):
        segments.append(Segment(
            index=index, duration=duration, byte_offset=offset, byte_length=1000, sha256="e" * 64
        ))
        offset += 1000
    return VariantFile(
        resolution=resolution,
        file_name=f"{UUID}-{resolution}-fragmented.mp4",
        size=offset,
        duration=sum(durations),
        segments=tuple(segments),
        width=width,
        height=height,
        fps=fps,
        codecs=codecs,
        init_offset=0,
        init_length=100,
    )


class TestManifestBuilder:
    """Tests for HLS playlist rendering."""

    @pytest.fixture
    def builder(self):
        return ManifestBuilder()

    def test_variant_playlist_addresses_byte_ranges(self, builder):
        """Test the variant playlist body."""
        content = builder.build_variant_playlist(_variant(720, durations=(4.0, 3.5)))
        lines = content.splitlines()

        assert lines[0] == "#EXTM3U"
        assert "#EXT-X-VERSION:7" in lines
        assert "#EXT-X-TARGETDURATION:4" in lines
        assert "#EXT-X-PLAYLIST-TYPE:VOD" in lines
        assert f'#EXT-X-MAP:URI="{UUID}-720-fragmented.mp4",BYTERANGE="100@0"' in lines
        assert lines.count(f"{UUID}-720-fragmented.mp4") == 2
        first = lines.index("#EXTINF:4.000000,")
        assert lines[first + 1] == "#EXT-X-BYTERANGE:1000@100"
        assert "#EXT-X-BYTERANGE:1000@1100" in lines
        assert lines[-1] == "#EXT-X-ENDLIST"

    def test_target_duration_rounds_up(self, builder):
        content = builder.build_variant_playlist(_variant(360, durations=(4.2, 1.0)))
        assert "#EXT-X-TARGETDURATION:5" in content

    def test_master_lists_variants_in_ascending_order(self, builder):
        """Test that the master playlist orders variants by resolution, audio first."""
        variants = [
            _variant(720, width=1280, height=720, fps=30.0, codecs="avc1.64001f,mp4a.40.2"),
            _variant(0, codecs="mp4a.40.2"),
            _variant(240, width=426, height=240, fps=30.0, codecs="avc1.64001e,mp4a.40.2"),
        ]
        content = builder.build_master_playlist(variants)
        uris = [line for line in content.splitlines() if line and not line.startswith("#")]

        assert uris == ["0.m3u8", "240.m3u8", "720.m3u8"]
        assert "RESOLUTION=1280x720" in content
        assert "FRAME-RATE=30.000" in content
        assert 'CODECS="mp4a.40.2"' in content
        audio_inf = content.splitlines()[2]
        assert "RESOLUTION" not in audio_inf

    def test_master_needs_a_variant(self, builder):
        with pytest.raises(ManifestValidationError):
            builder.build_master_playlist([])

    def test_rendering_is_deterministic(self, builder):
        """Test that equal variants always render identical bytes."""
        first = builder.build_master_playlist([_variant(240), _variant(480)])
        second = builder.build_master_playlist([_variant(480), _variant(240)])
        assert first == second
        assert playlist_sha256(first) == playlist_sha256(second)

    def test_merge_prefers_fresh_variants(self):
        """Test that re-transcoded resolutions replace published ones."""
        existing = [_variant(240, durations=(4.0,)), _variant(480, durations=(4.0,))]
        fresh = [_variant(480, durations=(4.0, 4.0)), _variant(720)]

        merged = ManifestBuilder.merge_variants(existing, fresh)

        assert [v.resolution for v in merged] == [240, 480, 720]
        assert merged[0] is existing[0]
        assert merged[1] is fresh[0]


class TestSegmentSequence:
    """Tests for segment contiguity checks."""

    def _segments(self, indexes):
        return [
            EncodedSegment(index=i, duration=4.0, byte_offset=i * 10, byte_length=10)
            for i in indexes
        ]

    def test_contiguous_sequence_passes(self):
        validate_segment_sequence(self._segments([0, 1, 2]))

    def test_gap_is_rejected(self):
        with pytest.raises(ManifestValidationError):
            validate_segment_sequence(self._segments([0, 2]))

    def test_duplicate_is_rejected(self):
        with pytest.raises(ManifestValidationError):
            validate_segment_sequence(self._segments([0, 1, 1]))

    def test_must_start_at_zero(self):
        with pytest.raises(ManifestValidationError):
            validate_segment_sequence(self._segments([1, 2]))

    def test_empty_is_rejected(self):
        with pytest.raises(ManifestValidationError):
            validate_segment_sequence([])
