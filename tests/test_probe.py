from pathlib import Path

import pytest

from vidstream.core.exceptions import SourceUnavailable
from vidstream.services.transcoding.probe import FFprobeSourceProvider, parse_probe_output


def _probe_json(streams, duration="12.5", size="123456"):
    return {"format": {"duration": duration, "size": size}, "streams": streams}


VIDEO_STREAM = {
    "codec_type": "video",
    "codec_name": "h264",
    "width": 1920,
    "height": 1080,
    "avg_frame_rate": "30000/1001",
}
AUDIO_STREAM = {"codec_type": "audio", "codec_name": "aac"}


class TestParseProbeOutput:
    """Tests for ffprobe JSON interpretation."""

    def test_video_with_audio(self):
        source = parse_probe_output(Path("a.mp4"), _probe_json([VIDEO_STREAM, AUDIO_STREAM]))

        assert source.duration == 12.5
        assert (source.width, source.height) == (1920, 1080)
        assert source.fps == pytest.approx(29.97, rel=1e-3)
        assert source.has_video and source.has_audio
        assert source.video_codec == "h264"
        assert source.audio_codec == "aac"
        assert source.size == 123456

    def test_cover_art_is_not_video(self):
        """Test that an attached picture does not make an audio file a video."""
        cover = dict(VIDEO_STREAM, codec_name="mjpeg", disposition={"attached_pic": 1})
        source = parse_probe_output(Path("a.mp3"), _probe_json([AUDIO_STREAM, cover]))

        assert source.is_audio_only
        assert source.height == 0

    def test_no_streams(self):
        with pytest.raises(SourceUnavailable):
            parse_probe_output(Path("a.bin"), _probe_json([]))

    def test_unknown_duration(self):
        with pytest.raises(SourceUnavailable):
            parse_probe_output(Path("a.mp4"), _probe_json([VIDEO_STREAM], duration="N/A"))

    def test_bad_frame_rate(self):
        stream = dict(VIDEO_STREAM, avg_frame_rate="0/0")
        source = parse_probe_output(Path("a.mp4"), _probe_json([stream]))
        assert source.fps == 0.0


class TestFFprobeSourceProvider:
    """Tests for running ffprobe."""

    @pytest.mark.asyncio
    async def test_missing_file(self, settings, tmp_path):
        with pytest.raises(SourceUnavailable):
            await FFprobeSourceProvider(settings).probe(tmp_path / "missing.mp4")

    @pytest.mark.asyncio
    async def test_ffprobe_failure(self, settings, tmp_path):
        path = tmp_path / "broken.mp4"
        path.write_bytes(b"not a video")
        provider = FFprobeSourceProvider(settings.model_copy(update={"ffprobe_path": "false"}))

        with pytest.raises(SourceUnavailable):
            await provider.probe(path)

    def test_command(self, settings):
        cmd = FFprobeSourceProvider(settings).build_command(Path("/videos/a.mp4"))
        assert cmd[0] == settings.ffprobe_path
        assert cmd[-1] == "/videos/a.mp4"
        assert "-show_streams" in cmd
