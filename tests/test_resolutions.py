import pytest

from tests.conftest import make_audio_source, make_source
from vidstream.services.transcoding.resolutions import compute_resolutions, normalize_requested, to_even


class TestComputeResolutions:
    """Tests for the effective resolution set of an upload."""

    def test_video_source_gets_its_height_and_lower_ones(self, settings, tmp_path):
        source = make_source(tmp_path, width=1280, height=720)
        assert compute_resolutions(source, settings) == [240, 360, 480, 720]

    def test_odd_source_height_is_rounded_down_to_even(self, settings, tmp_path):
        source = make_source(tmp_path, width=1000, height=541)
        assert compute_resolutions(source, settings) == [240, 360, 480, 540]

    def test_upscale_adds_higher_resolutions(self, settings, tmp_path):
        source = make_source(tmp_path, width=640, height=360)
        assert compute_resolutions(source, settings, allow_upscale=True) == [240, 360, 480, 720, 1080]

    def test_audio_only_source(self, settings, tmp_path):
        """Test that an audio upload gets the audio variant and its companions."""
        source = make_audio_source(tmp_path)
        assert compute_resolutions(source, settings) == [0, 240, 360]

    def test_audio_companions_must_be_enabled(self, settings, tmp_path):
        source = make_audio_source(tmp_path)
        limited = settings.model_copy(update={"transcoding_resolutions": [240, 720]})
        assert compute_resolutions(source, limited) == [0, 240]


class TestNormalizeRequested:

    def test_sorted_and_deduplicated(self):
        assert normalize_requested([720, 0, 240, 720]) == [0, 240, 720]

    def test_empty_request(self):
        with pytest.raises(ValueError):
            normalize_requested([])

    def test_negative_resolution(self):
        with pytest.raises(ValueError):
            normalize_requested([240, -1])


def test_to_even():
    assert to_even(541) == 540
    assert to_even(540) == 540
