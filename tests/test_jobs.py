from pathlib import Path

import pytest

from vidstream.core.exceptions import EncodeFailure
from vidstream.models.domain import JobStatus, Segment, SubJobStatus, TranscodeOptions, VariantFile
from vidstream.services.transcoding.jobs import SubJob, TranscodeJob


def _job(resolutions=(240, 720)):
    return TranscodeJob(
        job_id="job_test",
        video_uuid="u",
        resolutions=tuple(resolutions),
        options=TranscodeOptions(),
    )


def _variant(resolution):
    return VariantFile(
        resolution=resolution,
        file_name=f"u-{resolution}-fragmented.mp4",
        size=100,
        duration=4.0,
        segments=(Segment(index=0, duration=4.0, byte_offset=0, byte_length=100, sha256="f" * 64),),
    )


class TestSubJobStates:
    """Tests for the per-resolution state machine."""

    def test_success_path(self):
        subjob = SubJob(resolution=360)
        subjob.mark_running()
        subjob.mark_succeeded(_variant(360), Path("f.mp4"), Path("f.torrent"))

        assert subjob.status == SubJobStatus.SUCCEEDED
        assert subjob.segments_produced == 1
        assert subjob.completed_at >= subjob.started_at

    def test_failure_records_segments_produced(self):
        subjob = SubJob(resolution=360)
        subjob.mark_running()
        subjob.mark_failed(EncodeFailure(360, "crash", 4))

        assert subjob.status == SubJobStatus.FAILED
        assert subjob.segments_produced == 4
        assert subjob.error_type == "EncodeFailure"

    def test_pending_can_fail_directly(self):
        subjob = SubJob(resolution=360)
        subjob.mark_failed(RuntimeError("cancelled"))
        assert subjob.status == SubJobStatus.FAILED

    def test_terminal_states_are_final(self):
        subjob = SubJob(resolution=360)
        subjob.mark_failed(RuntimeError("x"))
        with pytest.raises(ValueError):
            subjob.mark_running()

    def test_cannot_succeed_without_running(self):
        with pytest.raises(ValueError):
            SubJob(resolution=360).mark_succeeded(_variant(360), Path("f"), Path("t"))


class TestTranscodeJobStates:
    """Tests for the aggregate job state machine."""

    def test_one_subjob_per_resolution(self):
        job = _job((0, 240, 360))
        assert sorted(job.subjobs) == [0, 240, 360]
        assert all(s.status == SubJobStatus.PENDING for s in job.subjobs.values())

    def test_cancel_before_start(self):
        job = _job()
        job.mark_cancelled()
        assert job.status == JobStatus.CANCELLED
        assert job.error_type == "TranscodeCancelled"

    def test_published_is_final(self):
        job = _job()
        job.mark_running()
        job.status = JobStatus.PUBLISHED
        with pytest.raises(ValueError):
            job.mark_failed(RuntimeError("late"))

    def test_unfinished_subjobs(self):
        job = _job()
        job.subjobs[240].mark_running()
        job.subjobs[720].mark_failed(RuntimeError("x"))
        assert [s.resolution for s in job.unfinished_subjobs()] == [240]

    def test_to_dict(self):
        job = _job((720, 240))
        data = job.to_dict()
        assert data["status"] == "pending"
        assert data["resolutions"] == [720, 240]
        assert [s["resolution"] for s in data["subjobs"]] == [240, 720]
        assert data["subjobs"][0]["label"] == "240p"
