from unittest.mock import AsyncMock, patch

import pytest

from vidstream.models.domain import TranscodeOptions
from vidstream.models.schemas import JobStatusResponse
from vidstream.services import job_tracker
from vidstream.services.transcoding.jobs import TranscodeJob


class FakeRedis:
    """Just enough of the redis hash API."""

    def __init__(self):
        self.hashes = {}

    async def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update(mapping)

    async def expire(self, key, ttl):
        return True

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def scan_iter(self, match):
        prefix = match.rstrip("*")
        for key in list(self.hashes):
            if key.startswith(prefix):
                yield key

    async def delete(self, *keys):
        return sum(1 for key in keys if self.hashes.pop(key, None) is not None)


class TestJobTracker:
    """Tests for the Redis job mirror."""

    @pytest.fixture
    def redis(self):
        fake = FakeRedis()
        with patch("vidstream.services.job_tracker.get_async_redis_client", new=AsyncMock(return_value=fake)):
            yield fake

    @pytest.fixture
    def job(self):
        job = TranscodeJob(job_id="job_abc", video_uuid="vid", resolutions=(240, 360), options=TranscodeOptions())
        job.mark_running()
        job.subjobs[240].mark_running()
        return job

    @pytest.mark.asyncio
    async def test_round_trip_through_redis(self, redis, job):
        """Test that a mirrored job reads back as a valid API response."""
        await job_tracker.save_job_state(job.to_dict())

        by_id = await job_tracker.get_job_state("vid", "job_abc")
        latest = await job_tracker.get_job_state("vid")

        assert by_id == latest
        assert by_id["error"] is None
        assert by_id["resolutions"] == [240, 360]
        response = JobStatusResponse(**by_id)
        assert response.status == "running"
        assert [s.status for s in response.subjobs] == ["running", "pending"]

    @pytest.mark.asyncio
    async def test_unknown_job(self, redis):
        assert await job_tracker.get_job_state("vid", "job_missing") is None

    @pytest.mark.asyncio
    async def test_delete_job_states(self, redis, job):
        await job_tracker.save_job_state(job.to_dict())

        assert await job_tracker.delete_job_states("vid") == 2
        assert redis.hashes == {}
