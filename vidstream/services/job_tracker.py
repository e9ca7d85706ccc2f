"""
Redis mirror of transcoding job state.

The scheduler keeps authoritative job state in memory; when `redis_enabled`
is set, every transition is also written to a Redis hash so that other
processes (API replicas, the CLI) can read it:

    job:transcode:{video_uuid}              latest job of the video
    job:transcode:{video_uuid}:{job_id}     a specific job

Nested values (the sub-job list) are stored JSON-encoded.
"""
import json
import logging
from typing import Any, Dict, Optional

from vidstream.core.config import get_settings
from vidstream.core.redis import get_async_redis_client

logger = logging.getLogger(__name__)

JOB_TYPE = "transcode"


def _get_job_key(video_uuid: str, job_id: Optional[str] = None) -> str:
    if job_id:
        return f"job:{JOB_TYPE}:{video_uuid}:{job_id}"
    return f"job:{JOB_TYPE}:{video_uuid}"


def _encode(job_data: Dict[str, Any]) -> Dict[str, str]:
    encoded = {}
    for key, value in job_data.items():
        if isinstance(value, (dict, list)):
            encoded[key] = json.dumps(value, default=str)
        elif value is None:
            encoded[key] = ""
        else:
            encoded[key] = str(value)
    return encoded


def _decode(raw: Dict[str, str]) -> Dict[str, Any]:
    decoded: Dict[str, Any] = {key: (value if value != "" else None) for key, value in raw.items()}
    for key in ("subjobs", "resolutions"):
        if raw.get(key):
            try:
                decoded[key] = json.loads(raw[key])
            except json.JSONDecodeError:
                logger.warning(f"Undecodable '{key}' field in job {raw.get('job_id')}")
    return decoded


async def save_job_state(job_data: Dict[str, Any]) -> None:
    """
    Write a job snapshot under both its own key and the video's latest-job key.

    Args:
        job_data: TranscodeJob.to_dict() output
    """
    settings = get_settings()
    redis = await get_async_redis_client()
    mapping = _encode(job_data)
    video_uuid = job_data["video_uuid"]

    for key in (_get_job_key(video_uuid, job_data["job_id"]), _get_job_key(video_uuid)):
        await redis.hset(key, mapping=mapping)
        await redis.expire(key, settings.job_result_ttl)

    logger.debug(f"Mirrored job {job_data['job_id']} ({job_data['status']}) to Redis")


async def get_job_state(video_uuid: str, job_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Read a mirrored job; without job_id the video's latest job is returned.

    Returns:
        Job dictionary or None if not found
    """
    redis = await get_async_redis_client()
    raw = await redis.hgetall(_get_job_key(video_uuid, job_id))
    if not raw:
        return None
    return _decode(raw)


async def delete_job_states(video_uuid: str) -> int:
    """
    Delete every mirrored job of a video.

    Returns:
        Number of keys deleted
    """
    redis = await get_async_redis_client()
    keys = [_get_job_key(video_uuid)]
    async for key in redis.scan_iter(match=f"{_get_job_key(video_uuid)}:*"):
        keys.append(key)
    deleted = await redis.delete(*keys)
    if deleted:
        logger.info(f"Deleted {deleted} mirrored job key(s) for {video_uuid}")
    return deleted
