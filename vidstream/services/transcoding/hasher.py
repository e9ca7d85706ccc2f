"""
Segment integrity hashing.

Every published segment gets the SHA-256 of its exact bytes. Players in the
peer network use the published segments-sha256.json map to verify what they
receive from other peers:

    {
        "<uuid>-<res>-fragmented.mp4": {
            "<start>-<end>": "<sha256 hex>",
            ...
        }
    }

The byte range key is inclusive on both ends.
"""
import hashlib
import json
import logging
from pathlib import Path
from typing import Dict, Iterable

import aiofiles

from vidstream.core.exceptions import IntegrityComputationFailure
from vidstream.models.domain import VariantFile

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 1024 * 1024


def hash_segment(data: bytes) -> str:
    """SHA-256 hex digest of a segment's bytes."""
    return hashlib.sha256(data).hexdigest()


async def hash_file_range(
    path: Path,
    offset: int,
    length: int,
    resolution: int = 0,
    segments_produced: int = 0,
) -> str:
    """
    Hash `length` bytes of `path` starting at `offset`.

    Raises:
        IntegrityComputationFailure: On any read error or short read
    """
    digest = hashlib.sha256()
    remaining = length
    try:
        async with aiofiles.open(path, "rb") as f:
            await f.seek(offset)
            while remaining > 0:
                chunk = await f.read(min(READ_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                digest.update(chunk)
                remaining -= len(chunk)
    except OSError as e:
        raise IntegrityComputationFailure(resolution, f"{path}: {e}", segments_produced) from e

    if remaining:
        raise IntegrityComputationFailure(
            resolution,
            f"{path}: short read at {offset}, {remaining} of {length} bytes missing",
            segments_produced,
        )
    return digest.hexdigest()


def build_segments_sha256_map(variants: Iterable[VariantFile]) -> Dict[str, Dict[str, str]]:
    """Map of file name -> byte range -> digest, in resolution then segment order."""
    result: Dict[str, Dict[str, str]] = {}
    for variant in sorted(variants, key=lambda v: v.resolution):
        result[variant.file_name] = {
            segment.range_key: segment.sha256 for segment in variant.segments
        }
    return result


def render_segments_sha256(variants: Iterable[VariantFile]) -> str:
    """Serialized segments-sha256.json body."""
    return json.dumps(build_segments_sha256_map(variants), indent=2) + "\n"
