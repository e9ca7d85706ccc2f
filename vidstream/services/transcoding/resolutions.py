"""
Which resolutions to produce for a source.
"""
from typing import List, Optional, Sequence

from vidstream.core.config import Settings, get_settings
from vidstream.models.domain import AUDIO_RESOLUTION, SourceMedia, validate_resolution


def to_even(value: int) -> int:
    return value - (value % 2)


def compute_resolutions(
    source: SourceMedia,
    settings: Optional[Settings] = None,
    allow_upscale: Optional[bool] = None,
) -> List[int]:
    """
    Effective resolution set for a new upload.

    - Audio-only sources: the audio variant plus the configured companion
      resolutions that are also enabled.
    - Video sources: the source's own height plus every enabled resolution
      below it (or all enabled resolutions when upscaling is allowed).
    """
    settings = settings or get_settings()
    configured = sorted({validate_resolution(r) for r in settings.transcoding_resolutions if r > 0})

    if source.is_audio_only:
        companions = [r for r in settings.audio_companion_resolutions if r in configured]
        return [AUDIO_RESOLUTION] + sorted(companions)

    upscale = settings.allow_upscale if allow_upscale is None else allow_upscale
    source_height = to_even(source.height)
    resolutions = {r for r in configured if upscale or r < source_height}
    if source_height > 0:
        resolutions.add(source_height)
    return sorted(resolutions)


def normalize_requested(resolutions: Sequence[int]) -> List[int]:
    """Validate an explicit resolution request, dropping duplicates."""
    if not resolutions:
        raise ValueError("At least one resolution is required")
    return sorted({validate_resolution(r) for r in resolutions})
