"""
HLS playlist generation for published variants.

Each variant is a single fragmented MP4 file; the variant playlist addresses
its init section and segments by byte range:

    #EXTM3U
    #EXT-X-VERSION:7
    #EXT-X-TARGETDURATION:4
    #EXT-X-MEDIA-SEQUENCE:0
    #EXT-X-PLAYLIST-TYPE:VOD
    #EXT-X-INDEPENDENT-SEGMENTS
    #EXT-X-MAP:URI="<uuid>-720-fragmented.mp4",BYTERANGE="1234@0"
    #EXTINF:4.000000,
    #EXT-X-BYTERANGE:56789@1234
    <uuid>-720-fragmented.mp4
    ...
    #EXT-X-ENDLIST

The master playlist lists every variant in ascending resolution order. Output
is a pure function of the variant records, so unchanged variants always render
identical lines.
"""
import hashlib
import math
from typing import Dict, Iterable, List, Sequence

from vidstream.core.exceptions import ManifestValidationError
from vidstream.models.domain import EncodedSegment, VariantFile
from vidstream.utils.url import variant_playlist_name

VARIANT_PLAYLIST_VERSION = 7
MASTER_PLAYLIST_VERSION = 3


def validate_segment_sequence(segments: Sequence[EncodedSegment]) -> None:
    """Segments must start at 0 and increase by one with no gap or duplicate."""
    if not segments:
        raise ManifestValidationError("no segments")
    for expected, segment in enumerate(segments):
        if segment.index != expected:
            raise ManifestValidationError(
                f"expected segment {expected}, got {segment.index}"
            )


class ManifestBuilder:
    """Renders variant and master playlists."""

    def __init__(self, version: int = VARIANT_PLAYLIST_VERSION):
        self.version = version

    def build_variant_playlist(self, variant: VariantFile) -> str:
        validate_segment_sequence(variant.segments)

        target_duration = int(math.ceil(max(s.duration for s in variant.segments)))
        lines = [
            "#EXTM3U",
            f"#EXT-X-VERSION:{self.version}",
            f"#EXT-X-TARGETDURATION:{target_duration}",
            "#EXT-X-MEDIA-SEQUENCE:0",
            "#EXT-X-PLAYLIST-TYPE:VOD",
            "#EXT-X-INDEPENDENT-SEGMENTS",
        ]
        if variant.init_length > 0:
            lines.append(
                f'#EXT-X-MAP:URI="{variant.file_name}",'
                f'BYTERANGE="{variant.init_length}@{variant.init_offset}"'
            )

        for segment in variant.segments:
            lines.append(f"#EXTINF:{segment.duration:.6f},")
            lines.append(f"#EXT-X-BYTERANGE:{segment.byte_length}@{segment.byte_offset}")
            lines.append(variant.file_name)

        lines.append("#EXT-X-ENDLIST")
        return "\n".join(lines) + "\n"

    def build_master_playlist(self, variants: Iterable[VariantFile]) -> str:
        ordered = sorted(variants, key=lambda v: v.resolution)
        if not ordered:
            raise ManifestValidationError("master playlist needs at least one variant")

        lines = ["#EXTM3U", f"#EXT-X-VERSION:{MASTER_PLAYLIST_VERSION}"]
        for variant in ordered:
            lines.append(self._stream_inf(variant))
            lines.append(variant_playlist_name(variant.resolution))
        return "\n".join(lines) + "\n"

    @staticmethod
    def _stream_inf(variant: VariantFile) -> str:
        attributes = [f"BANDWIDTH={variant.bandwidth}"]
        if not variant.is_audio and variant.width and variant.height:
            attributes.append(f"RESOLUTION={variant.width}x{variant.height}")
        if not variant.is_audio and variant.fps:
            attributes.append(f"FRAME-RATE={variant.fps:.3f}")
        if variant.codecs:
            attributes.append(f'CODECS="{variant.codecs}"')
        return "#EXT-X-STREAM-INF:" + ",".join(attributes)

    @staticmethod
    def merge_variants(
        existing: Iterable[VariantFile],
        fresh: Iterable[VariantFile],
    ) -> List[VariantFile]:
        """Fresh variants replace same-resolution ones; the others are kept as-is."""
        merged: Dict[int, VariantFile] = {v.resolution: v for v in existing}
        merged.update({v.resolution: v for v in fresh})
        return [merged[resolution] for resolution in sorted(merged)]


def playlist_sha256(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
