"""
Peer descriptor generation: one BitTorrent v1 torrent and magnet URI per variant.

The info dictionary carries the variant file's name, length, piece layout and
the ordered list of segment SHA-256 digests. Nothing time-dependent goes into
the torrent, so the same bytes always produce the same info-hash, on any
instance and across restarts.
"""
import asyncio
import hashlib
import logging
from pathlib import Path
from typing import List, Optional, Sequence
from urllib.parse import quote

from vidstream.core.config import Settings, get_settings
from vidstream.core.exceptions import DescriptorGenerationFailure
from vidstream.models.domain import PeerDescriptor, VariantFile
from vidstream.utils import bencode
from vidstream.utils.url import torrent_url, variant_file_url

logger = logging.getLogger(__name__)

CREATED_BY = "vidstream"


def build_magnet_uri(
    info_hash: str,
    name: str,
    trackers: Sequence[str] = (),
    web_seeds: Sequence[str] = (),
    descriptor_url: Optional[str] = None,
) -> str:
    """magnet:?xs=<torrent>&xt=urn:btih:<hash>&dn=<name>&tr=...&ws=..."""
    params: List[str] = []
    if descriptor_url:
        params.append(f"xs={quote(descriptor_url, safe='')}")
    params.append(f"xt=urn:btih:{info_hash}")
    params.append(f"dn={quote(name, safe='')}")
    params.extend(f"tr={quote(tracker, safe='')}" for tracker in trackers)
    params.extend(f"ws={quote(seed, safe='')}" for seed in web_seeds)
    return "magnet:?" + "&".join(params)


class PeerDescriptorGenerator:
    """Builds torrent bytes, info-hash and magnet URI for a variant file."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def describe(self, video_uuid: str, variant: VariantFile, file_path: Path) -> PeerDescriptor:
        """
        Describe a variant for peer distribution.

        Raises:
            DescriptorGenerationFailure: Empty or incomplete segment hash list,
                or the variant file cannot be read
        """
        if not variant.segments:
            raise DescriptorGenerationFailure(variant.resolution, "no segment hashes")
        if any(not segment.sha256 for segment in variant.segments):
            raise DescriptorGenerationFailure(
                variant.resolution, "segment without a hash", variant.segment_count
            )

        piece_length = self.settings.torrent_piece_length
        try:
            pieces, length = await asyncio.to_thread(_piece_hashes, file_path, piece_length)
        except OSError as e:
            raise DescriptorGenerationFailure(variant.resolution, f"{file_path}: {e}", variant.segment_count) from e

        if length != variant.size:
            raise DescriptorGenerationFailure(
                variant.resolution,
                f"file size {length} does not match variant size {variant.size}",
                variant.segment_count,
            )

        info = {
            "name": variant.file_name,
            "length": length,
            "piece length": piece_length,
            "pieces": pieces,
            "segments sha256": b"".join(bytes.fromhex(s.sha256) for s in variant.segments),
        }
        info_hash = hashlib.sha1(bencode.encode(info)).hexdigest()

        base_url = self.settings.webserver_url
        announce = tuple(self.settings.get_tracker_urls())
        web_seed = variant_file_url(base_url, video_uuid, variant.resolution)
        descriptor_url = torrent_url(base_url, video_uuid, variant.resolution)

        torrent = {
            "info": info,
            "created by": CREATED_BY,
            "url-list": [web_seed],
        }
        if announce:
            torrent["announce"] = announce[0]
            torrent["announce-list"] = [[tracker] for tracker in announce]

        magnet_uri = build_magnet_uri(
            info_hash,
            variant.file_name,
            trackers=announce,
            web_seeds=(web_seed,),
            descriptor_url=descriptor_url,
        )

        logger.debug(f"Described {video_uuid} {variant.label}: info_hash={info_hash}")

        return PeerDescriptor(
            info_hash=info_hash,
            name=variant.file_name,
            announce=announce,
            url_list=(web_seed,),
            torrent_bytes=bencode.encode(torrent),
            magnet_uri=magnet_uri,
            torrent_url=descriptor_url,
        )


def _piece_hashes(path: Path, piece_length: int):
    """Concatenated SHA-1 digests of each piece, and the total length."""
    digests = []
    total = 0
    with open(path, "rb") as f:
        while True:
            piece = f.read(piece_length)
            if not piece:
                break
            digests.append(hashlib.sha1(piece).digest())
            total += len(piece)
    return b"".join(digests), total
