"""
Public path and URL layout of published HLS artifacts.

    /static/streaming-playlists/hls/{uuid}/master.m3u8
    /static/streaming-playlists/hls/{uuid}/{res}.m3u8
    /static/streaming-playlists/hls/{uuid}/{uuid}-{res}-fragmented.mp4
    /static/streaming-playlists/hls/{uuid}/segments-sha256.json
    /lazy-static/torrents/{uuid}-{res}-hls.torrent

These helpers are pure string builders shared by the scheduler, the descriptor
generator, the publisher and the API.
"""

STATIC_STREAMING_PLAYLISTS_PREFIX = "/static/streaming-playlists"
STATIC_HLS_PREFIX = f"{STATIC_STREAMING_PLAYLISTS_PREFIX}/hls"
LAZY_STATIC_TORRENTS_PREFIX = "/lazy-static/torrents"

MASTER_PLAYLIST_NAME = "master.m3u8"
SEGMENTS_SHA256_NAME = "segments-sha256.json"


def fragmented_file_name(video_uuid: str, resolution: int) -> str:
    return f"{video_uuid}-{resolution}-fragmented.mp4"


def variant_playlist_name(resolution: int) -> str:
    return f"{resolution}.m3u8"


def torrent_file_name(video_uuid: str, resolution: int) -> str:
    return f"{video_uuid}-{resolution}-hls.torrent"


def _join(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def master_playlist_path(video_uuid: str) -> str:
    return f"{STATIC_HLS_PREFIX}/{video_uuid}/{MASTER_PLAYLIST_NAME}"


def master_playlist_url(base_url: str, video_uuid: str) -> str:
    return _join(base_url, master_playlist_path(video_uuid))


def segments_sha256_url(base_url: str, video_uuid: str) -> str:
    return _join(base_url, f"{STATIC_HLS_PREFIX}/{video_uuid}/{SEGMENTS_SHA256_NAME}")


def variant_file_url(base_url: str, video_uuid: str, resolution: int) -> str:
    return _join(base_url, f"{STATIC_HLS_PREFIX}/{video_uuid}/{fragmented_file_name(video_uuid, resolution)}")


def torrent_url(base_url: str, video_uuid: str, resolution: int) -> str:
    return _join(base_url, f"{LAZY_STATIC_TORRENTS_PREFIX}/{torrent_file_name(video_uuid, resolution)}")
