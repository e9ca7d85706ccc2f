from vidstream.utils import url

UUID = "3f1c2d4e-0000-4000-8000-000000000001"


def test_public_paths():
    """Test the published path layout."""
    assert url.master_playlist_path(UUID) == f"/static/streaming-playlists/hls/{UUID}/master.m3u8"
    assert url.fragmented_file_name(UUID, 720) == f"{UUID}-720-fragmented.mp4"
    assert url.variant_playlist_name(0) == "0.m3u8"
    assert url.torrent_file_name(UUID, 240) == f"{UUID}-240-hls.torrent"


def test_absolute_urls_strip_trailing_slash():
    base = "https://videos.example.org/"
    assert url.master_playlist_url(base, UUID) == (
        f"https://videos.example.org/static/streaming-playlists/hls/{UUID}/master.m3u8"
    )
    assert url.segments_sha256_url(base, UUID).endswith(f"/hls/{UUID}/segments-sha256.json")
    assert url.variant_file_url(base, UUID, 360).endswith(f"/hls/{UUID}/{UUID}-360-fragmented.mp4")
    assert url.torrent_url(base, UUID, 360) == (
        f"https://videos.example.org/lazy-static/torrents/{UUID}-360-hls.torrent"
    )
