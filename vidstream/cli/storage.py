"""
CLI tool for inspecting and repairing stored artifacts.

Usage:
    python -m vidstream.cli prune-storage            # list orphaned playlists/torrents
    python -m vidstream.cli prune-storage --delete   # ...and remove them
    python -m vidstream.cli clean-tmp --max-age-hours 6
    python -m vidstream.cli check-empty 3f1c...      # exit 1 if anything of the video remains
    python -m vidstream.cli retract 3f1c...
    python -m vidstream.cli stats
"""
import argparse
import asyncio
import sys
from typing import List, Optional

from vidstream.core.config import Settings, get_settings
from vidstream.core.exceptions import StorageTeardownFailure
from vidstream.core.logging import operation_logger, setup_logging
from vidstream.database.session import close_db, get_session_factory, init_db
from vidstream.repositories import video_db_repository
from vidstream.services.storage.publisher import StoragePublisher
from vidstream.services.storage.workspace import TempWorkspace, human_size


def _build(settings: Settings):
    workspace = TempWorkspace(settings.tmp_dir)
    return workspace, StoragePublisher(settings, workspace)


async def _known_uuids(settings: Settings) -> set:
    await init_db(settings)
    try:
        async with get_session_factory()() as session:
            return await video_db_repository.list_uuids(session)
    finally:
        await close_db()


@operation_logger("storage_prune")
async def prune_storage(settings: Settings, delete: bool = False) -> int:
    """List (and optionally retract) public artifacts that no video owns."""
    _, publisher = _build(settings)
    known = await _known_uuids(settings)
    orphans = [uuid for uuid in publisher.list_public_videos() if uuid not in known]

    if not orphans:
        print("No orphaned playlists or torrents found.")
        return 0

    print(f"\n{'Video UUID':<40} {'Paths':<8} {'Action':<10}")
    print("=" * 60)
    failures = 0
    for uuid in orphans:
        paths = publisher.residual_paths(uuid)
        action = "kept"
        if delete:
            try:
                await publisher.retract(uuid)
                action = "removed"
            except StorageTeardownFailure as e:
                action = "FAILED"
                failures += 1
                print(f"  {e.message}", file=sys.stderr)
        print(f"{uuid:<40} {len(paths):<8} {action:<10}")

    print(f"\nTotal: {len(orphans)} orphaned video(s)")
    if not delete:
        print("Run with --delete to remove them.")
    return 1 if failures else 0


async def clean_tmp(settings: Settings, max_age_hours: float) -> int:
    workspace, _ = _build(settings)
    result = await workspace.cleanup_old_files(max_age_hours)
    print(
        f"Deleted {result['files_deleted']} file(s), freed {human_size(result['bytes_freed'])}, "
        f"removed {result['dirs_removed']} dir(s) in {result['duration_ms']}ms"
    )
    return 0


async def check_empty(settings: Settings, video_uuid: str) -> int:
    _, publisher = _build(settings)
    remaining = publisher.residual_paths(video_uuid)
    if not remaining:
        print(f"No stored artifacts left for {video_uuid}.")
        return 0
    print(f"{len(remaining)} path(s) still present for {video_uuid}:")
    for path in remaining:
        print(f"  {path}")
    return 1


@operation_logger("storage_retract")
async def retract(settings: Settings, video_uuid: str) -> int:
    _, publisher = _build(settings)
    try:
        result = await publisher.retract(video_uuid)
    except StorageTeardownFailure as e:
        print(e.message, file=sys.stderr)
        for path in e.remaining:
            print(f"  {path}", file=sys.stderr)
        return 1
    print(f"Retracted {video_uuid}: {result}")
    return 0


async def stats(settings: Settings) -> int:
    workspace, publisher = _build(settings)
    tmp = await workspace.get_stats()
    public = publisher.list_public_videos()

    print(f"\nPublic videos: {len(public)}")
    print(f"Temp area:     {tmp['total_files']} file(s), {tmp['total_size_human']}")
    if tmp["by_video"]:
        print(f"\n{'Video UUID':<40} {'Jobs':<6} {'Files':<7} {'Size':<12}")
        print("=" * 68)
        for uuid, info in tmp["by_video"].items():
            print(f"{uuid:<40} {info['jobs']:<6} {info['files']:<7} {info['size_human']:<12}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="python -m vidstream.cli", description="Storage maintenance")
    sub = parser.add_subparsers(dest="command", required=True)

    prune = sub.add_parser("prune-storage", help="Find playlists and torrents of unknown videos")
    prune.add_argument("--delete", action="store_true", help="Remove the orphans")

    tmp = sub.add_parser("clean-tmp", help="Remove old temp files")
    tmp.add_argument("--max-age-hours", type=float, default=None,
                     help="Age threshold (default: temp_max_age_hours setting)")

    check = sub.add_parser("check-empty", help="Verify a deleted video left nothing behind")
    check.add_argument("video_uuid")

    ret = sub.add_parser("retract", help="Remove all stored artifacts of a video")
    ret.add_argument("video_uuid")

    sub.add_parser("stats", help="Show storage usage")
    return parser


def run(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = settings or get_settings()

    if args.command == "prune-storage":
        coro = prune_storage(settings, delete=args.delete)
    elif args.command == "clean-tmp":
        max_age = settings.temp_max_age_hours if args.max_age_hours is None else args.max_age_hours
        coro = clean_tmp(settings, max_age)
    elif args.command == "check-empty":
        coro = check_empty(settings, args.video_uuid)
    elif args.command == "retract":
        coro = retract(settings, args.video_uuid)
    else:
        coro = stats(settings)
    return asyncio.run(coro)


def main() -> None:
    settings = get_settings()
    setup_logging(log_level=settings.log_level, log_dir=settings.log_dir)
    sys.exit(run(settings=settings))
