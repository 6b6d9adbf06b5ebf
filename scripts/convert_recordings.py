#!/usr/bin/env python3
"""Convert every .webm recording that has no sibling .mp4 yet.

Recovers conversions that failed or were cut short when the app quit.

Usage:
    python scripts/convert_recordings.py [--dry-run] [DIR]
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from capture_backend import find_ffmpeg_binary  # noqa: E402
from recording_store import DEFAULT_RECORDINGS_DIR, convert_webm_to_mp4  # noqa: E402


def pending_recordings(directory: Path):
    """.webm files in *directory* without a matching .mp4, oldest first."""
    return [p for p in sorted(directory.glob("*.webm")) if not p.with_suffix(".mp4").exists()]


async def convert_all(ffmpeg: str, files, dry_run: bool = False) -> dict:
    stats = {"ok": 0, "failed": 0}
    for webm in files:
        if dry_run:
            print(f"  [DRY] {webm.name} -> {webm.with_suffix('.mp4').name}")
            stats["ok"] += 1
            continue
        try:
            mp4 = await convert_webm_to_mp4(ffmpeg, webm)
            print(f"  OK: {webm.name} -> {mp4.name}")
            stats["ok"] += 1
        except Exception as e:
            print(f"  FAILED: {webm.name}: {e}")
            stats["failed"] += 1
    return stats


def main(argv=None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    dry_run = "--dry-run" in args
    positional = [a for a in args if not a.startswith("--")]
    directory = Path(positional[0]).expanduser() if positional else DEFAULT_RECORDINGS_DIR

    if not directory.exists():
        print(f"ERROR: Recordings directory does not exist: {directory}")
        return 1

    ffmpeg = find_ffmpeg_binary()
    if not ffmpeg and not dry_run:
        print("ERROR: ffmpeg not found. Install it with: brew install ffmpeg")
        return 1

    files = pending_recordings(directory)
    print(f"{len(files)} recording(s) to convert in {directory}")
    stats = asyncio.run(convert_all(ffmpeg, files, dry_run=dry_run))

    print(f"\nDone! Converted: {stats['ok']}, Failed: {stats['failed']}")
    if dry_run:
        print("(This was a dry run, nothing was converted.)")
    return 0 if stats["failed"] == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
