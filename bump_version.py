#!/usr/bin/env python3
"""
Bump the Meeting Recorder version stored in version.py.

Usage:
    python bump_version.py                # print the current version
    python bump_version.py patch          # 0.3.0 -> 0.3.1
    python bump_version.py minor          # 0.3.1 -> 0.4.0
    python bump_version.py major          # 0.4.0 -> 1.0.0
    python bump_version.py set X.Y.Z      # set an explicit version
"""
import argparse
import re
import sys
from pathlib import Path
from typing import Tuple

VERSION_FILE = Path(__file__).parent / "version.py"
FIELDS = ("VERSION_MAJOR", "VERSION_MINOR", "VERSION_PATCH")


def read_version(path: Path = VERSION_FILE) -> Tuple[int, int, int]:
    content = path.read_text()
    return tuple(int(re.search(rf"{name} = (\d+)", content).group(1)) for name in FIELDS)


def write_version(version: Tuple[int, int, int], path: Path = VERSION_FILE):
    content = path.read_text()
    for name, value in zip(FIELDS, version):
        content = re.sub(rf"{name} = \d+", f"{name} = {value}", content)
    path.write_text(content)


def next_version(current: Tuple[int, int, int], part: str) -> Tuple[int, int, int]:
    major, minor, patch = current
    if part == "major":
        return (major + 1, 0, 0)
    if part == "minor":
        return (major, minor + 1, 0)
    if part == "patch":
        return (major, minor, patch + 1)
    raise ValueError(f"Unknown bump type: {part}")


def parse_version(text: str) -> Tuple[int, int, int]:
    parts = text.split(".")
    if len(parts) != 3 or not all(p.isdigit() for p in parts):
        raise ValueError("Version must be in X.Y.Z format")
    return tuple(int(p) for p in parts)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Bump the Meeting Recorder version.")
    parser.add_argument("action", nargs="?", choices=["major", "minor", "patch", "set"])
    parser.add_argument("value", nargs="?", help="explicit X.Y.Z version for 'set'")
    args = parser.parse_args(argv)

    current = read_version()
    old = ".".join(map(str, current))
    if args.action is None:
        print(f"Current version: {old}")
        return 0

    try:
        if args.action == "set":
            if not args.value:
                parser.error("'set' needs a version")
            new = parse_version(args.value)
        else:
            new = next_version(current, args.action)
    except ValueError as e:
        print(e, file=sys.stderr)
        return 1

    write_version(new)
    print(f"Version: {old} -> {'.'.join(map(str, new))}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
