"""
Shared helpers for the meeting recorder core.
"""
import asyncio
import functools
import re
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar


T = TypeVar("T")


async def run_blocking_io(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Runs a blocking function in a thread, returning its result."""
    loop = asyncio.get_running_loop()
    pfunc = functools.partial(func, *args, **kwargs)
    return await loop.run_in_executor(None, pfunc)


def recording_timestamp(moment: Optional[datetime] = None) -> str:
    """
    Filesystem-safe timestamp used for recording file names.

    ``2024-05-01T14:03:22.512`` becomes ``2024-05-01T14-03-22`` (colons
    replaced, fractional seconds dropped).
    """
    moment = moment or datetime.now()
    return moment.replace(microsecond=0).isoformat().replace(":", "-")


def slugify(value: Optional[str], fallback: str = "unknown") -> str:
    """Lowercase, alphanumeric-and-underscore version of *value*."""
    if not value:
        return fallback
    slug = "".join(c if c.isalnum() else "_" for c in value).lower()
    slug = re.sub(r"_+", "_", slug).strip("_")
    return slug or fallback


def build_recording_filename(app_key: Optional[str], moment: Optional[datetime] = None,
                             extension: str = "webm", sequence: int = 1) -> str:
    """
    ``<timestamp>_<app>.<extension>``, e.g. ``2024-05-01T14-03-22_zoom.webm``.

    A *sequence* above 1 is appended to tell apart recordings started in the
    same second: ``2024-05-01T14-03-22_zoom_2.webm``.
    """
    suffix = f"_{sequence}" if sequence > 1 else ""
    return f"{recording_timestamp(moment)}_{slugify(app_key)}{suffix}.{extension}"
