"""
Persistence for finished recordings: webm file, JSON metadata sidecar and
background conversion to mp4.
"""
import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, List, Optional, Set

import aiofiles

from capture_session import RecordingMeta
from recorder_utils import build_recording_filename, run_blocking_io

DEFAULT_RECORDINGS_DIR = Path.home() / "Movies" / "MeetingRecordings"

ConversionListener = Callable[[Optional[Path], RecordingMeta], None]


async def convert_webm_to_mp4(ffmpeg: str, source: Path, target: Optional[Path] = None,
                              logger: Optional[logging.Logger] = None) -> Path:
    """
    Re-encode *source* into an mp4 beside it (or at *target*).

    Raises:
        RuntimeError: ffmpeg exited with a non-zero status.
    """
    log = logger or logging.getLogger(__name__)
    target = target or source.with_suffix(".mp4")
    cmd = [
        ffmpeg, "-y", "-hide_banner", "-loglevel", "error",
        "-i", str(source),
        "-c:v", "libx264", "-preset", "veryfast", "-crf", "23",
        "-c:a", "aac", "-b:a", "128k",
        "-movflags", "faststart",
        str(target),
    ]
    log.debug(f"Converting {source.name} -> {target.name}")
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await proc.communicate()
    if proc.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip().splitlines()
        raise RuntimeError(
            f"ffmpeg exited with {proc.returncode}: {detail[-1] if detail else 'no output'}"
        )
    return target


class RecordingSink:
    """
    Writes finalized recordings to ``recordings_dir``.

    ``save()`` returns once the webm and its ``.json`` sidecar are on disk.
    When conversion is enabled an mp4 is produced afterwards on a background
    task; conversion listeners receive ``(mp4_path, meta)`` on success and
    ``(None, meta)`` on failure.
    """

    def __init__(self, recordings_dir: Optional[Path] = None,
                 ffmpeg: Optional[str] = None,
                 convert_to_mp4: bool = True,
                 logger: Optional[logging.Logger] = None):
        self.recordings_dir = Path(recordings_dir).expanduser() if recordings_dir else DEFAULT_RECORDINGS_DIR
        self.ffmpeg = ffmpeg
        self.convert_to_mp4 = convert_to_mp4 and bool(ffmpeg)
        self._listeners: List[ConversionListener] = []
        self._pending: Set[asyncio.Task] = set()

        if logger:
            self.logger = logger
        else:
            self.logger = logging.getLogger(__name__)
            if not self.logger.hasHandlers():
                self.logger.addHandler(logging.NullHandler())

    def add_conversion_listener(self, listener: ConversionListener):
        self._listeners.append(listener)

    @property
    def pending_conversions(self) -> int:
        return len(self._pending)

    async def save(self, payload: bytes, meta: RecordingMeta) -> Path:
        """Write *payload* and its metadata; returns the webm path."""
        await run_blocking_io(self.recordings_dir.mkdir, parents=True, exist_ok=True)

        webm_path = await self._write_new_recording(payload, meta)
        meta_path = webm_path.with_suffix(".json")
        self.logger.info(f"Saved recording to {webm_path} ({len(payload)} bytes)")

        sidecar = meta.to_dict()
        sidecar["file"] = webm_path.name
        sidecar["bytes"] = len(payload)
        async with aiofiles.open(meta_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(sidecar, indent=2))

        if self.convert_to_mp4:
            task = asyncio.get_running_loop().create_task(self._convert(webm_path, meta))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return webm_path

    async def _write_new_recording(self, payload: bytes, meta: RecordingMeta) -> Path:
        """Write *payload* under the first free name; existing recordings are never replaced."""
        sequence = 1
        while True:
            filename = build_recording_filename(meta.app_key, meta.started_at, sequence=sequence)
            webm_path = self.recordings_dir / filename
            sequence += 1
            if webm_path.with_suffix(".mp4").exists() or webm_path.with_suffix(".json").exists():
                continue
            try:
                async with aiofiles.open(webm_path, "xb") as f:
                    await f.write(payload)
            except FileExistsError:
                continue
            return webm_path

    async def _convert(self, webm_path: Path, meta: RecordingMeta):
        mp4_path: Optional[Path] = None
        try:
            mp4_path = await convert_webm_to_mp4(self.ffmpeg, webm_path, logger=self.logger)
            self.logger.info(f"Converted recording to {mp4_path}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"MP4 conversion failed for {webm_path.name}: {e}")
        for listener in list(self._listeners):
            try:
                listener(mp4_path, meta)
            except Exception as e:
                self.logger.error(f"Conversion listener failed: {e}", exc_info=True)

    async def wait_for_conversions(self):
        """Wait for every scheduled conversion to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
