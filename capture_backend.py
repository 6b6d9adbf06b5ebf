"""
Screen + microphone capture through an ffmpeg AVFoundation subprocess,
plus the macOS media permission queries the recorder needs.
"""
import asyncio
import logging
import os
import re
import shutil
import subprocess
import sys
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from capture_session import CaptureFailure, CaptureSource, NoSourcesAvailable, PermissionDenied
from recorder_utils import run_blocking_io

# Quartz/CoreGraphics: window list and Screen Recording permission
try:
    from Quartz import (
        CGWindowListCopyWindowInfo,
        kCGWindowListOptionOnScreenOnly,
        kCGWindowListExcludeDesktopElements,
        kCGNullWindowID,
        CGPreflightScreenCaptureAccess,
        CGRequestScreenCaptureAccess,
    )
    _HAS_QUARTZ = True
except ImportError:
    _HAS_QUARTZ = False

try:
    from AVFoundation import AVCaptureDevice, AVMediaTypeAudio
    _HAS_AVFOUNDATION = True
except ImportError:
    _HAS_AVFOUNDATION = False

try:
    from ApplicationServices import AXIsProcessTrusted
    _HAS_AX = True
except ImportError:
    _HAS_AX = False

logger = logging.getLogger("meeting_recorder")

SCREEN_DEVICE_PATTERN = re.compile(r"capture screen (\d+)", re.IGNORECASE)
DEVICE_LINE_PATTERN = re.compile(r"\[(\d+)\]\s+(.+)$")

# AVAuthorizationStatus values
_MIC_STATUS_NAMES = {0: "not-determined", 1: "restricted", 2: "denied", 3: "granted"}

SCREEN_PERMISSION_GUIDANCE = (
    "Screen recording access denied. Enable it in System Settings > "
    "Privacy & Security > Screen Recording, then restart the app."
)
MICROPHONE_PERMISSION_GUIDANCE = (
    "Microphone access denied. Enable it in System Settings > "
    "Privacy & Security > Microphone."
)


def find_ffmpeg_binary() -> Optional[str]:
    """Locate the ffmpeg binary.

    Search order:
      1. bin/ffmpeg next to this file (dev mode)
      2. Bundled in the app's Resources directory
      3. On $PATH
      4. Homebrew default prefixes
    """
    local_bin = Path(__file__).resolve().parent / "bin" / "ffmpeg"
    if local_bin.is_file() and os.access(local_bin, os.X_OK):
        return str(local_bin)

    if getattr(sys, "frozen", False):
        bundled = Path(sys.executable).parent.parent / "Resources" / "bin" / "ffmpeg"
        if bundled.is_file() and os.access(bundled, os.X_OK):
            return str(bundled)

    found = shutil.which("ffmpeg")
    if found:
        return found

    for candidate in ("/opt/homebrew/bin/ffmpeg", "/usr/local/bin/ffmpeg"):
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate

    return None


def parse_avfoundation_devices(listing: str) -> Tuple[List[Tuple[int, str]], List[Tuple[int, str]]]:
    """Split ``ffmpeg -list_devices`` stderr into (video_devices, audio_devices)."""
    video: List[Tuple[int, str]] = []
    audio: List[Tuple[int, str]] = []
    section: Optional[List[Tuple[int, str]]] = None
    for line in listing.splitlines():
        if "AVFoundation video devices" in line:
            section = video
            continue
        if "AVFoundation audio devices" in line:
            section = audio
            continue
        if section is None:
            continue
        match = DEVICE_LINE_PATTERN.search(line)
        if match:
            section.append((int(match.group(1)), match.group(2).strip()))
    return video, audio


def list_avfoundation_devices(ffmpeg: str) -> Tuple[List[Tuple[int, str]], List[Tuple[int, str]]]:
    result = subprocess.run(
        [ffmpeg, "-hide_banner", "-f", "avfoundation", "-list_devices", "true", "-i", ""],
        check=False,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        timeout=15,
    )
    return parse_avfoundation_devices(result.stderr)


def _list_windows() -> List[CaptureSource]:
    """Return on-screen, titled, normal-layer windows as capture sources."""
    if not _HAS_QUARTZ:
        return []
    sources: List[CaptureSource] = []
    try:
        options = kCGWindowListOptionOnScreenOnly | kCGWindowListExcludeDesktopElements
        window_list = CGWindowListCopyWindowInfo(options, kCGNullWindowID) or []
    except Exception as e:
        logger.warning(f"Window listing failed: {e}")
        return sources
    for win in window_list:
        if win.get("kCGWindowLayer", 0) != 0:
            continue
        title = (win.get("kCGWindowName", "") or "").strip()
        number = win.get("kCGWindowNumber")
        if title and number is not None:
            sources.append(CaptureSource(id=f"window:{number}", name=title, kind="window"))
    return sources


def has_screen_capture_access() -> Optional[bool]:
    """True/False from CoreGraphics, None when the API is unavailable."""
    if not _HAS_QUARTZ:
        return None
    try:
        return bool(CGPreflightScreenCaptureAccess())
    except Exception as e:
        logger.warning(f"Screen capture permission check failed: {e}")
        return None


def request_screen_capture_access() -> bool:
    """Show the OS Screen Recording prompt (once per app install)."""
    if not _HAS_QUARTZ:
        return False
    return bool(CGRequestScreenCaptureAccess())


def get_permission_status() -> Dict[str, str]:
    """Return ``{"screen", "microphone", "accessibility"}`` statuses.

    Each value is ``granted``, ``denied``, ``not-determined``, ``restricted``
    or ``unknown`` when the platform API is missing or the query failed.
    """
    screen_access = has_screen_capture_access()
    screen = "unknown" if screen_access is None else ("granted" if screen_access else "denied")

    microphone = "unknown"
    if _HAS_AVFOUNDATION:
        try:
            raw_status = int(AVCaptureDevice.authorizationStatusForMediaType_(AVMediaTypeAudio))
            microphone = _MIC_STATUS_NAMES.get(raw_status, "unknown")
        except Exception as e:
            logger.warning(f"Microphone permission check failed: {e}")

    accessibility = "unknown"
    if _HAS_AX:
        try:
            accessibility = "granted" if AXIsProcessTrusted() else "denied"
        except Exception as e:
            logger.warning(f"Accessibility permission check failed: {e}")

    return {"screen": screen, "microphone": microphone, "accessibility": accessibility}


async def request_microphone_access() -> str:
    """Prompt for microphone access; returns ``granted`` or ``denied``.

    Raises:
        PermissionDenied: AVFoundation is not available to ask.
    """
    if not _HAS_AVFOUNDATION:
        raise PermissionDenied("Microphone access cannot be requested on this platform.")

    loop = asyncio.get_running_loop()
    answer: asyncio.Future = loop.create_future()

    def completion(granted):
        loop.call_soon_threadsafe(lambda: answer.done() or answer.set_result(bool(granted)))

    AVCaptureDevice.requestAccessForMediaType_completionHandler_(AVMediaTypeAudio, completion)
    granted = await answer
    return "granted" if granted else "denied"


class MediaTrack:
    """One audio or video input of an ffmpeg capture process."""

    def __init__(self, kind: str, device_index: int, stream: "FfmpegStream"):
        self.kind = kind
        self.device_index = device_index
        self._stream = stream
        self.stopped = False

    def stop(self):
        if self.stopped:
            return
        self.stopped = True
        self._stream._on_track_stopped()


class FfmpegStream:
    """
    A running ``ffmpeg -f avfoundation`` process muxing webm to stdout.

    Stdout is read on a worker thread into a buffer; the event loop drains
    the buffer every ``timeslice`` seconds and hands the bytes to ``on_data``.
    ``stop()`` asks ffmpeg to quit gracefully so the webm is finalized, and
    ``on_stopped`` fires once stdout is exhausted and the process has exited.
    """

    def __init__(self, ffmpeg: str, video_index: Optional[int], audio_index: Optional[int],
                 framerate: int = 30, logger: Optional[logging.Logger] = None):
        self.ffmpeg = ffmpeg
        self.video_index = video_index
        self.audio_index = audio_index
        self.framerate = framerate
        self.logger = logger or logging.getLogger("meeting_recorder")

        self.tracks: List[MediaTrack] = []
        if video_index is not None:
            self.tracks.append(MediaTrack("video", video_index, self))
        if audio_index is not None:
            self.tracks.append(MediaTrack("audio", audio_index, self))

        self.proc: Optional[subprocess.Popen] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._buffer = bytearray()
        self._buffer_lock = threading.Lock()
        self._reader_thread: Optional[threading.Thread] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._stderr_lines: List[str] = []
        self._flush_task: Optional[asyncio.Task] = None
        self._stop_requested = False
        self._finished = False

        self._on_data: Optional[Callable[[bytes], None]] = None
        self._on_error: Optional[Callable[[BaseException], None]] = None
        self._on_stopped: Optional[Callable[[], None]] = None

    def build_command(self) -> List[str]:
        video = str(self.video_index) if self.video_index is not None else "none"
        audio = str(self.audio_index) if self.audio_index is not None else "none"
        cmd = [
            self.ffmpeg,
            "-hide_banner",
            "-loglevel", "error",
            "-f", "avfoundation",
            "-framerate", str(self.framerate),
            "-capture_cursor", "1",
            "-i", f"{video}:{audio}",
        ]
        if self.video_index is not None:
            cmd += ["-c:v", "libvpx", "-deadline", "realtime", "-cpu-used", "8", "-b:v", "2M"]
        if self.audio_index is not None:
            cmd += ["-c:a", "libopus", "-b:a", "128k"]
        cmd += ["-f", "webm", "pipe:1"]
        return cmd

    def start(self, timeslice: float,
              on_data: Callable[[bytes], None],
              on_error: Callable[[BaseException], None],
              on_stopped: Callable[[], None]):
        self._loop = asyncio.get_running_loop()
        self._on_data = on_data
        self._on_error = on_error
        self._on_stopped = on_stopped

        cmd = self.build_command()
        self.logger.info(f"Launching capture: {' '.join(cmd)}")
        self.proc = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        # Drain stderr in background so the pipe doesn't fill and block
        self._stderr_thread = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_thread.start()
        self._reader_thread = threading.Thread(target=self._read_stdout, daemon=True)
        self._reader_thread.start()
        self._flush_task = self._loop.create_task(self._flush_periodically(timeslice))

    def _drain_stderr(self):
        try:
            for raw_line in self.proc.stderr:
                line = raw_line.decode("utf-8", errors="replace").rstrip()
                self._stderr_lines.append(line)
        except (ValueError, OSError):
            pass

    def _read_stdout(self):
        try:
            while True:
                data = self.proc.stdout.read1(64 * 1024)
                if not data:
                    break
                with self._buffer_lock:
                    self._buffer.extend(data)
        except (ValueError, OSError) as e:
            self.logger.debug(f"Capture stdout closed: {e}")
        returncode = self.proc.wait()
        self._loop.call_soon_threadsafe(self._finish, returncode)

    async def _flush_periodically(self, timeslice: float):
        while True:
            await asyncio.sleep(timeslice)
            self._emit()

    def _emit(self):
        with self._buffer_lock:
            if not self._buffer:
                return
            chunk = bytes(self._buffer)
            self._buffer.clear()
        if self._on_data is not None:
            self._on_data(chunk)

    def request_flush(self):
        """Emit whatever is buffered right now instead of waiting for the next tick."""
        self._emit()

    def stop(self):
        """Ask ffmpeg to quit; ``on_stopped`` follows once it has exited."""
        if self._stop_requested:
            return
        self._stop_requested = True
        self._send_quit()

    def _send_quit(self):
        if self.proc is None or self.proc.poll() is not None:
            return
        try:
            self.proc.stdin.write(b"q")
            self.proc.stdin.flush()
            self.proc.stdin.close()
        except (BrokenPipeError, ValueError, OSError):
            self.proc.terminate()
        if self._loop is not None:
            self._loop.call_later(5.0, self._kill_if_running)

    def _kill_if_running(self):
        if self.proc is not None and self.proc.poll() is None:
            self.logger.warning("Capture process did not exit after quit request; killing")
            self.proc.kill()

    def _on_track_stopped(self):
        # All inputs share one process, so it ends when the last track is stopped.
        if all(track.stopped for track in self.tracks):
            self._stop_requested = True
            self._send_quit()

    def _finish(self, returncode: int):
        if self._finished:
            return
        self._finished = True
        if self._flush_task is not None:
            self._flush_task.cancel()
            self._flush_task = None
        self._emit()

        if returncode != 0 and not self._stop_requested and self._on_error is not None:
            detail = self._stderr_lines[-1] if self._stderr_lines else f"exit code {returncode}"
            self._on_error(CaptureFailure(f"ffmpeg exited unexpectedly: {detail}"))
        if self._on_stopped is not None:
            self._on_stopped()


class FfmpegCaptureBackend:
    """
    Media capture backend built on ffmpeg's AVFoundation input.

    Screen sources map to AVFoundation "Capture screen N" devices. Window
    sources are recorded through the main screen since AVFoundation cannot
    capture a single window. Audio comes from the configured input device
    (first match on ``audio_device_hint``) or the first audio device.
    """

    def __init__(self, ffmpeg: Optional[str] = None, framerate: int = 30,
                 audio_device_hint: Optional[str] = None,
                 logger: Optional[logging.Logger] = None):
        self.ffmpeg = ffmpeg or find_ffmpeg_binary()
        self.framerate = framerate
        self.audio_device_hint = audio_device_hint
        self.logger = logger or logging.getLogger("meeting_recorder")

    def _require_ffmpeg(self) -> str:
        if not self.ffmpeg:
            raise CaptureFailure("ffmpeg was not found. Install it with: brew install ffmpeg")
        return self.ffmpeg

    async def _devices(self) -> Tuple[List[Tuple[int, str]], List[Tuple[int, str]]]:
        return await run_blocking_io(list_avfoundation_devices, self._require_ffmpeg())

    async def list_sources(self) -> List[CaptureSource]:
        """Screens first (from AVFoundation), then titled on-screen windows."""
        video_devices, _ = await self._devices()
        sources: List[CaptureSource] = []
        for _, name in video_devices:
            match = SCREEN_DEVICE_PATTERN.search(name)
            if match:
                screen_number = int(match.group(1))
                sources.append(CaptureSource(id=f"screen:{screen_number}",
                                             name=f"Screen {screen_number + 1}",
                                             kind="screen"))
        sources.extend(await run_blocking_io(_list_windows))
        self.logger.debug(f"Capture sources: {len(sources)} found")
        return sources

    def _resolve_video_index(self, source_id: str, video_devices: List[Tuple[int, str]]) -> int:
        screens = {}
        for index, name in video_devices:
            match = SCREEN_DEVICE_PATTERN.search(name)
            if match:
                screens[int(match.group(1))] = index
        if not screens:
            raise NoSourcesAvailable("No capturable screen was found.")

        kind, _, ident = source_id.partition(":")
        if kind == "screen" and ident.isdigit() and int(ident) in screens:
            return screens[int(ident)]
        if kind == "window" and ident:
            # Window sources record the main screen.
            return screens[min(screens)]
        raise NoSourcesAvailable(f"Capture source {source_id!r} is not available.")

    def _resolve_audio_index(self, audio_devices: List[Tuple[int, str]]) -> Optional[int]:
        if not audio_devices:
            return None
        if self.audio_device_hint:
            hint = self.audio_device_hint.lower()
            for index, name in audio_devices:
                if hint in name.lower():
                    return index
        return audio_devices[0][0]

    async def open_stream(self, source_id: str) -> FfmpegStream:
        """
        Resolve *source_id* to AVFoundation devices and prepare a stream.

        The returned stream has no audio track when no microphone was found.

        Raises:
            PermissionDenied: Screen Recording permission is not granted.
            NoSourcesAvailable: *source_id* does not match a capture screen.
            CaptureFailure: ffmpeg is missing.
        """
        if has_screen_capture_access() is False:
            raise PermissionDenied(SCREEN_PERMISSION_GUIDANCE)

        video_devices, audio_devices = await self._devices()
        video_index = self._resolve_video_index(source_id, video_devices)
        audio_index = self._resolve_audio_index(audio_devices)
        self.logger.info(
            f"Capture devices for {source_id}: video={video_index} audio={audio_index}"
        )
        return FfmpegStream(self._require_ffmpeg(), video_index, audio_index,
                            framerate=self.framerate, logger=self.logger)
