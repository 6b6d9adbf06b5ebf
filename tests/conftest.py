"""
Pytest fixtures for Meeting Recorder tests.
"""

import sys
import tempfile
from pathlib import Path

import pytest

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from capture_session import CaptureSource, RecordingMeta  # noqa: E402
from meeting_detector import WindowInfo  # noqa: E402


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


class FakeTrack:
    def __init__(self, kind, stream):
        self.kind = kind
        self.stream = stream
        self.stop_count = 0

    def stop(self):
        self.stop_count += 1
        self.stream.backend.track_stops += 1


class FakeStream:
    """In-memory media stream; tests push chunks and acknowledge stops by hand.

    With ``auto_stop`` the stopped notification is delivered on the next
    loop iteration after ``stop()``, like a real backend would.
    """

    def __init__(self, backend, kinds=("video", "audio"), stop_raises=False, auto_stop=True,
                 start_error=None):
        self.backend = backend
        self.start_error = start_error
        self.tracks = [FakeTrack(kind, self) for kind in kinds]
        self.stop_raises = stop_raises
        self.auto_stop = auto_stop
        self.started_with = None
        self.flush_requests = 0
        self.stop_requests = 0
        self.pending_on_flush = []
        self.on_data = None
        self.on_error = None
        self.on_stopped = None

    def start(self, timeslice, on_data, on_error, on_stopped):
        if self.start_error is not None:
            raise self.start_error
        self.started_with = timeslice
        self.on_data = on_data
        self.on_error = on_error
        self.on_stopped = on_stopped

    def emit(self, chunk):
        self.on_data(chunk)

    def request_flush(self):
        self.flush_requests += 1
        for chunk in self.pending_on_flush:
            self.on_data(chunk)
        self.pending_on_flush = []

    def stop(self):
        self.stop_requests += 1
        if self.stop_raises:
            raise RuntimeError("device busy")
        if self.auto_stop:
            import asyncio
            asyncio.get_running_loop().call_soon(self.on_stopped)


class FakeBackend:
    """Media backend double with observable track stops."""

    def __init__(self, sources=None, kinds=("video", "audio"), open_error=None,
                 stop_raises=False, auto_stop=True, start_error=None):
        self.sources = list(sources) if sources is not None else [
            CaptureSource(id="screen:0", name="Screen 1", kind="screen"),
            CaptureSource(id="window:42", name="Zoom Meeting", kind="window"),
            CaptureSource(id="window:77", name="Weekly sync | Microsoft Teams", kind="window"),
        ]
        self.kinds = kinds
        self.open_error = open_error
        self.stop_raises = stop_raises
        self.auto_stop = auto_stop
        self.start_error = start_error
        self.opened = []
        self.streams = []
        self.track_stops = 0

    async def list_sources(self):
        return list(self.sources)

    async def open_stream(self, source_id):
        self.opened.append(source_id)
        if self.open_error is not None:
            raise self.open_error
        stream = FakeStream(self, kinds=self.kinds, stop_raises=self.stop_raises,
                            auto_stop=self.auto_stop, start_error=self.start_error)
        self.streams.append(stream)
        return stream

    @property
    def last_stream(self):
        return self.streams[-1]


class MemorySink:
    """Persistence sink that keeps saved payloads in memory."""

    def __init__(self, fail_with=None):
        self.saved = []
        self.fail_with = fail_with

    async def save(self, payload: bytes, meta: RecordingMeta):
        if self.fail_with is not None:
            raise self.fail_with
        self.saved.append((payload, meta))
        return Path(f"/recordings/{len(self.saved)}.webm")


class FakeSettings:
    def __init__(self, auto_start=False):
        self.data = {"autoStartOnMeeting": auto_start}

    def get(self):
        return dict(self.data)

    def set(self, partial):
        self.data.update(partial)
        return dict(self.data)


class ScriptedProbe:
    """Window probe returning queued results; exceptions in the queue are raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def push(self, *results):
        self.results.extend(results)

    def __call__(self):
        self.calls += 1
        result = self.results.pop(0) if self.results else WindowInfo()
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def settings():
    return FakeSettings()
