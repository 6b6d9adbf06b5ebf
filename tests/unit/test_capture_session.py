"""
Tests for the capture session state machine.
"""

import asyncio

import pytest

from conftest import FakeBackend, MemorySink
from capture_session import (
    AlreadyRecording,
    CaptureFailure,
    CaptureSession,
    CaptureSource,
    EmptyRecording,
    NoMediaTracks,
    NoSourcesAvailable,
    PermissionDenied,
    PersistenceFailure,
    RecordingMeta,
    SessionStatus,
    select_source,
)


def run(coro):
    return asyncio.run(coro)


def make_session(backend=None, sink=None, **kwargs):
    statuses = []
    session = CaptureSession(
        backend or FakeBackend(),
        sink or MemorySink(),
        grace_period=kwargs.pop("grace_period", 0.01),
        on_status=lambda status, message: statuses.append(status),
        **kwargs,
    )
    return session, statuses


class TestStart:
    """Tests for acquiring a stream."""

    def test_start_records(self, backend):
        """A successful start should move to recording with started_at stamped."""
        session, statuses = make_session(backend)

        async def scenario():
            await session.start("screen:0", RecordingMeta(app_key="zoom", title="Zoom Meeting"))

        run(scenario())
        assert session.status == SessionStatus.RECORDING
        assert statuses == [SessionStatus.ACQUIRING, SessionStatus.RECORDING]
        assert session.meta.started_at is not None
        assert session.meta.source_id == "screen:0"
        assert backend.last_stream.started_with == session.timeslice

    def test_double_start_raises_and_leaves_session_untouched(self, backend):
        """A second start should raise AlreadyRecording without disturbing the first."""
        session, _ = make_session(backend)

        async def scenario():
            await session.start("screen:0")
            stream = backend.last_stream
            with pytest.raises(AlreadyRecording):
                await session.start("window:42")
            return stream

        stream = run(scenario())
        assert session.status == SessionStatus.RECORDING
        assert session.source_id == "screen:0"
        assert backend.opened == ["screen:0"]
        assert session._stream is stream
        assert backend.track_stops == 0

    def test_no_tracks(self):
        """A stream without tracks should fail with NoMediaTracks and return to idle."""
        backend = FakeBackend(kinds=())
        session, statuses = make_session(backend)

        with pytest.raises(NoMediaTracks):
            run(session.start("screen:0"))
        assert session.status == SessionStatus.IDLE
        assert statuses[-2:] == [SessionStatus.ERROR, SessionStatus.IDLE]

    def test_permission_denied_propagates(self):
        """A permission refusal should surface as PermissionDenied."""
        backend = FakeBackend(open_error=PermissionDenied("Enable Screen Recording"))
        session, statuses = make_session(backend)

        with pytest.raises(PermissionDenied):
            run(session.start("screen:0"))
        assert session.status == SessionStatus.IDLE
        assert SessionStatus.ERROR in statuses

    def test_unexpected_backend_error_is_wrapped(self):
        """Non-recorder errors from the backend should become CaptureFailure."""
        backend = FakeBackend(open_error=OSError("device missing"))
        session, _ = make_session(backend)

        with pytest.raises(CaptureFailure):
            run(session.start("screen:0"))
        assert session.status == SessionStatus.IDLE

    def test_stream_start_failure_never_reports_recording(self):
        """If the stream cannot start, listeners should not see a recording status."""
        backend = FakeBackend(start_error=OSError("ffmpeg could not be launched"))
        session, statuses = make_session(backend)

        with pytest.raises(CaptureFailure):
            run(session.start("screen:0"))
        assert SessionStatus.RECORDING not in statuses
        assert statuses == [SessionStatus.ACQUIRING, SessionStatus.ERROR, SessionStatus.IDLE]
        assert backend.track_stops == 2


class TestStop:
    """Tests for stopping and finalization."""

    def test_chunks_are_concatenated_in_order(self, backend, sink):
        """The payload should be the chunks in arrival order, empty chunks dropped."""
        session, statuses = make_session(backend, sink)

        async def scenario():
            await session.start("screen:0", RecordingMeta(app_key="meet"))
            stream = backend.last_stream
            stream.emit(b"abc")
            stream.emit(b"")
            stream.emit(b"de")
            stream.pending_on_flush = [b"f"]
            return await session.stop()

        payload = run(scenario())
        assert payload.data == b"abcdef"
        assert payload.size == 6
        assert sink.saved[0][0] == b"abcdef"
        assert payload.meta.stopped_at is not None
        assert payload.meta.stopped_at >= payload.meta.started_at
        assert payload.location is not None
        assert session.status == SessionStatus.IDLE
        assert statuses[-2:] == [SessionStatus.FINALIZING, SessionStatus.IDLE]

    def test_tracks_released_after_save(self, backend):
        """Every track should be stopped once finalization completes."""
        session, _ = make_session(backend)

        async def scenario():
            await session.start("screen:0")
            backend.last_stream.emit(b"data")
            await session.stop()

        run(scenario())
        assert backend.track_stops == 2
        assert session.chunks == []

    def test_empty_recording(self, backend, sink):
        """Stopping with no data should raise EmptyRecording and release tracks."""
        session, statuses = make_session(backend, sink)

        async def scenario():
            await session.start("screen:0")
            await session.stop()

        with pytest.raises(EmptyRecording):
            run(scenario())
        assert backend.track_stops == 2
        assert sink.saved == []
        assert session.status == SessionStatus.IDLE
        assert statuses[-2:] == [SessionStatus.ERROR, SessionStatus.IDLE]

    def test_late_chunk_within_grace_period_is_kept(self, backend, sink):
        """A chunk arriving during the grace period should be saved."""
        session, _ = make_session(backend, sink, grace_period=0.05)

        async def scenario():
            await session.start("screen:0")
            stream = backend.last_stream
            loop = asyncio.get_running_loop()
            loop.call_later(0.01, stream.emit, b"late")
            return await session.stop()

        payload = run(scenario())
        assert payload.data == b"late"

    def test_stop_when_idle_is_noop(self):
        """stop() without a recording should return None."""
        session, statuses = make_session()
        assert run(session.stop()) is None
        assert statuses == []

    def test_double_stop(self, backend):
        """A second stop after completion should be a no-op."""
        session, _ = make_session(backend)

        async def scenario():
            await session.start("screen:0")
            backend.last_stream.emit(b"x")
            first = await session.stop()
            second = await session.stop()
            return first, second

        first, second = run(scenario())
        assert first is not None
        assert second is None
        assert backend.last_stream.stop_requests == 1

    def test_sink_failure(self, backend):
        """A sink error should become PersistenceFailure with tracks released."""
        sink = MemorySink(fail_with=OSError("disk full"))
        session, _ = make_session(backend, sink)

        async def scenario():
            await session.start("screen:0")
            backend.last_stream.emit(b"x")
            await session.stop()

        with pytest.raises(PersistenceFailure):
            run(scenario())
        assert backend.track_stops == 2
        assert session.status == SessionStatus.IDLE

    def test_backend_stop_error(self):
        """A backend that cannot stop should raise CaptureFailure and release."""
        backend = FakeBackend(stop_raises=True)
        session, _ = make_session(backend)

        async def scenario():
            await session.start("screen:0")
            backend.last_stream.emit(b"x")
            await session.stop()

        with pytest.raises(CaptureFailure):
            run(scenario())
        assert backend.track_stops == 2
        assert session.status == SessionStatus.IDLE


class TestUnattendedEnd:
    """Tests for endings the caller did not request."""

    def test_backend_error_while_recording(self, backend):
        """A backend error should end the session and notify the listener once."""
        ended = []
        session, statuses = make_session(backend, on_unattended_end=lambda p, e: ended.append((p, e)))

        async def scenario():
            await session.start("screen:0")
            backend.last_stream.on_error(RuntimeError("display disconnected"))

        run(scenario())
        assert session.status == SessionStatus.IDLE
        assert backend.track_stops == 2
        assert len(ended) == 1
        assert ended[0][0] is None
        assert isinstance(ended[0][1], CaptureFailure)
        assert statuses[-2:] == [SessionStatus.ERROR, SessionStatus.IDLE]

    def test_backend_stops_on_its_own(self, backend, sink):
        """An unsolicited stop should still finalize and save the recording."""
        ended = []
        session, _ = make_session(backend, sink, on_unattended_end=lambda p, e: ended.append((p, e)))

        async def scenario():
            await session.start("screen:0")
            backend.last_stream.emit(b"partial")
            backend.last_stream.on_stopped()
            await asyncio.sleep(0.05)

        run(scenario())
        assert len(sink.saved) == 1
        assert ended[0][0].data == b"partial"
        assert ended[0][1] is None
        assert session.status == SessionStatus.IDLE


class TestSelectSource:
    """Tests for automatic source selection."""

    SOURCES = [
        CaptureSource("screen:0", "Screen 1"),
        CaptureSource("window:1", "zoom.us - Home", "window"),
        CaptureSource("window:2", "Zoom Meeting", "window"),
    ]

    def test_exact_title_match_wins(self):
        """A source named exactly like the meeting title should be chosen."""
        assert select_source(self.SOURCES, "zoom", "Zoom Meeting").id == "window:2"

    def test_app_key_substring(self):
        """Without a title match, a source containing the app key should be chosen."""
        assert select_source(self.SOURCES, "zoom", "Something else").id == "window:1"

    def test_unknown_app_falls_back_to_first(self):
        """The unknown app key should not be used for matching."""
        assert select_source(self.SOURCES, "unknown", None).id == "screen:0"

    def test_no_sources(self):
        """An empty source list should raise NoSourcesAvailable."""
        with pytest.raises(NoSourcesAvailable):
            select_source([], "zoom", "Zoom Meeting")
