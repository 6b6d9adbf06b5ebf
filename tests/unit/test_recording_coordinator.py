"""
Tests for auto-start/auto-stop policy and user commands.
"""

import asyncio

import pytest

from conftest import FakeBackend, FakeSettings, MemorySink, ScriptedProbe
from capture_session import AlreadyRecording, EmptyRecording, NoSourcesAvailable, SessionStatus
from meeting_detector import AppKey, MeetingMonitor, MeetingState, WindowInfo
from recording_coordinator import RecordingCoordinator

TEAMS_WINDOW = WindowInfo("Microsoft Teams", "Weekly sync | Microsoft Teams")
BROWSER_WINDOW = WindowInfo("Safari", "News")

TEAMS_STATE = MeetingState(True, AppKey.TEAMS, "Weekly sync | Microsoft Teams", "Microsoft Teams")
IDLE = MeetingState()


def run(coro):
    return asyncio.run(coro)


def make_coordinator(auto_start=False, backend=None, sink=None, probe=None):
    backend = backend or FakeBackend()
    sink = sink or MemorySink()
    monitor = MeetingMonitor(probe=probe or ScriptedProbe(), poll_interval=60)
    coordinator = RecordingCoordinator(monitor, backend, sink, FakeSettings(auto_start),
                                       grace_period=0.01)
    monitor.subscribe(coordinator.handle_meeting_state)
    errors = []
    coordinator.add_error_listener(errors.append)
    return coordinator, backend, sink, errors


async def settle(coordinator):
    """Wait for every task the coordinator spawned."""
    for _ in range(10):
        if not coordinator._tasks:
            await asyncio.sleep(0)
            if not coordinator._tasks:
                return
        await asyncio.gather(*list(coordinator._tasks), return_exceptions=True)


class TestAutoRecording:
    """Tests for recording driven by meeting detection."""

    def test_teams_meeting_end_to_end(self):
        """A Teams meeting should be recorded and saved when it ends."""
        probe = ScriptedProbe(TEAMS_WINDOW, BROWSER_WINDOW)
        coordinator, backend, sink, errors = make_coordinator(auto_start=True, probe=probe)

        async def scenario():
            await coordinator.monitor.poll()
            await settle(coordinator)
            assert coordinator.is_recording
            backend.last_stream.emit(b"a")
            backend.last_stream.emit(b"bb")
            backend.last_stream.emit(b"ccc")
            await coordinator.monitor.poll()
            await settle(coordinator)

        run(scenario())
        assert errors == []
        assert len(sink.saved) == 1
        payload, meta = sink.saved[0]
        assert payload == b"abbccc"
        assert meta.app_key == "teams"
        assert meta.trigger == "auto"
        assert meta.started_at is not None
        assert meta.stopped_at is not None
        assert backend.opened == ["window:77"]
        assert coordinator.session is None

    def test_no_auto_start_when_disabled(self):
        """Meeting detection alone should not record when auto-start is off."""
        coordinator, backend, _, _ = make_coordinator(auto_start=False)

        coordinator.monitor._current_state = TEAMS_STATE

        async def scenario():
            coordinator.handle_meeting_state(TEAMS_STATE)
            await settle(coordinator)

        run(scenario())
        assert backend.opened == []
        assert coordinator.session is None

    def test_manual_recording_is_not_auto_stopped(self):
        """Meeting end should leave a manually started recording running."""
        coordinator, backend, sink, _ = make_coordinator(auto_start=True)

        async def scenario():
            await coordinator.start_recording("screen:0")
            coordinator.handle_meeting_state(TEAMS_STATE)
            coordinator.handle_meeting_state(IDLE)
            await settle(coordinator)
            return coordinator.is_recording

        assert run(scenario()) is True
        assert backend.opened == ["screen:0"]
        assert sink.saved == []

    def test_meeting_during_recording_does_not_start_second(self):
        """An in-meeting event while recording should not open another stream."""
        coordinator, backend, _, errors = make_coordinator(auto_start=True)

        async def scenario():
            await coordinator.start_recording("screen:0")
            coordinator.handle_meeting_state(TEAMS_STATE)
            await settle(coordinator)

        run(scenario())
        assert backend.opened == ["screen:0"]
        assert errors == []

    def test_back_to_back_events_start_once(self):
        """Two in-meeting events before the first start completes should start once."""
        coordinator, backend, _, _ = make_coordinator(auto_start=True)
        other = MeetingState(True, AppKey.TEAMS, "Another title", "Microsoft Teams")

        coordinator.monitor._current_state = TEAMS_STATE

        async def scenario():
            coordinator.handle_meeting_state(TEAMS_STATE)
            coordinator.handle_meeting_state(other)
            await settle(coordinator)

        run(scenario())
        assert len(backend.opened) == 1

    def test_auto_start_failure_is_relayed(self):
        """A failed auto-start should reach the error listeners, not raise."""
        backend = FakeBackend(sources=[])
        coordinator, _, _, errors = make_coordinator(auto_start=True, backend=backend)

        coordinator.monitor._current_state = TEAMS_STATE

        async def scenario():
            coordinator.handle_meeting_state(TEAMS_STATE)
            await settle(coordinator)

        run(scenario())
        assert len(errors) == 1
        assert isinstance(errors[0], NoSourcesAvailable)
        assert coordinator.session is None

    def test_empty_auto_stop_is_relayed(self):
        """An auto-stop with no captured data should report EmptyRecording."""
        coordinator, _, sink, errors = make_coordinator(auto_start=True)

        coordinator.monitor._current_state = TEAMS_STATE

        async def scenario():
            coordinator.handle_meeting_state(TEAMS_STATE)
            await settle(coordinator)
            coordinator.monitor._current_state = IDLE
            coordinator.handle_meeting_state(IDLE)
            await settle(coordinator)

        run(scenario())
        assert sink.saved == []
        assert [type(e) for e in errors] == [EmptyRecording]
        assert coordinator.session is None


    def test_meeting_ended_during_start_stops_recording(self):
        """If the meeting is gone once the stream is up, the auto recording should stop."""
        coordinator, backend, _, errors = make_coordinator(auto_start=True)

        async def scenario():
            coordinator.handle_meeting_state(TEAMS_STATE)
            await settle(coordinator)

        run(scenario())
        assert backend.last_stream.stop_requests == 1
        assert coordinator.session is None
        assert [type(e) for e in errors] == [EmptyRecording]


class TestManualCommands:
    """Tests for user-initiated commands."""

    def test_manual_start_outside_meeting(self):
        """Manual start on screen:0 should record while no meeting is detected."""
        coordinator, backend, sink, _ = make_coordinator()

        async def scenario():
            session = await coordinator.start_recording("screen:0")
            assert session.status == SessionStatus.RECORDING
            backend.last_stream.emit(b"demo")
            return await coordinator.stop_recording()

        payload = run(scenario())
        assert backend.opened == ["screen:0"]
        assert payload.meta.app_key == "unknown"
        assert payload.meta.trigger == "manual"
        assert sink.saved[0][0] == b"demo"

    def test_manual_start_while_recording(self):
        """A second manual start should raise AlreadyRecording and be relayed."""
        coordinator, backend, _, errors = make_coordinator()

        async def scenario():
            await coordinator.start_recording("screen:0")
            with pytest.raises(AlreadyRecording):
                await coordinator.start_recording("window:42")
            return coordinator.is_recording

        assert run(scenario()) is True
        assert backend.opened == ["screen:0"]
        assert isinstance(errors[0], AlreadyRecording)

    def test_manual_stop_while_idle(self):
        """Stopping with nothing recorded should return None."""
        coordinator, _, _, errors = make_coordinator()
        assert run(coordinator.stop_recording()) is None
        assert errors == []

    def test_manual_start_picks_meeting_window(self):
        """Without a source id the meeting window should be selected."""
        coordinator, backend, _, _ = make_coordinator()
        coordinator.monitor._current_state = TEAMS_STATE

        run(coordinator.start_recording())
        assert backend.opened == ["window:77"]

    def test_set_auto_start(self):
        """Toggling auto-start should persist through the settings store."""
        coordinator, _, _, _ = make_coordinator()
        merged = coordinator.set_auto_start(True)
        assert merged["autoStartOnMeeting"] is True
        assert coordinator.auto_start_enabled is True

    def test_status(self):
        """status() should describe meeting and session state."""
        coordinator, _, _, _ = make_coordinator()

        async def scenario():
            idle_status = coordinator.status()
            await coordinator.start_recording("screen:0")
            return idle_status, coordinator.status()

        idle_status, recording_status = run(scenario())
        assert idle_status["recording"] is False
        assert idle_status["session_status"] == "idle"
        assert recording_status["recording"] is True
        assert recording_status["trigger"] == "manual"
        assert recording_status["source_id"] == "screen:0"

    def test_list_sources(self):
        """list_sources should pass through the backend's sources."""
        coordinator, backend, _, _ = make_coordinator()
        assert run(coordinator.list_sources()) == backend.sources

    def test_permission_status_reports_each_kind(self):
        """Permission status should cover screen, microphone and accessibility."""
        coordinator, _, _, _ = make_coordinator()
        statuses = run(coordinator.permission_status())
        assert set(statuses) == {"screen", "microphone", "accessibility"}

    def test_shutdown_saves_active_recording(self):
        """shutdown() should stop the monitor and save the running recording."""
        coordinator, backend, sink, _ = make_coordinator()

        async def scenario():
            coordinator.start()
            await coordinator.start_recording("screen:0")
            backend.last_stream.emit(b"bye")
            await coordinator.shutdown()
            return coordinator.monitor.is_running

        assert run(scenario()) is False
        assert sink.saved[0][0] == b"bye"
