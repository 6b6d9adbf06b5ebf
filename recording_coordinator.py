"""
Glue between meeting detection, the capture session and the user.

The coordinator owns at most one live CaptureSession. Meeting-state changes
from the monitor drive auto-start/auto-stop when the user enabled it; the GUI
calls the command methods directly.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

from capture_backend import get_permission_status, request_microphone_access
from capture_session import (
    DEFAULT_GRACE_PERIOD,
    DEFAULT_TIMESLICE,
    AlreadyRecording,
    CaptureSession,
    CaptureSource,
    FinalizedPayload,
    RecorderError,
    RecordingMeta,
    SessionStatus,
    select_source,
)
from meeting_detector import MeetingMonitor, MeetingState
from recorder_utils import run_blocking_io

TRIGGER_MANUAL = "manual"
TRIGGER_AUTO = "auto"

StatusListener = Callable[[SessionStatus, Optional[str]], None]
ErrorListener = Callable[[RecorderError], None]
MeetingListener = Callable[[MeetingState], None]
SavedListener = Callable[[FinalizedPayload], None]


class RecordingCoordinator:
    """
    Routes meeting-state changes and user commands to the capture session.

    Auto-stop policy: only sessions the coordinator started on its own are
    stopped when the meeting ends. A manually started recording keeps going
    until the user stops it.
    """

    def __init__(self, monitor: MeetingMonitor, backend: Any, sink: Any, settings: Any,
                 timeslice: float = DEFAULT_TIMESLICE,
                 grace_period: float = DEFAULT_GRACE_PERIOD,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            monitor: Meeting monitor publishing state changes.
            backend: Media capture backend (``list_sources``/``open_stream``).
            sink: Persistence sink handed to each session.
            settings: Store with ``get()``/``set(partial)``.
            timeslice: Chunk flush interval for new sessions.
            grace_period: Late-data grace period for new sessions.
            logger: Optional custom logger instance.
        """
        self.monitor = monitor
        self.backend = backend
        self.sink = sink
        self.settings = settings
        self.timeslice = timeslice
        self.grace_period = grace_period

        self._session: Optional[CaptureSession] = None
        self._trigger: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()

        self._status_listeners: List[StatusListener] = []
        self._error_listeners: List[ErrorListener] = []
        self._meeting_listeners: List[MeetingListener] = []
        self._saved_listeners: List[SavedListener] = []

        if logger:
            self.logger = logger
        else:
            self.logger = logging.getLogger(__name__)
            if not self.logger.hasHandlers():
                self.logger.addHandler(logging.NullHandler())

    # --- listeners ---

    def add_status_listener(self, listener: StatusListener):
        self._status_listeners.append(listener)

    def add_error_listener(self, listener: ErrorListener):
        self._error_listeners.append(listener)

    def add_meeting_listener(self, listener: MeetingListener):
        self._meeting_listeners.append(listener)

    def add_saved_listener(self, listener: SavedListener):
        self._saved_listeners.append(listener)

    def _emit(self, listeners: List[Callable], *args):
        for listener in list(listeners):
            try:
                listener(*args)
            except Exception as e:
                self.logger.error(f"Coordinator listener failed: {e}", exc_info=True)

    def _report_error(self, error: RecorderError):
        self.logger.error(f"Recording error: {error}")
        self._emit(self._error_listeners, error)

    # --- lifecycle ---

    def start(self):
        """Begin meeting detection on the running loop."""
        self.monitor.start(self.handle_meeting_state)

    async def shutdown(self):
        """Stop detection and finish any active recording."""
        self.monitor.stop()
        if self._session is not None and self._session.is_recording:
            try:
                await self.stop_recording()
            except RecorderError as e:
                self.logger.warning(f"Recording could not be saved during shutdown: {e}")
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- state queries ---

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    @property
    def is_recording(self) -> bool:
        return self._session is not None and self._session.is_recording

    @property
    def auto_start_enabled(self) -> bool:
        try:
            return bool(self.settings.get().get("autoStartOnMeeting", False))
        except Exception as e:
            self.logger.error(f"Failed to read settings: {e}")
            return False

    def status(self) -> Dict[str, Any]:
        session = self._session
        return {
            "meeting": self.monitor.current_state.to_dict(),
            "session_status": session.status.value if session else SessionStatus.IDLE.value,
            "recording": self.is_recording,
            "trigger": self._trigger if session else None,
            "source_id": session.source_id if session else None,
            "autoStartOnMeeting": self.auto_start_enabled,
        }

    # --- meeting events ---

    def handle_meeting_state(self, state: MeetingState):
        """Monitor listener: relay the state and apply the auto-start policy."""
        self._emit(self._meeting_listeners, state)
        if not self.auto_start_enabled:
            return

        if state.in_meeting and self._session is None:
            self.logger.info(f"Meeting detected ({state.app_key.value}); auto-starting recording")
            self._spawn(self._auto_start(state))
        elif not state.in_meeting and self._trigger == TRIGGER_AUTO and self.is_recording:
            self.logger.info("Meeting ended; auto-stopping recording")
            self._spawn(self._auto_stop())

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _auto_start(self, state: MeetingState):
        try:
            await self.start_recording(manual=False, state=state)
        except AlreadyRecording:
            return
        except RecorderError:
            # start_recording already relayed it
            return

        # The meeting may have ended while the stream was being acquired.
        if not self.monitor.current_state.in_meeting and self.auto_start_enabled:
            await self._auto_stop()

    async def _auto_stop(self):
        try:
            await self.stop_recording(manual=False)
        except RecorderError:
            return

    # --- commands ---

    async def start_recording(self, source_id: Optional[str] = None, manual: bool = True,
                              state: Optional[MeetingState] = None) -> CaptureSession:
        """
        Start a recording on *source_id* or on an automatically chosen source.

        Raises:
            AlreadyRecording: a session is already active.
            RecorderError: any other start failure (also relayed to error listeners).
        """
        if self._session is not None:
            error = AlreadyRecording("A recording is already in progress.")
            if manual:
                self._report_error(error)
            raise error

        state = state or self.monitor.current_state
        app_key = state.app_key.value if state.in_meeting and state.app_key else "unknown"
        meta = RecordingMeta(
            app_key=app_key,
            title=state.title or "unknown",
            trigger=TRIGGER_MANUAL if manual else TRIGGER_AUTO,
        )

        session = CaptureSession(
            self.backend,
            self.sink,
            timeslice=self.timeslice,
            grace_period=self.grace_period,
            logger=self.logger,
        )
        session.on_status = lambda status, message: self._on_session_status(session, status, message)
        session.on_unattended_end = lambda payload, error: self._on_unattended_end(session, payload, error)
        # Claimed before the first await so a concurrent start sees it.
        self._session = session
        self._trigger = meta.trigger

        try:
            if source_id is None:
                sources = await self.backend.list_sources()
                source_id = select_source(sources, app_key=meta.app_key, title=state.title).id
            await session.start(source_id, meta)
        except RecorderError as e:
            self._release(session)
            self._report_error(e)
            raise
        except Exception as e:
            self._release(session)
            error = RecorderError(f"Failed to start recording: {e}")
            self._report_error(error)
            raise error from e

        self.logger.info(f"Recording started on {source_id} ({meta.trigger}, app={meta.app_key})")
        return session

    async def stop_recording(self, manual: bool = True) -> Optional[FinalizedPayload]:
        """
        Stop the active recording and wait until it is saved.

        Returns None when nothing is recording.
        """
        session = self._session
        if session is None or not session.is_recording:
            return None
        try:
            payload = await session.stop()
        except RecorderError as e:
            self._report_error(e)
            raise
        finally:
            self._release(session)

        if payload is not None:
            self._emit(self._saved_listeners, payload)
        return payload

    def set_auto_start(self, enabled: bool) -> Dict[str, Any]:
        merged = self.settings.set({"autoStartOnMeeting": bool(enabled)})
        self.logger.info(f"Auto-start {'enabled' if enabled else 'disabled'}.")
        return merged

    async def list_sources(self) -> List[CaptureSource]:
        return await self.backend.list_sources()

    async def permission_status(self) -> Dict[str, str]:
        return await run_blocking_io(get_permission_status)

    async def request_microphone(self) -> str:
        return await request_microphone_access()

    # --- session callbacks ---

    def _release(self, session: CaptureSession):
        if self._session is session and not session.is_active:
            self._session = None
            self._trigger = None

    def _on_session_status(self, session: CaptureSession, status: SessionStatus, message: Optional[str]):
        if status == SessionStatus.IDLE:
            self._release(session)
        self._emit(self._status_listeners, status, message)

    def _on_unattended_end(self, session: CaptureSession, payload: Optional[FinalizedPayload],
                           error: Optional[RecorderError]):
        self._release(session)
        if error is not None:
            self._report_error(error)
        elif payload is not None:
            self._emit(self._saved_listeners, payload)
