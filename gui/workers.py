"""
Background QThread hosting the asyncio loop that runs the recording core.
"""
import asyncio
import concurrent.futures
from pathlib import Path
from typing import Any, Callable, Coroutine, Dict, Optional

from PyQt6.QtCore import QThread, pyqtSignal

from capture_backend import FfmpegCaptureBackend
from capture_session import (
    DEFAULT_GRACE_PERIOD,
    DEFAULT_TIMESLICE,
    FinalizedPayload,
    RecorderError,
    RecordingMeta,
    SessionStatus,
)
from gui.constants import core_logger, logger
from meeting_detector import (
    DEFAULT_POLL_INTERVAL,
    MeetingClassifier,
    MeetingMonitor,
    MeetingState,
    keywords_from_config,
)
from recording_coordinator import RecordingCoordinator
from recording_store import RecordingSink
from settings_store import SettingsStore


def build_coordinator(config: Dict[str, Any], settings: SettingsStore) -> RecordingCoordinator:
    """Assemble monitor, backend, sink and coordinator from config.json sections."""
    detection = config.get("detection", {})
    capture = config.get("capture", {})

    classifier = MeetingClassifier(keywords_from_config(detection.get("meeting_keywords")))
    monitor = MeetingMonitor(
        classifier=classifier,
        poll_interval=float(detection.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL)),
        logger=core_logger,
    )
    backend = FfmpegCaptureBackend(
        framerate=int(capture.get("framerate", 30)),
        audio_device_hint=capture.get("audio_device") or None,
        logger=core_logger,
    )
    if not backend.ffmpeg:
        logger.warning("ffmpeg not found; recording will fail until it is installed")

    recordings_dir = capture.get("recordings_directory") or None
    sink = RecordingSink(
        recordings_dir=Path(recordings_dir) if recordings_dir else None,
        ffmpeg=backend.ffmpeg,
        convert_to_mp4=bool(capture.get("convert_to_mp4", True)),
        logger=core_logger,
    )
    return RecordingCoordinator(
        monitor,
        backend,
        sink,
        settings,
        timeslice=float(capture.get("timeslice_seconds", DEFAULT_TIMESLICE)),
        grace_period=float(capture.get("grace_period_seconds", DEFAULT_GRACE_PERIOD)),
        logger=core_logger,
    )


class CoordinatorWorker(QThread):
    """Runs the RecordingCoordinator on its own asyncio loop.

    The GUI never touches the coordinator directly: commands are submitted
    as coroutines with ``run_coroutine_threadsafe`` and every result or
    event comes back as a Qt signal, which Qt delivers on the GUI thread.
    """

    loop_ready = pyqtSignal()
    meeting_changed = pyqtSignal(dict)           # MeetingState.to_dict()
    session_status = pyqtSignal(str, str)        # status value, message
    error_occurred = pyqtSignal(str)
    recording_saved = pyqtSignal(str)            # webm path
    conversion_finished = pyqtSignal(str, bool)  # mp4 path (or webm name), success
    sources_ready = pyqtSignal(list)             # list of CaptureSource dicts
    permissions_ready = pyqtSignal(dict)
    microphone_answer = pyqtSignal(str)
    auto_start_changed = pyqtSignal(bool)

    def __init__(self, coordinator: RecordingCoordinator, parent=None):
        super().__init__(parent)
        self.coordinator = coordinator
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        coordinator.add_meeting_listener(self._on_meeting)
        coordinator.add_status_listener(self._on_status)
        coordinator.add_error_listener(self._on_error)
        coordinator.add_saved_listener(self._on_saved)
        coordinator.sink.add_conversion_listener(self._on_converted)

    # --- coordinator listeners (called on the loop thread) ---

    def _on_meeting(self, state: MeetingState):
        self.meeting_changed.emit(state.to_dict())

    def _on_status(self, status: SessionStatus, message: Optional[str]):
        self.session_status.emit(status.value, message or "")

    def _on_error(self, error: RecorderError):
        self.error_occurred.emit(str(error))

    def _on_saved(self, payload: FinalizedPayload):
        self.recording_saved.emit(str(payload.location) if payload.location else "")

    def _on_converted(self, mp4_path: Optional[Path], meta: RecordingMeta):
        if mp4_path is not None:
            self.conversion_finished.emit(str(mp4_path), True)
        else:
            self.conversion_finished.emit(meta.title, False)

    # --- thread body ---

    def run(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        logger.info("Coordinator loop started")
        try:
            loop.call_soon(self.coordinator.start)
            loop.call_soon(self.loop_ready.emit)
            loop.run_forever()
            loop.run_until_complete(self.coordinator.shutdown())
            loop.run_until_complete(self.coordinator.sink.wait_for_conversions())
            loop.run_until_complete(loop.shutdown_default_executor())
        except Exception as e:
            logger.error(f"Coordinator loop crashed: {e}", exc_info=True)
        finally:
            self._loop = None
            loop.close()
            logger.info("Coordinator loop stopped")

    def stop(self):
        """Ask the loop to finish the active recording and exit."""
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._loop.stop)

    def _submit(self, coro: Coroutine, on_result: Optional[Callable[[Any], None]] = None,
                what: str = "command") -> Optional[concurrent.futures.Future]:
        if self._loop is None:
            coro.close()
            self.error_occurred.emit("Recorder is not running yet.")
            return None

        future = asyncio.run_coroutine_threadsafe(coro, self._loop)

        def done(fut: concurrent.futures.Future):
            try:
                result = fut.result()
            except RecorderError as e:
                # Already relayed through the error listener
                logger.debug(f"{what} failed: {e}")
                return
            except Exception as e:
                logger.error(f"{what} failed: {e}", exc_info=True)
                self.error_occurred.emit(f"{what} failed: {e}")
                return
            if on_result is not None:
                on_result(result)

        future.add_done_callback(done)
        return future

    # --- commands (called from the GUI thread) ---

    def start_recording(self, source_id: Optional[str] = None):
        self._submit(self.coordinator.start_recording(source_id=source_id, manual=True),
                     what="Start recording")

    def stop_recording(self):
        self._submit(self.coordinator.stop_recording(), what="Stop recording")

    def refresh_sources(self):
        self._submit(
            self.coordinator.list_sources(),
            on_result=lambda sources: self.sources_ready.emit([s.to_dict() for s in sources]),
            what="List sources",
        )

    def check_permissions(self):
        self._submit(self.coordinator.permission_status(),
                     on_result=self.permissions_ready.emit,
                     what="Permission check")

    def request_microphone(self):
        self._submit(self.coordinator.request_microphone(),
                     on_result=self.microphone_answer.emit,
                     what="Microphone request")

    def set_auto_start(self, enabled: bool):
        async def apply():
            return self.coordinator.set_auto_start(enabled)

        self._submit(
            apply(),
            on_result=lambda merged: self.auto_start_changed.emit(bool(merged.get("autoStartOnMeeting"))),
            what="Save settings",
        )
