import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

DEFAULT_TIMESLICE = 1.0      # seconds between chunk flushes from the backend
DEFAULT_GRACE_PERIOD = 0.2   # seconds to wait once for late chunks on finalize


class RecorderError(Exception):
    """Base class for errors surfaced to the user."""


class AlreadyRecording(RecorderError):
    """A start was requested while a session is already active."""


class NoSourcesAvailable(RecorderError):
    """No screen or window source could be selected for capture."""


class NoMediaTracks(RecorderError):
    """The backend returned a stream without any audio or video tracks."""


class EmptyRecording(RecorderError):
    """Capture stopped before any media data arrived."""


class PersistenceFailure(RecorderError):
    """The finalized recording could not be written to storage."""


class PermissionDenied(RecorderError):
    """The OS refused screen or microphone access."""


class CaptureFailure(RecorderError):
    """The capture backend failed to start, errored, or could not be stopped."""


class SessionStatus(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    ERROR = "error"


@dataclass
class CaptureSource:
    """A selectable screen or window capture target."""
    id: str
    name: str
    kind: str = "screen"

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "name": self.name, "kind": self.kind}


@dataclass
class RecordingMeta:
    """Metadata attached to a recording and handed to the persistence sink."""
    app_key: str = "unknown"
    title: str = "unknown"
    trigger: str = "manual"  # "manual" or "auto"
    source_id: Optional[str] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app": self.app_key,
            "title": self.title,
            "trigger": self.trigger,
            "source_id": self.source_id,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "stoppedAt": self.stopped_at.isoformat() if self.stopped_at else None,
        }


@dataclass
class FinalizedPayload:
    """A finished recording: concatenated chunks plus metadata and storage location."""
    data: bytes
    meta: RecordingMeta
    location: Optional[Path] = None

    @property
    def size(self) -> int:
        return len(self.data)


def select_source(sources: Sequence[CaptureSource],
                  app_key: Optional[str] = None,
                  title: Optional[str] = None) -> CaptureSource:
    """
    Pick a capture source when the user did not choose one.

    Preference order: a source whose name equals the meeting title, a source
    whose name contains the detected app key, the first source.

    Raises:
        NoSourcesAvailable: *sources* is empty.
    """
    if not sources:
        raise NoSourcesAvailable("No screen or window sources are available to capture.")

    if title:
        for source in sources:
            if source.name == title:
                return source

    if app_key and app_key != "unknown":
        key = app_key.lower()
        for source in sources:
            if key in source.name.lower():
                return source

    return sources[0]


class CaptureSession:
    """
    One recording attempt: acquire a stream, buffer chunks, finalize, persist.

    States move ``idle -> acquiring -> recording -> finalizing -> idle``; any
    failure passes through ``error`` back to ``idle`` once the stream has been
    released. The stream's tracks are released on every exit path, since a
    leaked stream keeps the capture devices locked.

    The backend must provide ``await open_stream(source_id)`` returning a stream
    with a ``tracks`` list (each with ``stop()``), ``start(timeslice, on_data,
    on_error, on_stopped)``, ``request_flush()`` and ``stop()``. Stream callbacks
    are expected on the event loop thread, and ``on_stopped`` is delivered once
    after ``stop()`` or after a fatal error.

    The sink must provide ``await save(payload, meta)`` returning a location.
    """

    def __init__(self, backend: Any, sink: Any,
                 timeslice: float = DEFAULT_TIMESLICE,
                 grace_period: float = DEFAULT_GRACE_PERIOD,
                 on_status: Optional[Callable[[SessionStatus, Optional[str]], None]] = None,
                 on_unattended_end: Optional[Callable[[Optional[FinalizedPayload], Optional[RecorderError]], None]] = None,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            backend: Media capture backend.
            sink: Persistence sink receiving the finalized payload.
            timeslice: Seconds between chunk flushes requested from the backend.
            grace_period: Seconds to wait once for late data when no chunk arrived.
            on_status: Called with (status, message) on every transition.
            on_unattended_end: Called with (payload, error) when the session ends
                without a pending ``stop()`` caller, e.g. the backend stopped on
                its own or failed mid-recording.
            logger: Optional custom logger instance.
        """
        self.backend = backend
        self.sink = sink
        self.timeslice = timeslice
        self.grace_period = grace_period
        self.on_status = on_status
        self.on_unattended_end = on_unattended_end

        self.status = SessionStatus.IDLE
        self.source_id: Optional[str] = None
        self.chunks: List[bytes] = []
        self.meta: Optional[RecordingMeta] = None

        self._stream: Any = None
        self._stop_future: Optional[asyncio.Future] = None
        self._finalize_task: Optional[asyncio.Task] = None
        self._sealed = False

        if logger:
            self.logger = logger
        else:
            self.logger = logging.getLogger(__name__)
            if not self.logger.hasHandlers():
                self.logger.addHandler(logging.NullHandler())

    @property
    def is_active(self) -> bool:
        """True while the session is anywhere but idle."""
        return self.status != SessionStatus.IDLE

    @property
    def is_recording(self) -> bool:
        return self.status == SessionStatus.RECORDING

    def _set_status(self, status: SessionStatus, message: Optional[str] = None):
        self.status = status
        self.logger.debug(f"[Recorder] {status.value} {message or ''}".rstrip())
        if self.on_status is not None:
            try:
                self.on_status(status, message)
            except Exception as e:
                self.logger.error(f"Status listener failed: {e}", exc_info=True)

    def _release_stream(self):
        """Stop every track of the current stream and drop buffered chunks."""
        stream, self._stream = self._stream, None
        if stream is not None:
            for track in list(getattr(stream, "tracks", None) or []):
                try:
                    track.stop()
                except Exception as e:
                    self.logger.warning(f"Failed to stop {getattr(track, 'kind', 'media')} track: {e}")
        self.chunks = []

    def _fail(self, error: RecorderError):
        self._set_status(SessionStatus.ERROR, str(error))
        self._release_stream()
        self._set_status(SessionStatus.IDLE)

    async def start(self, source_id: str, meta: Optional[RecordingMeta] = None):
        """
        Acquire a combined audio+video stream for *source_id* and start buffering.

        Raises:
            AlreadyRecording: the session is not idle (state left untouched).
            NoMediaTracks: the backend stream has no tracks.
            PermissionDenied: the OS refused capture access.
            CaptureFailure: the backend failed to open or start the stream.
        """
        if self.status != SessionStatus.IDLE:
            raise AlreadyRecording(f"A recording is already {self.status.value}.")

        self.source_id = source_id
        self.meta = meta or RecordingMeta()
        self.meta.source_id = source_id
        self._stop_future = None
        self._finalize_task = None
        self._sealed = False
        self._set_status(SessionStatus.ACQUIRING, f"Acquiring capture for {source_id}")

        try:
            self._stream = await self.backend.open_stream(source_id)
            if self._stream is None or not getattr(self._stream, "tracks", None):
                raise NoMediaTracks("Screen stream has no tracks. Check Screen Recording and Microphone permissions.")

            self.chunks = []
            self.meta.started_at = datetime.now()
            self._stream.start(
                self.timeslice,
                on_data=self._on_data,
                on_error=self._on_error,
                on_stopped=self._on_stopped,
            )
            self._set_status(SessionStatus.RECORDING, "Recording started.")
        except RecorderError as e:
            self.logger.error(f"Failed to start recording: {e}")
            self._fail(e)
            raise
        except Exception as e:
            self.logger.error(f"Failed to start recording: {e}", exc_info=True)
            error = CaptureFailure("Failed to start recording. Check permissions.")
            self._fail(error)
            raise error from e

    async def stop(self) -> Optional[FinalizedPayload]:
        """
        Flush, stop the backend and wait for finalization.

        No-op returning None unless the session is recording. Once called, the
        stop runs to completion or failure.

        Raises:
            EmptyRecording: no data was captured.
            PersistenceFailure: the sink could not store the payload.
            CaptureFailure: the backend could not be stopped or failed.
        """
        if self.status != SessionStatus.RECORDING:
            return None

        loop = asyncio.get_running_loop()
        self._stop_future = loop.create_future()
        stream = self._stream

        try:
            stream.request_flush()
        except Exception as e:
            self.logger.warning(f"[Recorder] requestFlush failed: {e}")

        self._set_status(SessionStatus.FINALIZING, "Stopping recording.")
        try:
            stream.stop()
        except Exception as e:
            self.logger.error(f"[Recorder] stop error: {e}", exc_info=True)
            error = CaptureFailure("Unable to stop recording.")
            self._stop_future = None
            self._fail(error)
            raise error from e

        return await asyncio.shield(self._stop_future)

    def _on_data(self, chunk: bytes):
        if self.status not in (SessionStatus.RECORDING, SessionStatus.FINALIZING):
            return
        if self._sealed:
            self.logger.warning("[Recorder] Chunk arrived after the recording was assembled; dropped")
            return
        if chunk:
            self.chunks.append(bytes(chunk))

    def _on_error(self, error: BaseException):
        self.logger.error(f"[Recorder] Capture backend error: {error}")
        if self.status != SessionStatus.RECORDING:
            # While finalizing, the stopped notification still drives finalization.
            return
        failure = CaptureFailure(f"Capture backend error: {error}")
        self._fail(failure)
        self._notify_unattended(None, failure)

    def _on_stopped(self):
        if self.status not in (SessionStatus.RECORDING, SessionStatus.FINALIZING):
            return
        if self._finalize_task is not None:
            return
        if self.status == SessionStatus.RECORDING:
            self.logger.warning("[Recorder] Capture backend stopped without a stop request")
            self._set_status(SessionStatus.FINALIZING, "Capture ended.")
        self._finalize_task = asyncio.get_running_loop().create_task(self._finalize())

    async def _finalize(self):
        payload: Optional[FinalizedPayload] = None
        error: Optional[RecorderError] = None
        self.meta.stopped_at = datetime.now()
        try:
            if not self.chunks:
                await asyncio.sleep(self.grace_period)
            if not self.chunks:
                raise EmptyRecording("No media captured. Keep recording a bit longer or fix OS permissions.")

            self._sealed = True
            data = b"".join(self.chunks)
            try:
                location = await self.sink.save(data, self.meta)
            except Exception as e:
                self.logger.error(f"[Recorder] Failed to save recording: {e}", exc_info=True)
                raise PersistenceFailure(f"Failed to save recording: {e}") from e
            payload = FinalizedPayload(data=data, meta=self.meta, location=location)
        except RecorderError as e:
            error = e
        except Exception as e:
            self.logger.error(f"[Recorder] onstop error: {e}", exc_info=True)
            error = CaptureFailure("Failed to finalize recording.")
        finally:
            self._release_stream()

        if error is not None:
            self._set_status(SessionStatus.ERROR, str(error))
            self._set_status(SessionStatus.IDLE)
        else:
            self.logger.info(f"Recording finalized: {payload.size} bytes -> {payload.location}")
            self._set_status(SessionStatus.IDLE, "Recording saved.")

        future, self._stop_future = self._stop_future, None
        if future is not None and not future.done():
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(payload)
        else:
            self._notify_unattended(payload, error)

    def _notify_unattended(self, payload: Optional[FinalizedPayload], error: Optional[RecorderError]):
        if self.on_unattended_end is None:
            return
        try:
            self.on_unattended_end(payload, error)
        except Exception as e:
            self.logger.error(f"Session end listener failed: {e}", exc_info=True)
