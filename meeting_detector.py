import re
import asyncio
import logging
import psutil
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from capture_session import RecorderError
from recorder_utils import run_blocking_io

# macOS frontmost application lookup
try:
    from AppKit import NSWorkspace
    _HAS_APPKIT = True
except ImportError:
    _HAS_APPKIT = False

# Quartz/CoreGraphics: one system call lists all windows with owner PIDs
try:
    from Quartz import (
        CGWindowListCopyWindowInfo,
        kCGWindowListOptionOnScreenOnly,
        kCGWindowListExcludeDesktopElements,
        kCGNullWindowID,
    )
    _HAS_QUARTZ = True
except ImportError:
    _HAS_QUARTZ = False


DEFAULT_POLL_INTERVAL = 4.0  # seconds


class AppKey(str, Enum):
    """Meeting application detected by the classifier."""
    ZOOM = "zoom"
    TEAMS = "teams"
    MEET = "meet"
    UNKNOWN = "unknown"


# Ordered: the first entry with a matching label wins.
DEFAULT_MEETING_KEYWORDS: List[Tuple[AppKey, List[str]]] = [
    (AppKey.ZOOM, ["zoom", "zoom meeting"]),
    (AppKey.TEAMS, ["microsoft teams", "teams"]),
    (AppKey.MEET, ["google meet", "meet"]),
]

GENERIC_MEETING_PATTERN = re.compile(r"meeting|call|conference", re.IGNORECASE)


class ProbeFailure(RecorderError):
    """The active-window probe could not read the focused window."""


@dataclass(frozen=True)
class WindowInfo:
    """Result of one window probe: owner process name and window title."""
    owner_process_name: Optional[str] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class MeetingState:
    """
    One classifier verdict.

    Two states compare equal when ``in_meeting``, ``app_key`` and ``title``
    match; a change of ``process_name`` alone is not a state change.
    """
    in_meeting: bool = False
    app_key: Optional[AppKey] = None
    title: Optional[str] = None
    process_name: Optional[str] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "in_meeting": self.in_meeting,
            "app_key": self.app_key.value if self.app_key else None,
            "title": self.title,
            "process_name": self.process_name,
        }


IDLE_STATE = MeetingState()


def keywords_from_config(entries: Optional[Sequence[Dict[str, Any]]]) -> List[Tuple[AppKey, List[str]]]:
    """
    Build a keyword table from config entries of the form
    ``{"key": "zoom", "labels": ["zoom", "zoom meeting"]}``.

    Unknown keys are mapped to ``AppKey.UNKNOWN``. An empty or missing list
    yields the default table.
    """
    if not entries:
        return list(DEFAULT_MEETING_KEYWORDS)

    table: List[Tuple[AppKey, List[str]]] = []
    for entry in entries:
        try:
            app_key = AppKey(str(entry.get("key", "")).lower())
        except ValueError:
            app_key = AppKey.UNKNOWN
        labels = [str(label).lower() for label in entry.get("labels", []) if label]
        if labels:
            table.append((app_key, labels))
    return table or list(DEFAULT_MEETING_KEYWORDS)


class MeetingClassifier:
    """
    Classifies a (process name, window title) pair into a MeetingState.

    Stateless; safe to share between monitors.
    """

    def __init__(self, keywords: Optional[Sequence[Tuple[AppKey, Sequence[str]]]] = None):
        self.keywords = list(keywords) if keywords else list(DEFAULT_MEETING_KEYWORDS)

    def classify(self, process_name: Optional[str], title: Optional[str]) -> MeetingState:
        if not process_name and not title:
            return IDLE_STATE

        combined_label = f"{process_name or ''} {title or ''}".lower()
        for app_key, labels in self.keywords:
            if any(label in combined_label for label in labels):
                return MeetingState(
                    in_meeting=True,
                    app_key=app_key,
                    title=title or process_name or "Meeting",
                    process_name=process_name or None,
                )

        if title and GENERIC_MEETING_PATTERN.search(title):
            return MeetingState(
                in_meeting=True,
                app_key=AppKey.UNKNOWN,
                title=title,
                process_name=process_name or None,
            )

        return MeetingState(
            in_meeting=False,
            app_key=None,
            title=title or None,
            process_name=process_name or None,
        )


_default_classifier = MeetingClassifier()


def classify(process_name: Optional[str], title: Optional[str]) -> MeetingState:
    """Classify with the default keyword table."""
    return _default_classifier.classify(process_name, title)


def _proc_name_for_pid(pid: int) -> str:
    """Return the process name for *pid* via psutil, or empty string."""
    try:
        proc = psutil.Process(pid)
        return proc.name() or ""
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return ""


def get_active_window() -> WindowInfo:
    """
    Probe the focused window.

    The frontmost application comes from NSWorkspace; its front-most
    on-screen window title comes from CoreGraphics. Window titles are only
    visible to processes holding the Screen Recording permission, so an
    empty title is a normal result.

    Raises:
        ProbeFailure: the platform APIs are unavailable or the call failed.
    """
    if not _HAS_APPKIT:
        raise ProbeFailure("AppKit is not available on this platform")

    try:
        front_app = NSWorkspace.sharedWorkspace().frontmostApplication()
    except Exception as e:
        raise ProbeFailure(f"NSWorkspace lookup failed: {e}") from e
    if front_app is None:
        return WindowInfo()

    pid = int(front_app.processIdentifier())
    owner_name = _proc_name_for_pid(pid) or (front_app.localizedName() or "")

    title = ""
    if _HAS_QUARTZ:
        try:
            options = kCGWindowListOptionOnScreenOnly | kCGWindowListExcludeDesktopElements
            window_list = CGWindowListCopyWindowInfo(options, kCGNullWindowID) or []
        except Exception as e:
            raise ProbeFailure(f"CGWindowListCopyWindowInfo failed: {e}") from e
        # Window list is ordered front to back; layer 0 is the normal window layer.
        for win in window_list:
            if win.get("kCGWindowOwnerPID", 0) != pid or win.get("kCGWindowLayer", 0) != 0:
                continue
            title = (win.get("kCGWindowName", "") or "").strip()
            if title:
                break

    return WindowInfo(owner_process_name=owner_name or None, title=title or None)


class MeetingMonitor:
    """
    Polls the window probe on a fixed interval and publishes meeting-state changes.

    The first poll runs as soon as ``start()`` is called. Repeated identical
    verdicts are suppressed, so the listener only hears about changes. Probe
    failures are logged and the tick is skipped; the interval stays fixed
    regardless of how many ticks in a row fail.
    """

    def __init__(self,
                 probe: Callable[[], WindowInfo] = get_active_window,
                 classifier: Optional[MeetingClassifier] = None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 logger: Optional[logging.Logger] = None):
        """
        Args:
            probe: Blocking no-argument callable returning a WindowInfo.
                   Called on an executor thread once per tick.
            classifier: Classifier to use (default keyword table if None).
            poll_interval: Seconds between ticks.
            logger: Optional custom logger instance.
        """
        self.probe = probe
        self.classifier = classifier or MeetingClassifier()
        self.poll_interval = poll_interval
        self._current_state: MeetingState = IDLE_STATE
        self._on_change: Optional[Callable[[MeetingState], None]] = None
        self._task: Optional[asyncio.Task] = None

        if logger:
            self.logger = logger
        else:
            self.logger = logging.getLogger(__name__)
            if not self.logger.hasHandlers():
                self.logger.addHandler(logging.NullHandler())

    @property
    def current_state(self) -> MeetingState:
        """The last published state."""
        return self._current_state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, on_change: Optional[Callable[[MeetingState], None]]):
        """Register the listener invoked synchronously on every state change."""
        self._on_change = on_change

    def start(self, on_change: Optional[Callable[[MeetingState], None]] = None):
        """Start polling on the running event loop. No-op if already running."""
        if self.is_running:
            return
        if on_change is not None:
            self.subscribe(on_change)
        self._task = asyncio.get_running_loop().create_task(self._run())
        self.logger.info(f"Meeting monitor started (interval={self.poll_interval}s)")

    def stop(self):
        """Stop polling. No-op if not running."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        self.logger.info("Meeting monitor stopped")

    async def _run(self):
        while True:
            await self.poll()
            await asyncio.sleep(self.poll_interval)

    async def poll(self) -> Optional[MeetingState]:
        """
        Run one tick: probe, classify, publish if changed.

        Returns:
            The new state if it was published, otherwise None.
        """
        try:
            window_info = await run_blocking_io(self.probe)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Meeting monitor: failed to read active window: {e}")
            return None

        if window_info is None:
            next_state = IDLE_STATE
        else:
            next_state = self.classifier.classify(window_info.owner_process_name, window_info.title)

        if next_state == self._current_state:
            return None

        self._current_state = next_state
        self.logger.debug(
            "Meeting state changed: in_meeting=%s app=%s title=%r",
            next_state.in_meeting,
            next_state.app_key.value if next_state.app_key else None,
            next_state.title,
        )
        if self._on_change is not None:
            try:
                self._on_change(next_state)
            except Exception as e:
                self.logger.error(f"Meeting monitor: state listener failed: {e}", exc_info=True)
        return next_state
