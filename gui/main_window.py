"""
Main application window for Meeting Recorder.
"""
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from PyQt6.QtGui import QAction, QActionGroup, QFont, QIcon
from PyQt6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout,
    QLabel, QComboBox, QPushButton, QTextEdit, QGroupBox, QCheckBox,
    QMessageBox, QSystemTrayIcon, QMenu, QStyle,
)

from capture_backend import MICROPHONE_PERMISSION_GUIDANCE
from capture_session import SessionStatus
from settings_store import SettingsStore

from gui.constants import (
    APP_NAME, APP_VERSION, SETTINGS_PATH,
    logger, setup_logging, resource_path, load_config,
)
from gui.dialogs import (
    ConfigEditorDialog, LogViewerDialog, PermissionsDialog,
    PERMISSION_LABELS,
)
from gui.styles import get_application_stylesheet
from gui.workers import CoordinatorWorker, build_coordinator

AUTO_SOURCE = ""  # combo data for "pick the meeting window automatically"


def meeting_label(meeting: Dict[str, Any]) -> str:
    if meeting.get("in_meeting"):
        return f"Meeting detected: {meeting.get('app_key') or 'unknown'}"
    return "No meeting detected"


def meeting_detail(meeting: Dict[str, Any]) -> str:
    if meeting.get("title"):
        return meeting["title"]
    return "Meeting window active" if meeting.get("in_meeting") else "Waiting for a meeting"


def tray_tooltip(meeting: Dict[str, Any], recording: bool) -> str:
    """``Meeting Recorder - In meeting (zoom) • Recording``"""
    if meeting.get("in_meeting"):
        label = f"In meeting ({meeting.get('app_key') or 'unknown'})"
    else:
        label = "Idle"
    return f"{APP_NAME} - {label}{' • Recording' if recording else ''}"


class MeetingRecorderApp(QMainWindow):
    """Dashboard: meeting status, recording controls, permissions and activity log."""

    def __init__(self, config: Dict[str, Any], settings: SettingsStore, worker: CoordinatorWorker):
        super().__init__()

        self.config = config
        self.settings = settings
        self.worker = worker
        self.recordings_dir = worker.coordinator.sink.recordings_dir
        self.theme_mode = "system"
        self._meeting: Dict[str, Any] = {"in_meeting": False, "app_key": None, "title": None}
        self._session_status = SessionStatus.IDLE.value
        self._quitting = False
        self._log_viewer: Optional[LogViewerDialog] = None
        self._config_editor: Optional[ConfigEditorDialog] = None

        self._setup_window()
        self._setup_ui()
        self._setup_menubar()
        self._setup_tray()
        self._connect_worker()
        self._apply_styles()

        self.auto_start_check.blockSignals(True)
        self.auto_start_check.setChecked(bool(self.settings.get().get("autoStartOnMeeting", False)))
        self.auto_start_check.blockSignals(False)
        self._refresh_status()
        self.resize(560, 620)

    # --- construction ---

    def _setup_window(self):
        self.setWindowTitle(APP_NAME)
        self.setMinimumSize(420, 480)
        if sys.platform == "darwin":
            self.setUnifiedTitleAndToolBarOnMac(True)

    def _setup_ui(self):
        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        main_layout = QVBoxLayout(central_widget)
        main_layout.setContentsMargins(12, 8, 12, 8)
        main_layout.setSpacing(8)

        # === Status ===
        self.status_label = QLabel("No meeting detected")
        self.status_label.setObjectName("status_msg")
        main_layout.addWidget(self.status_label)

        self.detail_label = QLabel("Waiting for a meeting")
        self.detail_label.setObjectName("secondary_label")
        self.detail_label.setWordWrap(True)
        main_layout.addWidget(self.detail_label)

        # === Controls ===
        controls = QHBoxLayout()
        controls.setSpacing(8)

        self.start_btn = QPushButton("Start Recording")
        self.start_btn.setProperty("class", "primary")
        self.start_btn.clicked.connect(self._on_start_recording)
        controls.addWidget(self.start_btn)

        self.stop_btn = QPushButton("Stop Recording")
        self.stop_btn.setProperty("class", "danger-outline")
        self.stop_btn.clicked.connect(self._on_stop_recording)
        controls.addWidget(self.stop_btn)

        controls.addStretch()

        self.auto_start_check = QCheckBox("Auto-start when a meeting is detected")
        self.auto_start_check.toggled.connect(self._on_auto_start_toggled)
        controls.addWidget(self.auto_start_check)
        main_layout.addLayout(controls)

        # === Capture source ===
        source_row = QHBoxLayout()
        source_row.setSpacing(8)
        self.source_combo = QComboBox()
        self.source_combo.addItem("Automatic (meeting window)", AUTO_SOURCE)
        source_row.addWidget(self.source_combo, stretch=1)

        self.refresh_sources_btn = QPushButton("Refresh")
        self.refresh_sources_btn.setToolTip("Reload the list of screens and windows")
        self.refresh_sources_btn.clicked.connect(self._on_refresh_sources)
        source_row.addWidget(self.refresh_sources_btn)
        main_layout.addLayout(source_row)

        # === Permissions ===
        perm_group = QGroupBox("Permissions")
        perm_layout = QVBoxLayout(perm_group)
        self.permission_labels: Dict[str, QLabel] = {}
        for kind, label in PERMISSION_LABELS.items():
            row_label = QLabel(f"{label}: unknown")
            perm_layout.addWidget(row_label)
            self.permission_labels[kind] = row_label

        perm_buttons = QHBoxLayout()
        self.check_permissions_btn = QPushButton("Check")
        self.check_permissions_btn.clicked.connect(self._on_check_permissions)
        perm_buttons.addWidget(self.check_permissions_btn)

        self.request_mic_btn = QPushButton("Request Microphone")
        self.request_mic_btn.clicked.connect(self._on_request_microphone)
        perm_buttons.addWidget(self.request_mic_btn)
        perm_buttons.addStretch()
        perm_layout.addLayout(perm_buttons)
        main_layout.addWidget(perm_group)

        # === Activity log ===
        self.log_view = QTextEdit()
        self.log_view.setReadOnly(True)
        self.log_view.setFont(QFont("Menlo", 11))
        main_layout.addWidget(self.log_view, stretch=1)

        self.error_label = QLabel("")
        self.error_label.setObjectName("error_label")
        self.error_label.setWordWrap(True)
        main_layout.addWidget(self.error_label)

    def _setup_menubar(self):
        menubar = self.menuBar()

        file_menu = menubar.addMenu("File")
        open_folder_action = QAction("Open Recordings Folder", self)
        open_folder_action.triggered.connect(self._on_open_recordings_folder)
        file_menu.addAction(open_folder_action)
        file_menu.addSeparator()
        quit_action = QAction("Quit", self)
        quit_action.setMenuRole(QAction.MenuRole.QuitRole)
        quit_action.triggered.connect(self._quit)
        file_menu.addAction(quit_action)

        view_menu = menubar.addMenu("View")
        appearance_menu = view_menu.addMenu("Appearance")
        appearance_group = QActionGroup(self)
        appearance_group.setExclusive(True)
        for mode in ("system", "light", "dark"):
            action = QAction(mode.capitalize(), self)
            action.setCheckable(True)
            action.setChecked(mode == self.theme_mode)
            action.triggered.connect(lambda _checked=False, m=mode: self._set_theme(m))
            appearance_group.addAction(action)
            appearance_menu.addAction(action)

        log_level_menu = view_menu.addMenu("Log Level")
        self._log_level_group = QActionGroup(self)
        self._log_level_group.setExclusive(True)
        current_level = self.config.get("logging", {}).get("level", "INFO").upper()
        for level_name in ("DEBUG", "INFO", "WARNING", "ERROR", "NONE"):
            action = QAction(level_name, self)
            action.setCheckable(True)
            action.setChecked(level_name == current_level)
            action.triggered.connect(lambda _checked=False, n=level_name: self._set_log_level(n))
            self._log_level_group.addAction(action)
            log_level_menu.addAction(action)

        log_action = QAction("Log File", self)
        log_action.triggered.connect(self._show_log_viewer)
        view_menu.addAction(log_action)

        config_action = QAction("Configuration", self)
        config_action.triggered.connect(self._show_config_editor)
        view_menu.addAction(config_action)
        view_menu.addSeparator()

        help_menu = menubar.addMenu("Help")
        about_action = QAction(f"About {APP_NAME}", self)
        about_action.setMenuRole(QAction.MenuRole.AboutRole)
        about_action.triggered.connect(self._show_about)
        help_menu.addAction(about_action)

    def _setup_tray(self):
        """Setup system tray icon (optional)."""
        self.tray_icon: Optional[QSystemTrayIcon] = None
        if not QSystemTrayIcon.isSystemTrayAvailable():
            return

        icon_path = resource_path("appicon.icns")
        if icon_path.exists():
            icon = QIcon(str(icon_path))
        else:
            icon = self.style().standardIcon(QStyle.StandardPixmap.SP_MediaPlay)

        self.tray_icon = QSystemTrayIcon(icon, self)
        tray_menu = QMenu()
        show_action = tray_menu.addAction("Open Dashboard")
        show_action.triggered.connect(self._show_dashboard)
        tray_menu.addSeparator()
        quit_action = tray_menu.addAction("Quit")
        quit_action.triggered.connect(self._quit)
        self.tray_icon.setContextMenu(tray_menu)
        self.tray_icon.setToolTip(tray_tooltip(self._meeting, False))
        self.tray_icon.show()

    def _connect_worker(self):
        self.worker.loop_ready.connect(self._on_loop_ready)
        self.worker.meeting_changed.connect(self._on_meeting_changed)
        self.worker.session_status.connect(self._on_session_status)
        self.worker.error_occurred.connect(self._on_error)
        self.worker.recording_saved.connect(self._on_recording_saved)
        self.worker.conversion_finished.connect(self._on_conversion_finished)
        self.worker.sources_ready.connect(self._on_sources_ready)
        self.worker.permissions_ready.connect(self._on_permissions_ready)
        self.worker.microphone_answer.connect(self._on_microphone_answer)
        self.worker.auto_start_changed.connect(self._on_auto_start_saved)

    # --- theming ---

    def _is_dark_mode(self) -> bool:
        if self.theme_mode == "dark":
            return True
        if self.theme_mode == "light":
            return False
        return QApplication.palette().window().color().lightness() < 128

    def _set_theme(self, mode: str):
        self.theme_mode = mode
        self._apply_styles()

    def _apply_styles(self):
        app = QApplication.instance()
        app.setStyleSheet(get_application_stylesheet(self._is_dark_mode()))
        for widget in app.allWidgets():
            widget.style().unpolish(widget)
            widget.style().polish(widget)
        self.update()

    # --- display helpers ---

    @property
    def is_recording(self) -> bool:
        return self._session_status == SessionStatus.RECORDING.value

    def log(self, message: str):
        """Prepend a timestamped line to the activity log."""
        stamp = datetime.now().strftime("%H:%M:%S")
        self.log_view.setPlainText(f"[{stamp}] {message}\n" + self.log_view.toPlainText())

    def set_error(self, message: str = ""):
        self.error_label.setText(message)

    def _refresh_status(self):
        busy = self._session_status != SessionStatus.IDLE.value
        if self.is_recording:
            self.status_label.setText("Recording in progress…")
            state = "recording"
        elif self._session_status == SessionStatus.FINALIZING.value:
            self.status_label.setText("Saving recording…")
            state = "recording"
        else:
            self.status_label.setText(meeting_label(self._meeting))
            state = "meeting" if self._meeting.get("in_meeting") else ""
        self.status_label.setProperty("status_state", state)
        self.status_label.style().unpolish(self.status_label)
        self.status_label.style().polish(self.status_label)

        self.detail_label.setText(meeting_detail(self._meeting))
        self.start_btn.setEnabled(not busy)
        self.stop_btn.setEnabled(self.is_recording)
        if self.tray_icon is not None:
            self.tray_icon.setToolTip(tray_tooltip(self._meeting, self.is_recording))

    # --- worker signal handlers ---

    def _on_loop_ready(self):
        self.log("Meeting detection started.")
        self.worker.refresh_sources()
        self.worker.check_permissions()

    def _on_meeting_changed(self, meeting: dict):
        self._meeting = meeting
        if meeting.get("in_meeting"):
            self.log(f"Meeting detected ({meeting.get('app_key')}): {meeting.get('title') or ''}".rstrip(": "))
        else:
            self.log("No meeting detected.")
        self._refresh_status()

    def _on_session_status(self, status: str, message: str):
        self._session_status = status
        if status == SessionStatus.ERROR.value:
            self.set_error(message or "Recorder error.")
            self.log(f"Recorder error: {message or 'Unknown'}")
        elif status == SessionStatus.RECORDING.value:
            self.set_error("")
            self.log(message or "Recording started.")
        elif message:
            self.log(message)
        self._refresh_status()

    def _on_error(self, message: str):
        self.set_error(message)
        self.log(f"Error: {message}")

    def _on_recording_saved(self, path: str):
        self.log(f"Recording saved to {path}")

    def _on_conversion_finished(self, path: str, success: bool):
        if success:
            self.log(f"MP4 ready: {path}")
            if self.tray_icon is not None:
                self.tray_icon.showMessage(
                    "Recording converted",
                    f"Saved {Path(path).name}",
                    QSystemTrayIcon.MessageIcon.Information,
                    5000,
                )
        else:
            self.log(f"MP4 conversion failed for recording '{path}'. The webm file was kept.")

    def _on_sources_ready(self, sources: list):
        current = self.source_combo.currentData()
        self.source_combo.clear()
        self.source_combo.addItem("Automatic (meeting window)", AUTO_SOURCE)
        for source in sources:
            self.source_combo.addItem(f"{source['name']} ({source['kind']})", source["id"])
        index = self.source_combo.findData(current)
        self.source_combo.setCurrentIndex(index if index >= 0 else 0)
        self.log(f"Found {len(sources)} capture sources.")

    def _on_permissions_ready(self, statuses: dict):
        for kind, label in PERMISSION_LABELS.items():
            status = statuses.get(kind, "unknown")
            row_label = self.permission_labels[kind]
            row_label.setText(f"{label}: {status}")
            row_label.setObjectName("permission_granted" if status == "granted" else "permission_denied")
            row_label.style().unpolish(row_label)
            row_label.style().polish(row_label)
        self.request_mic_btn.setEnabled(statuses.get("microphone") != "granted")

        if any(statuses.get(kind) == "denied" for kind in ("screen", "microphone")):
            PermissionsDialog(statuses, self).exec()

    def _on_microphone_answer(self, answer: str):
        if answer == "granted":
            self.log("Microphone access granted.")
        else:
            self.set_error(MICROPHONE_PERMISSION_GUIDANCE)
            self.log("Microphone access denied by system.")
        self.worker.check_permissions()

    def _on_auto_start_saved(self, enabled: bool):
        self.log(f"Auto-start {'enabled' if enabled else 'disabled'}.")

    # --- user actions ---

    def _on_start_recording(self):
        self.set_error("")
        source_id = self.source_combo.currentData() or None
        self.log("Starting recording" + (f" on {source_id}." if source_id else "."))
        self.worker.start_recording(source_id)

    def _on_stop_recording(self):
        self.log("Stopping recording.")
        self.worker.stop_recording()

    def _on_auto_start_toggled(self, checked: bool):
        self.worker.set_auto_start(checked)

    def _on_refresh_sources(self):
        self.worker.refresh_sources()

    def _on_check_permissions(self):
        self.log("Checking permissions.")
        self.worker.check_permissions()

    def _on_request_microphone(self):
        self.worker.request_microphone()

    def _on_open_recordings_folder(self):
        try:
            self.recordings_dir.mkdir(parents=True, exist_ok=True)
            subprocess.run(["open", str(self.recordings_dir)], check=False)
        except OSError as e:
            logger.error(f"Could not open recordings folder: {e}", exc_info=True)
            QMessageBox.warning(self, "Error", f"Could not open {self.recordings_dir}:\n{e}")

    def _set_log_level(self, level_name: str):
        """Change the logging level for the current session."""
        self.config.setdefault("logging", {})["level"] = level_name
        setup_logging(self.config)
        if level_name != "NONE":
            logger.info(f"Log level changed to {level_name}")

    def _show_log_viewer(self):
        if self._log_viewer is None:
            self._log_viewer = LogViewerDialog(self)
        self._log_viewer.show()
        self._log_viewer.raise_()

    def _show_config_editor(self):
        if self._config_editor is None:
            self._config_editor = ConfigEditorDialog(self)
            self._config_editor.config_saved.connect(self._on_config_saved)
        self._config_editor.show()
        self._config_editor.raise_()

    def _on_config_saved(self):
        try:
            self.config = load_config()
            setup_logging(self.config)
            self.log("Configuration saved. Restart to apply detection and capture changes.")
        except Exception as e:
            logger.error(f"Failed to reload configuration: {e}", exc_info=True)
            self.set_error(f"Failed to reload configuration: {e}")

    def _show_about(self):
        QMessageBox.about(
            self, f"About {APP_NAME}",
            f"{APP_NAME} {APP_VERSION}\n\n"
            "Detects Zoom, Teams and Meet calls and records the screen and "
            f"microphone while they run.\n\nRecordings: {self.recordings_dir}"
        )

    def _show_dashboard(self):
        self.show()
        self.raise_()
        self.activateWindow()

    def _quit(self):
        self._quitting = True
        self.close()

    def closeEvent(self, event):
        """Hide to the tray unless quitting; on quit, finish the recording first."""
        if not self._quitting and self.tray_icon is not None:
            event.ignore()
            self.hide()
            self.tray_icon.showMessage(
                APP_NAME, "Still watching for meetings in the menu bar.",
                QSystemTrayIcon.MessageIcon.Information, 3000,
            )
            return

        if self.is_recording:
            reply = QMessageBox.question(
                self, "Recording in Progress",
                "A recording is in progress. Stop, save and exit?",
                QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
                QMessageBox.StandardButton.No,
            )
            if reply != QMessageBox.StandardButton.Yes:
                self._quitting = False
                event.ignore()
                return

        # The worker saves any active recording before its loop exits.
        self.worker.stop()
        self.worker.wait(30000)
        if self.tray_icon is not None:
            self.tray_icon.hide()
        logger.info("Application window closed")
        event.accept()
        QApplication.instance().quit()


def main():
    """Application entry point."""
    if sys.platform != "darwin":
        print("This application only runs on macOS.")
        sys.exit(1)

    app = QApplication(sys.argv)
    app.setApplicationName(APP_NAME)
    app.setApplicationVersion(APP_VERSION)
    app.setOrganizationName("MeetingRecorder")
    app.setQuitOnLastWindowClosed(False)

    try:
        config = load_config()
    except Exception as e:
        logger.error(f"Failed to load configuration: {e}", exc_info=True)
        QMessageBox.critical(None, "Missing Configuration",
                             f"Could not load the configuration file.\n\n{e}")
        sys.exit(1)
    setup_logging(config)
    logger.info(f"Application starting (version {APP_VERSION})")

    settings = SettingsStore(SETTINGS_PATH, logger=logger)
    settings.ensure_file()

    coordinator = build_coordinator(config, settings)
    worker = CoordinatorWorker(coordinator)
    window = MeetingRecorderApp(config, settings, worker)
    worker.start()
    window.show()

    exit_code = app.exec()
    if worker.isRunning():
        worker.stop()
        worker.wait(30000)
    logger.info(f"Application exiting (code {exit_code})")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
