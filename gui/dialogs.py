"""
Dialog windows for log viewing, configuration editing, and permission guidance.
"""
import json
import subprocess
from typing import Dict, Optional

from PyQt6.QtCore import pyqtSignal
from PyQt6.QtGui import QFont
from PyQt6.QtWidgets import (
    QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QGridLayout,
    QLabel, QPushButton, QTextEdit, QMessageBox, QDialog,
)

import gui.constants as _constants
from gui.constants import CONFIG_PATH, logger, resource_path

# System Settings deep links for each privacy pane
PRIVACY_PANES = {
    "screen": "x-apple.systempreferences:com.apple.preference.security?Privacy_ScreenCapture",
    "microphone": "x-apple.systempreferences:com.apple.preference.security?Privacy_Microphone",
    "accessibility": "x-apple.systempreferences:com.apple.preference.security?Privacy_Accessibility",
}

PERMISSION_LABELS = {
    "screen": "Screen Recording",
    "microphone": "Microphone",
    "accessibility": "Accessibility",
}


class LogViewerDialog(QMainWindow):
    """A window for viewing the application log file."""

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Log Viewer")
        self.setMinimumSize(600, 400)
        self.resize(800, 500)

        central = QWidget()
        self.setCentralWidget(central)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(12, 12, 12, 12)

        self.log_text = QTextEdit()
        self.log_text.setReadOnly(True)
        self.log_text.setFont(QFont("Menlo", 11))
        layout.addWidget(self.log_text)

        btn_layout = QHBoxLayout()
        btn_layout.setSpacing(8)

        self.refresh_btn = QPushButton("Refresh")
        self.refresh_btn.setProperty("class", "primary")
        self.refresh_btn.clicked.connect(self._load_log)
        btn_layout.addWidget(self.refresh_btn)

        self.clear_btn = QPushButton("Clear Log")
        self.clear_btn.setProperty("class", "danger-outline")
        self.clear_btn.clicked.connect(self._clear_log)
        btn_layout.addWidget(self.clear_btn)

        btn_layout.addStretch()

        self.close_btn = QPushButton("Close")
        self.close_btn.clicked.connect(self.close)
        btn_layout.addWidget(self.close_btn)

        layout.addLayout(btn_layout)
        self._load_log()

    def _load_log(self):
        """Load the last 200 lines of the log file."""
        log_path = _constants.current_log_file_path
        if log_path is None:
            self.log_text.setPlainText("File logging is disabled in configuration.")
            return

        try:
            if not log_path.exists():
                self.log_text.setPlainText(f"Log file not found at:\n{log_path}")
                return
            max_lines = 200
            with open(log_path, 'r', encoding='utf-8') as f:
                all_lines = f.readlines()
            if not all_lines:
                self.log_text.setPlainText("(Log file is empty)")
                return
            tail_lines = all_lines[-max_lines:]
            header = ""
            if len(all_lines) > max_lines:
                header = f"--- Showing last {len(tail_lines)} of {len(all_lines)} lines ---\n\n"
            self.log_text.setPlainText(header + "".join(tail_lines))
            cursor = self.log_text.textCursor()
            cursor.movePosition(cursor.MoveOperation.End)
            self.log_text.setTextCursor(cursor)
        except Exception as e:
            self.log_text.setPlainText(f"Error loading log file: {e}")

    def _clear_log(self):
        log_path = _constants.current_log_file_path
        if log_path is None:
            return

        reply = QMessageBox.question(
            self, "Clear Log",
            "Are you sure you want to clear the log file?",
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
            QMessageBox.StandardButton.No
        )
        if reply != QMessageBox.StandardButton.Yes:
            return
        try:
            if log_path.exists():
                with open(log_path, 'w', encoding='utf-8') as f:
                    f.write("")
                self._load_log()
                logger.info("Log viewer: log file cleared by user")
        except Exception as e:
            QMessageBox.warning(self, "Error", f"Failed to clear log file: {e}")


class ConfigEditorDialog(QMainWindow):
    """A window for viewing and editing config.json.

    Detection and capture settings are read when the app starts, so saved
    changes take effect after a restart. Logging changes apply immediately.
    """

    config_saved = pyqtSignal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setWindowTitle("Configuration Editor")
        self.setMinimumSize(600, 500)
        self.resize(700, 600)
        self._is_modified = False

        central = QWidget()
        self.setCentralWidget(central)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(12, 12, 12, 12)

        info_label = QLabel(f"Editing: {CONFIG_PATH}")
        info_label.setObjectName("secondary_label")
        layout.addWidget(info_label)

        self.config_text = QTextEdit()
        self.config_text.setFont(QFont("Menlo", 11))
        self.config_text.textChanged.connect(self._on_text_changed)
        layout.addWidget(self.config_text)

        self.status_label = QLabel("")
        layout.addWidget(self.status_label)

        btn_layout = QHBoxLayout()
        btn_layout.setSpacing(8)

        self.reload_btn = QPushButton("Reload")
        self.reload_btn.clicked.connect(self._load_config)
        btn_layout.addWidget(self.reload_btn)

        self.restore_btn = QPushButton("Restore Packaged Config")
        self.restore_btn.clicked.connect(self._restore_packaged_config)
        btn_layout.addWidget(self.restore_btn)

        btn_layout.addStretch()

        self.save_btn = QPushButton("Save")
        self.save_btn.setProperty("class", "primary")
        self.save_btn.clicked.connect(self._save_config)
        btn_layout.addWidget(self.save_btn)

        self.close_btn = QPushButton("Close")
        self.close_btn.clicked.connect(self.close)
        btn_layout.addWidget(self.close_btn)

        layout.addLayout(btn_layout)
        self._load_config()

    def _set_status(self, text: str, color: str):
        self.status_label.setText(text)
        self.status_label.setStyleSheet(f"color: {color}; font-size: 12px;")

    def _on_text_changed(self):
        self._is_modified = True
        self.status_label.setText("")

    def _load_config(self):
        try:
            if CONFIG_PATH.exists():
                with open(CONFIG_PATH, 'r', encoding='utf-8') as f:
                    self.config_text.setPlainText(f.read())
                self._is_modified = False
                self.status_label.setText("")
            else:
                self.config_text.setPlainText("{}")
                self._set_status("Config file not found, starting with empty config.", "#FF9500")
        except Exception as e:
            self.config_text.setPlainText("")
            self._set_status(f"Error loading config: {e}", "#FF3B30")

    def _parse(self) -> Optional[Dict]:
        try:
            data = json.loads(self.config_text.toPlainText())
        except json.JSONDecodeError as e:
            self._set_status(f"✗ Invalid JSON: {e}", "#FF3B30")
            return None
        if not isinstance(data, dict):
            self._set_status("✗ Configuration must be a JSON object", "#FF3B30")
            return None
        return data

    def _save_config(self):
        config_data = self._parse()
        if config_data is None:
            QMessageBox.warning(
                self, "Invalid JSON",
                "The configuration contains invalid JSON and cannot be saved."
            )
            return

        try:
            formatted = json.dumps(config_data, indent=2)
            with open(CONFIG_PATH, 'w', encoding='utf-8') as f:
                f.write(formatted)
            self.config_text.setPlainText(formatted)
            self._is_modified = False
            self._set_status("✓ Configuration saved (restart to apply capture settings)", "#34C759")
            logger.info(f"Config editor: saved to {CONFIG_PATH}")
            self.config_saved.emit()
        except Exception as e:
            QMessageBox.critical(self, "Save Error", f"Failed to save configuration:\n{e}")

    def _restore_packaged_config(self):
        bundled_config = resource_path("config.json")
        if not bundled_config.exists():
            self._set_status("✗ Packaged config not found", "#FF3B30")
            return
        try:
            with open(bundled_config, 'r', encoding='utf-8') as f:
                self.config_text.setPlainText(f.read())
            self._is_modified = True
            self._set_status("✓ Packaged config restored (click Save to apply)", "#34C759")
            logger.info("Config editor: restored packaged config into editor")
        except Exception as e:
            logger.error("Config editor: failed to restore packaged config", exc_info=True)
            self._set_status(f"✗ Failed to restore packaged config: {e}", "#FF3B30")

    def closeEvent(self, event):
        if self._is_modified:
            reply = QMessageBox.question(
                self, "Unsaved Changes",
                "You have unsaved changes. Close anyway?",
                QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
                QMessageBox.StandardButton.No
            )
            if reply == QMessageBox.StandardButton.No:
                event.ignore()
                return
        event.accept()


def open_privacy_pane(kind: str):
    """Open the System Settings privacy pane for *kind*."""
    url = PRIVACY_PANES.get(kind)
    if not url:
        return
    try:
        subprocess.run(["open", url], check=False)
    except OSError as e:
        logger.warning(f"Could not open System Settings for {kind}: {e}")


class PermissionsDialog(QDialog):
    """Explains which macOS privacy permissions are missing and links to them."""

    def __init__(self, statuses: Dict[str, str], parent=None):
        super().__init__(parent)
        self.setWindowTitle("Permissions Required")
        self.setMinimumWidth(460)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(16, 16, 16, 16)

        intro = QLabel(
            "Meeting Recorder needs Screen Recording and Microphone access to record, "
            "and Accessibility access to read window titles for meeting detection."
        )
        intro.setWordWrap(True)
        layout.addWidget(intro)

        grid = QGridLayout()
        for row, (kind, label) in enumerate(PERMISSION_LABELS.items()):
            status = statuses.get(kind, "unknown")
            name_label = QLabel(label)
            status_label = QLabel(status)
            status_label.setObjectName("permission_granted" if status == "granted" else "permission_denied")
            grid.addWidget(name_label, row, 0)
            grid.addWidget(status_label, row, 1)
            if status != "granted":
                open_btn = QPushButton("Open Settings")
                open_btn.clicked.connect(lambda _checked=False, k=kind: open_privacy_pane(k))
                grid.addWidget(open_btn, row, 2)
        layout.addLayout(grid)

        note = QLabel("Restart the app after granting Screen Recording access.")
        note.setObjectName("secondary_label")
        layout.addWidget(note)

        btn_layout = QHBoxLayout()
        btn_layout.addStretch()
        close_btn = QPushButton("Close")
        close_btn.setProperty("class", "primary")
        close_btn.clicked.connect(self.accept)
        btn_layout.addWidget(close_btn)
        layout.addLayout(btn_layout)
