import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_SETTINGS: Dict[str, Any] = {"autoStartOnMeeting": False}


class SettingsStore:
    """JSON-backed user settings (currently just the auto-start toggle)."""

    def __init__(self, path: Path, logger: Optional[logging.Logger] = None):
        self.path = Path(path)
        self._lock = threading.Lock()
        if logger:
            self.logger = logger
        else:
            self.logger = logging.getLogger(__name__)
            if not self.logger.hasHandlers():
                self.logger.addHandler(logging.NullHandler())

    def ensure_file(self):
        """Create the settings file with defaults if it does not exist."""
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write(dict(DEFAULT_SETTINGS))

    def get(self) -> Dict[str, Any]:
        """Current settings merged over the defaults."""
        with self._lock:
            return self._read()

    def set(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        """Merge *partial* into the stored settings and return the result."""
        with self._lock:
            merged = self._read()
            merged.update(partial or {})
            self._write(merged)
            return merged

    @property
    def auto_start(self) -> bool:
        return bool(self.get().get("autoStartOnMeeting", False))

    def _read(self) -> Dict[str, Any]:
        settings = dict(DEFAULT_SETTINGS)
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                stored = json.load(f)
            if isinstance(stored, dict):
                settings.update(stored)
            else:
                self.logger.error(f"Settings file {self.path} does not hold an object; using defaults")
        except FileNotFoundError:
            pass
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to read settings from {self.path}: {e}")
        return settings

    def _write(self, settings: Dict[str, Any]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(settings, f, indent=2)
