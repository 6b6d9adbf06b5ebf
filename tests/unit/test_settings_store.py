"""
Tests for the JSON settings store.
"""

import json

from settings_store import SettingsStore


class TestSettingsStore:
    """Tests for SettingsStore."""

    def test_ensure_file_seeds_defaults(self, temp_dir):
        """ensure_file() should create the file with auto-start off."""
        path = temp_dir / "nested" / "settings.json"
        store = SettingsStore(path)
        store.ensure_file()
        assert json.loads(path.read_text()) == {"autoStartOnMeeting": False}

    def test_ensure_file_keeps_existing(self, temp_dir):
        """ensure_file() should not overwrite stored settings."""
        path = temp_dir / "settings.json"
        path.write_text(json.dumps({"autoStartOnMeeting": True}))
        SettingsStore(path).ensure_file()
        assert json.loads(path.read_text())["autoStartOnMeeting"] is True

    def test_set_merges(self, temp_dir):
        """set() should merge into stored values and persist."""
        path = temp_dir / "settings.json"
        store = SettingsStore(path)
        store.ensure_file()
        merged = store.set({"autoStartOnMeeting": True, "extra": 1})
        assert merged == {"autoStartOnMeeting": True, "extra": 1}
        assert SettingsStore(path).get() == merged
        assert store.auto_start is True

    def test_missing_file_returns_defaults(self, temp_dir):
        """get() on a missing file should return defaults."""
        assert SettingsStore(temp_dir / "none.json").get() == {"autoStartOnMeeting": False}

    def test_corrupt_file_returns_defaults(self, temp_dir):
        """An unreadable file should fall back to defaults."""
        path = temp_dir / "settings.json"
        path.write_text("{not json")
        assert SettingsStore(path).get() == {"autoStartOnMeeting": False}

    def test_non_object_file_returns_defaults(self, temp_dir):
        """A JSON file that is not an object should fall back to defaults."""
        path = temp_dir / "settings.json"
        path.write_text("[1, 2]")
        assert SettingsStore(path).get() == {"autoStartOnMeeting": False}
