"""
Application constants, logging setup, and configuration loading.
"""
import json
import logging
import logging.handlers
import shutil
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from version import __version__

# --- Configuration Constants ---
APP_NAME = "Meeting Recorder"
APP_VERSION = __version__
APP_SUPPORT_DIR = Path.home() / "Library" / "Application Support" / "MeetingRecorder"
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
SETTINGS_PATH = APP_SUPPORT_DIR / "settings.json"
LOG_DIR = APP_SUPPORT_DIR / ".logs"

# --- Logging Setup ---
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
    "NONE": None,  # Disables logging entirely
}

# GUI logger and the core library logger handed to the coordinator
logger = logging.getLogger("MeetingRecorder")
core_logger = logging.getLogger("meeting_recorder")

# Set by setup_logging
current_log_file_path: Optional[Path] = None


def setup_logging(config: Optional[Dict] = None):
    """Configure logging based on config file settings."""
    global current_log_file_path

    log_cfg = config.get("logging", {}) if config else {}
    log_level = LOG_LEVELS.get(log_cfg.get("level", "INFO").upper(), logging.INFO)
    log_to_file = log_cfg.get("log_to_file", True)
    log_file_name = log_cfg.get("log_file_name", "meeting_recorder.log")

    for named in (logger, core_logger):
        named.handlers.clear()
        named.propagate = False

    if log_level is None:
        logger.setLevel(logging.CRITICAL + 10)
        core_logger.setLevel(logging.CRITICAL + 10)
        current_log_file_path = None
        return

    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    core_logger.addHandler(console_handler)

    # Rotating: 2 MB max, keep 3 backups
    current_log_file_path = None
    if log_to_file:
        try:
            LOG_DIR.mkdir(parents=True, exist_ok=True)
            current_log_file_path = LOG_DIR / log_file_name
            file_handler = logging.handlers.RotatingFileHandler(
                current_log_file_path,
                maxBytes=2 * 1024 * 1024,
                backupCount=3,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
            core_logger.addHandler(file_handler)
        except OSError as e:
            print(f"Failed to create log file: {e}")
            current_log_file_path = None

    logger.setLevel(log_level)
    core_logger.setLevel(log_level)


# Initial basic setup (reconfigured once config is loaded)
logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')
logger.setLevel(logging.INFO)


def resource_path(relative_path: str) -> Path:
    """Get absolute path to resource, works for dev and for py2app bundle."""
    if hasattr(sys, '_MEIPASS'):
        return Path(sys._MEIPASS) / relative_path
    elif getattr(sys, 'frozen', False):
        base_path = Path(sys.executable).parent.parent / 'Resources'
    else:
        base_path = Path(__file__).parent.parent
    return base_path / relative_path


def load_config() -> Dict[str, Any]:
    """Read config.json from App Support, copying the bundled one on first run.

    Raises:
        FileNotFoundError: neither the user config nor the bundled default exists.
        json.JSONDecodeError: the config file is not valid JSON.
    """
    APP_SUPPORT_DIR.mkdir(parents=True, exist_ok=True)
    if not CONFIG_PATH.exists():
        bundled_config = resource_path("config.json")
        if not bundled_config.exists():
            raise FileNotFoundError(f"Bundled configuration not found at {bundled_config}")
        shutil.copy2(str(bundled_config), str(CONFIG_PATH))
        logger.info(f"Config: first run, copied bundled config to {CONFIG_PATH}")

    with open(CONFIG_PATH, 'r', encoding='utf-8') as f:
        return json.load(f)
