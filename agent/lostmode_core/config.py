"""
Paths, logging setup, config load/save, safe_print, PreferenceStore.
"""

import os
import json
import sys
import logging
import threading
from pathlib import Path

from .constants import (
    DEFAULT_SERVER_URL, DEFAULT_USER_MODE, PREF_AUTH_TOKEN, PREF_DEVICE_ID,
    PREF_REPORT_INTERVAL, PREF_SERVER_URL, PREF_USER_MODE, REPORT_INTERVAL_MS,
)


# ─── Paths ───────────────────────────────────────────────────────
# One config/state per device, independent of where the agent runs from.
_FOLDER_NAME = "LostModeAgent"


def _resolve_base_dir():
    override = os.environ.get("LOSTMODE_HOME")
    if override:
        return Path(override)
    if sys.platform == "win32":
        return Path(os.environ.get("PROGRAMDATA", "C:\\ProgramData")) / _FOLDER_NAME
    return Path.home() / ".lostmode"


BASE_DIR = _resolve_base_dir()
CONFIG_FILE = BASE_DIR / "config.json"
LOG_FILE = BASE_DIR / "agent.log"


# ─── Safe print (no crash when --noconsole) ──────────────────────

def safe_print(*args, **kwargs):
    try:
        print(*args, **kwargs)
    except Exception:
        pass


# ─── Logging ─────────────────────────────────────────────────────

log = logging.getLogger("lostmode")

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(log_file=LOG_FILE, level=logging.INFO):
    """Attach file + console handlers. Truncates the log file past 1 MB."""
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        if log_file.exists() and log_file.stat().st_size > 1_000_000:
            log_file.write_text("")
    except OSError:
        pass

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    log.handlers.clear()
    log.addHandler(file_handler)
    log.addHandler(console_handler)
    log.setLevel(level)
    return log


# ─── Config Management ──────────────────────────────────────────

def load_config(path=CONFIG_FILE):
    """Load config from disk. Returns dict or None."""
    path = Path(path)
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError):
            return None
        return data if isinstance(data, dict) else None
    return None


def save_config(config, path=CONFIG_FILE):
    """Save config dict to disk."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    log.info("Config saved to %s", path)


class PreferenceStore:
    """
    Key-value view over the JSON config file.

    Every read goes back to disk so that the mode-selection screen (or an
    operator editing the file) is picked up at the next decision point.
    Writes are serialized; the agent itself only writes auth_token on
    rotation and selected_device_id on registration.
    """

    def __init__(self, path=CONFIG_FILE):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self):
        return load_config(self.path) or {}

    def get(self, key, default=None):
        return self._read().get(key, default)

    def set(self, key, value):
        with self._lock:
            data = self._read()
            data[key] = value
            save_config(data, self.path)

    def remove(self, key):
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                save_config(data, self.path)

    def snapshot(self):
        return dict(self._read())

    # ── Typed accessors ──────────────────────────────────────

    @property
    def user_mode(self) -> str:
        mode = self.get(PREF_USER_MODE, DEFAULT_USER_MODE)
        return str(mode).upper() if mode else DEFAULT_USER_MODE

    @property
    def device_id(self):
        """Selected backend device id, or None when unset / invalid."""
        raw = self.get(PREF_DEVICE_ID)
        if isinstance(raw, bool):
            return None
        try:
            value = int(raw)
        except (TypeError, ValueError):
            return None
        return value if value > 0 else None

    @property
    def auth_token(self):
        token = self.get(PREF_AUTH_TOKEN)
        return token or None

    @property
    def server_url(self) -> str:
        return str(self.get(PREF_SERVER_URL) or DEFAULT_SERVER_URL).rstrip("/")

    @property
    def report_interval_ms(self) -> int:
        raw = self.get(PREF_REPORT_INTERVAL, REPORT_INTERVAL_MS)
        try:
            value = int(raw)
        except (TypeError, ValueError):
            log.warning("Invalid %s=%r; using %d", PREF_REPORT_INTERVAL, raw, REPORT_INTERVAL_MS)
            return REPORT_INTERVAL_MS
        return value if value > 0 else REPORT_INTERVAL_MS
