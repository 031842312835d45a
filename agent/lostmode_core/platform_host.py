"""
Desktop host glue:
  - Capability queries (location consent, administrative authority)
  - Lock primitive (LockWorkStation / loginctl / pmset)
  - System lock detection + unlock monitor thread
  - Alert beeper
  - Single instance enforcement
"""

import os
import sys
import ctypes
import shutil
import subprocess
import threading

from .applier import ActuatorFailure
from .config import log, BASE_DIR
from .constants import LOCK_MONITOR_SEC, PREF_LOCATION_CONSENT

_MUTEX_NAME = "Global\\LostModeAgent_51c2"
_CONSENT_KEY = r"Software\Microsoft\Windows\CurrentVersion\CapabilityAccessManager\ConsentStore\location"


# ─── Capabilities ────────────────────────────────────────────────

def _windows_location_allowed():
    """Windows privacy switch for location (Settings → Privacy → Location)."""
    try:
        import winreg
        for hive in (winreg.HKEY_LOCAL_MACHINE, winreg.HKEY_CURRENT_USER):
            key = winreg.OpenKey(hive, _CONSENT_KEY, 0, winreg.KEY_READ)
            try:
                value, _ = winreg.QueryValueEx(key, "Value")
            finally:
                winreg.CloseKey(key)
            if str(value).lower() != "allow":
                return False
        return True
    except OSError:
        return False


def is_process_admin():
    """Elevated on Windows, root elsewhere."""
    if sys.platform == "win32":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except Exception:
            return False
    return hasattr(os, "geteuid") and os.geteuid() == 0


class DesktopHost:
    """
    Host adapter used by CapabilityProbe in production.

    Coarse (network) location requires the user's consent, which the
    setup screen stores as `location_consent` in the preference store.
    Fine location additionally needs the OS location switch on Windows.
    The agent runs as a background process, so background access follows
    the coarse grant.
    """

    def __init__(self, prefs):
        self._prefs = prefs

    def location_access(self):
        consent = self._prefs.get(PREF_LOCATION_CONSENT) is True
        fine = consent and sys.platform == "win32" and _windows_location_allowed()
        return fine, consent, consent

    def admin_active(self):
        return is_process_admin()


# ─── Lock primitive ──────────────────────────────────────────────

def lock_screen():
    """Lock the interactive session now. Raises ActuatorFailure on failure."""
    if sys.platform == "win32":
        try:
            ok = ctypes.windll.user32.LockWorkStation()
        except Exception as e:
            raise ActuatorFailure(f"LockWorkStation unavailable: {e}") from e
        if not ok:
            raise ActuatorFailure("LockWorkStation returned 0")
        return

    if sys.platform == "darwin":
        cmd = ["pmset", "displaysleepnow"]
    elif shutil.which("loginctl"):
        cmd = ["loginctl", "lock-sessions"]
    elif shutil.which("xdg-screensaver"):
        cmd = ["xdg-screensaver", "lock"]
    else:
        raise ActuatorFailure("No screen lock command available")

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.SubprocessError) as e:
        raise ActuatorFailure(f"{cmd[0]} failed: {e}") from e
    if result.returncode != 0:
        raise ActuatorFailure(f"{cmd[0]} exited {result.returncode}: {result.stderr.strip()[:200]}")


# ─── System lock detection ───────────────────────────────────────

def is_system_locked():
    """Best-effort check whether the interactive session is locked."""
    if sys.platform == "win32":
        try:
            hdesk = ctypes.windll.user32.OpenInputDesktop(0, False, 0x0001)
            if hdesk == 0:
                return True
            ctypes.windll.user32.CloseDesktop(hdesk)
        except Exception:
            pass
        return False

    session_id = os.environ.get("XDG_SESSION_ID")
    if session_id and shutil.which("loginctl"):
        try:
            result = subprocess.run(
                ["loginctl", "show-session", session_id, "-p", "LockedHint"],
                capture_output=True, text=True, timeout=5,
            )
            return result.stdout.strip().lower() == "lockedhint=yes"
        except (OSError, subprocess.SubprocessError):
            return False
    return False


class LockMonitor:
    """
    Background thread that turns lock-state polling into an unlock event.
    Fires `on_unlocked()` once per locked → unlocked transition.
    """

    def __init__(self, on_unlocked, probe=is_system_locked, interval=LOCK_MONITOR_SEC):
        self._on_unlocked = on_unlocked
        self._probe = probe
        self._interval = interval
        self._stop = threading.Event()
        self._thread = None

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="lock-monitor", daemon=True)
        self._thread.start()
        log.info("Lock monitor started")

    def stop(self):
        self._stop.set()

    def _run(self):
        was_locked = False
        while not self._stop.is_set():
            try:
                locked = self._probe()
                if locked and not was_locked:
                    log.info("System LOCKED")
                elif not locked and was_locked:
                    log.info("System UNLOCKED — password entered")
                    self._on_unlocked()
                was_locked = locked
            except Exception as e:
                log.warning("Lock monitor error: %s", e)
            self._stop.wait(self._interval)


# ─── Alert beeper ────────────────────────────────────────────────

class BeepAlertSink:
    """Loud repeating beep until stop(). AlertPlayer bounds the duration."""

    def __init__(self):
        self._stop = None
        self._thread = None

    def start(self):
        self.stop()
        stop_event = threading.Event()
        self._stop = stop_event
        self._thread = threading.Thread(
            target=self._beep_loop, args=(stop_event,), name="alert", daemon=True,
        )
        self._thread.start()

    def stop(self):
        if self._stop is not None:
            self._stop.set()
            self._stop = None

    @staticmethod
    def _beep_loop(stop_event):
        try:
            if sys.platform == "win32":
                import winsound
                while not stop_event.is_set():
                    winsound.Beep(2000, 800)    # 2000 Hz, 0.8s
                    stop_event.wait(0.1)
            else:
                while not stop_event.is_set():
                    sys.stdout.write("\a")
                    sys.stdout.flush()
                    stop_event.wait(0.3)
        except Exception as e:
            log.error("Alert loop error: %s", e)


# ─── Single Instance Lock ────────────────────────────────────────

_instance_handle = None


def ensure_single_instance():
    """Named mutex on Windows, exclusive lock file elsewhere."""
    global _instance_handle
    if sys.platform == "win32":
        try:
            _instance_handle = ctypes.windll.kernel32.CreateMutexW(None, False, _MUTEX_NAME)
            if ctypes.windll.kernel32.GetLastError() == 183:  # ERROR_ALREADY_EXISTS
                log.info("Another instance is already running. Exiting.")
                return False
        except Exception:
            pass
        return True

    import fcntl
    BASE_DIR.mkdir(parents=True, exist_ok=True)
    handle = open(BASE_DIR / "agent.lock", "w")
    try:
        fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        handle.close()
        log.info("Another instance is already running. Exiting.")
        return False
    _instance_handle = handle
    return True
