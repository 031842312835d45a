"""
Entry point and auto-restart wrapper.

The agent takes no arguments; everything comes from the preference store.
"""

import signal
import time

from .constants import AGENT_VERSION
from .config import log, safe_print, setup_logging, PreferenceStore
from . import api
from .context import build_context
from .platform_host import LockMonitor, ensure_single_instance
from .state import OperatingMode
from .supervisor import AgentSupervisor


def status_notifier():
    """Log-backed notification: one line per status change, problems as warnings."""
    last = {"text": None}

    def notify(status):
        if status.mode is OperatingMode.ENGAGED and not status.needs_attention:
            text = "Lost Mode active — sending location"
            if status.locked:
                text = "Device locked by server"
        elif status.mode is OperatingMode.IDLE:
            text = "Lost Mode off"
        else:
            text = status.last_error or "Action required"

        if text == last["text"]:
            return
        last["text"] = text
        if status.needs_attention:
            log.warning("[status] %s", text)
        else:
            log.info("[status] %s", text)

    return notify


def register_device_if_needed(ctx):
    """First run after login: create this device on the backend."""
    prefs = ctx.prefs
    if prefs.device_id is not None or not prefs.auth_token:
        return
    try:
        api.register_device(ctx.session, prefs)
    except api.ApiError as e:
        log.warning("Device registration failed: %s — reporting without device id", e)


def main():
    """Primary agent entry point. Blocks until SIGINT / SIGTERM."""
    setup_logging()
    safe_print("Lost Mode Agent v" + AGENT_VERSION)
    safe_print()

    if not ensure_single_instance():
        safe_print("Already running. Exiting.")
        return

    prefs = PreferenceStore()
    log.info("Loaded preferences from %s (mode=%s, device=%s)",
             prefs.path, prefs.user_mode, prefs.device_id)

    ctx = build_context(prefs)
    register_device_if_needed(ctx)

    supervisor = AgentSupervisor(ctx)
    supervisor.subscribe(status_notifier())
    monitor = LockMonitor(supervisor.notify_unlocked)

    def handle_signal(signum, frame):
        log.info("Signal %d received — stopping", signum)
        supervisor.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    monitor.start()
    supervisor.start()
    safe_print("Service running.\n")
    try:
        while not supervisor.wait(1.0):
            pass
    finally:
        monitor.stop()
        supervisor.stop()
        ctx.close()
        log.info("Agent shut down.")


def run_with_auto_restart():
    """
    Wrapper that auto-restarts on crash. Never gives up.
    Crash counter resets if the agent ran for 2+ minutes (not a boot-loop).
    """
    crash_count = 0
    crash_window = 120
    max_rapid_crashes = 10

    while True:
        start_time = time.time()
        try:
            main()
            break
        except KeyboardInterrupt:
            safe_print("\nAgent stopped by user.")
            break
        except Exception as e:
            elapsed = time.time() - start_time
            log.error("Agent crashed after %.0fs: %s", elapsed, e, exc_info=True)

            if elapsed > crash_window:
                crash_count = 0
            crash_count += 1

            if crash_count >= max_rapid_crashes:
                wait = 120
                log.warning("Many rapid crashes (%d). Waiting %ds...", crash_count, wait)
            else:
                wait = min(10 * crash_count, 60)

            log.info("Restarting in %ds (crash %d)...", wait, crash_count)
            time.sleep(wait)
