"""
Lost Mode Agent — Device Tracking & Remote Lock
===============================================
Runs in the background while the device is in lost mode. Sends ONLY the
device position (lat/lng/accuracy + timestamp) to the configured server and
obeys two server commands: lock the screen, play an alert sound.

Mode, server URL, device id and auth token are read from config.json in the
agent data directory; the agent takes no arguments.

Usage:
    python agent.py
"""

from lostmode_core.runner import run_with_auto_restart

if __name__ == "__main__":
    run_with_auto_restart()
