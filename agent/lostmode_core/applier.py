"""
CommandApplier — turns a CommandDirective into lock / alert actions.

Lock is once per epoch: after a successful lock we do not lock again until
the user unlocks (password entered) or lost mode is switched off. Without
administrative authority a lock request is reported back as pending and
the supervisor keeps retrying it.

Alert is never suppressed: every request restarts a bounded playback.
"""

import threading
from dataclasses import dataclass

from .config import log
from .constants import ALERT_DURATION_SEC


class ActuatorFailure(Exception):
    """The OS refused or failed a lock / alert call."""


@dataclass(frozen=True)
class ApplyOutcome:
    lock_attempted: bool = False
    lock_succeeded: bool = False
    alert_triggered: bool = False
    lock_pending: bool = False


class AlertPlayer:
    """
    Single active alert. play() stops the current one (if any) before
    starting a new one, and a timer stops it after `duration` seconds.
    `sink` provides start() / stop().
    """

    def __init__(self, sink, duration=ALERT_DURATION_SEC):
        self._sink = sink
        self._duration = duration
        self._lock = threading.Lock()
        self._timer = None
        self._generation = 0

    @property
    def playing(self) -> bool:
        with self._lock:
            return self._timer is not None

    def play(self):
        with self._lock:
            self._stop_locked()
            self._generation += 1
            gen = self._generation
            self._sink.start()
            timer = threading.Timer(self._duration, self._expire, args=(gen,))
            timer.daemon = True
            self._timer = timer
            timer.start()
        log.info("Alert playing for %ss", self._duration)

    def stop(self):
        with self._lock:
            self._stop_locked()

    def _stop_locked(self):
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        try:
            self._sink.stop()
        except Exception as e:
            log.warning("Alert stop failed: %s", e)

    def _expire(self, gen):
        with self._lock:
            # A newer play() owns the sink now.
            if gen != self._generation:
                return
            self._stop_locked()
        log.info("Alert finished")


class CommandApplier:
    """apply(directive, caps) → ApplyOutcome. Never raises."""

    def __init__(self, lock_actuator, alert_player):
        self._lock_actuator = lock_actuator
        self._alert = alert_player
        self._lock_guard = threading.Lock()
        self._already_locked = False

    @property
    def already_locked(self) -> bool:
        return self._already_locked

    def on_unlocked(self):
        """Password entry observed — next lock directive locks again."""
        if self._already_locked:
            log.info("Device unlocked — lock epoch closed")
        self._already_locked = False

    def reset(self):
        """Lost mode switched off."""
        self._already_locked = False
        self._alert.stop()

    def apply(self, directive, caps):
        lock_attempted = lock_succeeded = lock_pending = False
        alert_triggered = False

        if directive.lock:
            if not caps.has_admin_authority:
                log.warning("Server requested lock but admin inactive — lock pending")
                lock_pending = True
            else:
                lock_attempted, lock_succeeded = self._lock_once()

        if directive.play_alert:
            log.info("Server requested sound")
            try:
                self._alert.play()
                alert_triggered = True
            except Exception as e:
                log.error("Failed to play alert sound: %s", e, exc_info=True)

        return ApplyOutcome(
            lock_attempted=lock_attempted,
            lock_succeeded=lock_succeeded,
            alert_triggered=alert_triggered,
            lock_pending=lock_pending,
        )

    def _lock_once(self):
        """Returns (attempted, succeeded)."""
        with self._lock_guard:
            if self._already_locked:
                log.debug("Lock requested inside current lock epoch — skipped")
                return False, False
            log.info("Server requested lock")
            try:
                self._lock_actuator()
            except Exception as e:
                log.error("Failed to lock device: %s", e, exc_info=True)
                return True, False
            self._already_locked = True
            log.info("Device locked")
            return True, True
