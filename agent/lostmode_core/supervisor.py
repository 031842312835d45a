"""
AgentSupervisor — owns the operating mode and drives the reporting loop.

Threads:
  control thread  — evaluate() every recheck_interval: reads the user mode,
                    queries capabilities, moves IDLE / ENGAGED / DEGRADED
  worker thread   — takes the newest sample from a one-slot mailbox and
                    runs run_cycle(): report → directive → apply → status
  position thread — owned by PositionSource, feeds on_sample()

At most one report is in flight. A sample that arrives while the worker is
busy waits in the mailbox; a newer one replaces it.
"""

import threading

from .capabilities import CapabilityKind, REMEDIATION_HINTS, requires_reporting
from .channel import CommandDirective, ReportCancelled, TelemetryReport, TransportError
from .config import log
from .location import CapabilityDenied
from .state import AgentStatus, OperatingMode

PENDING_LOCK_MESSAGE = "pending-lock: server requested lock but admin inactive — open app to enable"
LOCK_FAILED_MESSAGE = "Failed to lock device"


class AgentSupervisor:

    def __init__(self, ctx):
        self._ctx = ctx
        self._status = AgentStatus()
        self._status_lock = threading.Lock()
        self._listeners = []

        self._mode_lock = threading.RLock()
        self._handle = None
        self._capability_hint = None
        self._pending_lock = False

        self._mailbox = threading.Condition()
        self._next_sample = None

        self._stop = threading.Event()
        self._control_thread = None
        self._worker_thread = None

    # ─── Status surface ──────────────────────────────────────

    def current_status(self) -> AgentStatus:
        return self._status

    @property
    def mode(self) -> OperatingMode:
        return self._status.mode

    def subscribe(self, listener):
        """Call `listener(status)` on every change. Returns an unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _update_status(self, **changes):
        with self._status_lock:
            new = self._status.evolve(**changes)
            if new == self._status:
                return
            self._status = new
        for listener in list(self._listeners):
            try:
                listener(new)
            except Exception as e:
                log.warning("Status listener failed: %s", e)

    # ─── Lifecycle ───────────────────────────────────────────

    def start(self):
        if self._worker_thread and self._worker_thread.is_alive():
            return
        self._stop.clear()
        self._ctx.channel.resume()
        self._worker_thread = threading.Thread(target=self._worker_loop, name="report-worker", daemon=True)
        self._control_thread = threading.Thread(target=self._control_loop, name="supervisor", daemon=True)
        self._worker_thread.start()
        self._control_thread.start()
        log.info("Supervisor started (recheck every %ss)", self._ctx.recheck_interval)

    def stop(self, timeout=5.0):
        """Stop reporting, cancel retries, release actuators."""
        self._stop.set()
        self._ctx.channel.cancel()
        with self._mailbox:
            self._next_sample = None
            self._mailbox.notify_all()
        with self._mode_lock:
            self._stop_source()
            self._pending_lock = False
        self._ctx.applier.reset()

        for thread in (self._control_thread, self._worker_thread):
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout)
        log.info("Supervisor stopped")

    def wait(self, timeout=None):
        """Block until stop() is called. Returns True if stopped."""
        return self._stop.wait(timeout)

    def _control_loop(self):
        while not self._stop.is_set():
            try:
                self.evaluate()
            except Exception as e:
                log.error("Mode evaluation error: %s", e, exc_info=True)
            self._stop.wait(self._ctx.recheck_interval)

    # ─── Mode decision ───────────────────────────────────────

    def evaluate(self) -> OperatingMode:
        """One decision point: user mode + fresh capabilities → mode."""
        with self._mode_lock:
            if not requires_reporting(self._ctx.prefs.user_mode):
                if self.mode is not OperatingMode.IDLE:
                    self._enter_idle()
                return self.mode

            probe = self._ctx.probe
            caps = probe.current_capabilities()
            missing = caps.missing(probe.required_capabilities(OperatingMode.ENGAGED))
            previous_hint = self._capability_hint
            self._capability_hint = self._hint_for(
                caps.missing(probe.desired_capabilities(OperatingMode.ENGAGED)))

            if missing:
                self._enter_degraded(missing)
            elif self.mode is OperatingMode.ENGAGED:
                # Don't overwrite a network / lock error with a stale hint.
                if self._status.last_error in (None, previous_hint):
                    self._update_status(last_error=self._error_text())
            else:
                self._enter_engaged()
            return self.mode

    @staticmethod
    def _hint_for(kinds):
        if not kinds:
            return None
        return "; ".join(REMEDIATION_HINTS[k] for k in kinds)

    def _enter_engaged(self):
        previous = self.mode
        try:
            self._handle = self._ctx.position_source.start(
                self._ctx.prefs.report_interval_ms, self.on_sample)
        except CapabilityDenied as e:
            log.warning("Location start refused (%s) — capability revoked", e)
            self._enter_degraded([CapabilityKind.LOCATION])
            return
        log.info("%s → ENGAGED — Lost Mode active, sending location", previous.name)
        self._update_status(mode=OperatingMode.ENGAGED, last_error=self._error_text())

    def _enter_degraded(self, missing):
        self._stop_source()
        self._drop_queued_sample()
        hint = self._hint_for(missing)
        if self.mode is not OperatingMode.DEGRADED:
            log.warning("%s → DEGRADED — %s", self.mode.name, hint)
        self._update_status(mode=OperatingMode.DEGRADED, last_error=hint)

    def _enter_idle(self):
        log.info("%s → IDLE — Lost Mode not required", self.mode.name)
        self._stop_source()
        self._drop_queued_sample()
        self._ctx.applier.reset()
        self._capability_hint = None
        if self._pending_lock:
            log.info("Pending lock discarded — Lost Mode switched off")
        self._pending_lock = False
        self._update_status(mode=OperatingMode.IDLE, last_error=None, pending_lock=False, locked=False)

    def _stop_source(self):
        if self._handle is not None:
            self._ctx.position_source.stop(self._handle)
            self._handle = None

    def _drop_queued_sample(self):
        with self._mailbox:
            self._next_sample = None

    def _error_text(self, transport_error=None, lock_failed=False):
        if transport_error:
            return transport_error
        if self._pending_lock:
            return PENDING_LOCK_MESSAGE
        if lock_failed:
            return LOCK_FAILED_MESSAGE
        return self._capability_hint

    # ─── Samples ─────────────────────────────────────────────

    def on_sample(self, sample):
        """PositionSource callback. Replaces any sample not yet picked up."""
        with self._mailbox:
            if self._next_sample is not None:
                log.debug("Sample at %d superseded by %d",
                          self._next_sample.captured_at_ms, sample.captured_at_ms)
            self._next_sample = sample
            self._mailbox.notify()

    def notify_unlocked(self):
        """Unlock (password entry) event from the host."""
        self._ctx.applier.on_unlocked()
        self._update_status(locked=False)

    def _worker_loop(self):
        while True:
            with self._mailbox:
                while self._next_sample is None and not self._stop.is_set():
                    self._mailbox.wait()
                if self._stop.is_set():
                    return
                sample, self._next_sample = self._next_sample, None
            if self.mode is not OperatingMode.ENGAGED:
                # Queued by a source that was stopped meanwhile.
                log.debug("Sample at %d dropped — mode is %s", sample.captured_at_ms, self.mode.name)
                continue
            try:
                self.run_cycle(sample)
            except Exception as e:
                log.error("Reporting cycle error: %s", e, exc_info=True)

    def run_cycle(self, sample):
        """One ENGAGED cycle for `sample`. Never changes the mode."""
        report = TelemetryReport.from_sample(sample, self._ctx.prefs.device_id)
        directive = CommandDirective.EMPTY
        transport_error = None

        try:
            directive = self._ctx.channel.report(report)
        except ReportCancelled:
            log.info("Report cancelled — agent stopping")
            return
        except TransportError as e:
            transport_error = f"Network error sending location: {e}"

        if self.mode is not OperatingMode.ENGAGED:
            log.info("Mode changed to %s during report — directive ignored", self.mode.name)
            return

        if self._pending_lock and not directive.lock:
            directive = CommandDirective(lock=True, play_alert=directive.play_alert)

        lock_failed = False
        if not directive.empty:
            caps = self._ctx.probe.current_capabilities()
            outcome = self._ctx.applier.apply(directive, caps)
            if outcome.lock_pending:
                self._pending_lock = True
            elif directive.lock and (outcome.lock_succeeded or self._ctx.applier.already_locked):
                if self._pending_lock:
                    log.info("Pending lock applied")
                self._pending_lock = False
            lock_failed = outcome.lock_attempted and not outcome.lock_succeeded

        self._update_status(
            last_sample_at=sample.captured_at_ms,
            last_error=self._error_text(transport_error, lock_failed),
            pending_lock=self._pending_lock,
            locked=self._ctx.applier.already_locked,
        )
