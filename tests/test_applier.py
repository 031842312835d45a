"""
Tests for CommandApplier and AlertPlayer: authority gating, lock-once-per-
epoch, actuator failures, and bounded non-overlapping alerts.
"""

from __future__ import annotations

import itertools
import time

import pytest

from lostmode_core.applier import AlertPlayer, ApplyOutcome, CommandApplier
from lostmode_core.capabilities import CapabilitySet
from lostmode_core.channel import CommandDirective
from tests.fakes import FULL_CAPS, RecordingLock, RecordingSink

LOCK = CommandDirective(lock=True)
SOUND = CommandDirective(play_alert=True)


def make_applier(lock_actuator, sink, duration=60) -> CommandApplier:
    return CommandApplier(lock_actuator, AlertPlayer(sink, duration=duration))


def wait_for(predicate, timeout=2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ---------------------------------------------------------------------------
# TestLockGating
# ---------------------------------------------------------------------------


class TestLockGating:
    @pytest.mark.parametrize("fine,coarse,background", list(itertools.product([False, True], repeat=3)))
    def test_lock_never_invoked_without_admin_authority(self, fine, coarse, background) -> None:
        lock_actuator = RecordingLock()
        applier = make_applier(lock_actuator, RecordingSink())
        caps = CapabilitySet(
            has_fine_location=fine,
            has_coarse_location=coarse,
            has_background_location=background,
            has_admin_authority=False,
        )

        outcome = applier.apply(LOCK, caps)

        assert lock_actuator.calls == 0
        assert outcome.lock_pending is True
        assert outcome.lock_attempted is False

    def test_lock_with_authority_invokes_actuator(self, lock_actuator, sink) -> None:
        applier = make_applier(lock_actuator, sink)
        outcome = applier.apply(LOCK, FULL_CAPS)
        assert outcome == ApplyOutcome(lock_attempted=True, lock_succeeded=True)
        assert lock_actuator.calls == 1
        assert applier.already_locked is True

    def test_empty_directive_does_nothing(self, lock_actuator, sink) -> None:
        applier = make_applier(lock_actuator, sink)
        assert applier.apply(CommandDirective.EMPTY, FULL_CAPS) == ApplyOutcome()
        assert lock_actuator.calls == 0
        assert sink.events == []


# ---------------------------------------------------------------------------
# TestLockEpoch
# ---------------------------------------------------------------------------


class TestLockEpoch:
    def test_repeated_lock_in_same_epoch_calls_actuator_once(self, lock_actuator, sink) -> None:
        applier = make_applier(lock_actuator, sink)
        applier.apply(LOCK, FULL_CAPS)
        second = applier.apply(LOCK, FULL_CAPS)
        assert lock_actuator.calls == 1
        assert second.lock_attempted is False

    def test_unlock_event_opens_a_new_epoch(self, lock_actuator, sink) -> None:
        applier = make_applier(lock_actuator, sink)
        applier.apply(LOCK, FULL_CAPS)
        applier.on_unlocked()
        applier.apply(LOCK, FULL_CAPS)
        assert lock_actuator.calls == 2

    def test_reset_clears_epoch(self, lock_actuator, sink) -> None:
        applier = make_applier(lock_actuator, sink)
        applier.apply(LOCK, FULL_CAPS)
        applier.reset()
        assert applier.already_locked is False
        applier.apply(LOCK, FULL_CAPS)
        assert lock_actuator.calls == 2

    def test_actuator_failure_is_swallowed_and_retried_next_time(self, sink) -> None:
        lock_actuator = RecordingLock(fail=True)
        applier = make_applier(lock_actuator, sink)

        outcome = applier.apply(LOCK, FULL_CAPS)

        assert outcome.lock_attempted is True
        assert outcome.lock_succeeded is False
        assert applier.already_locked is False
        applier.apply(LOCK, FULL_CAPS)
        assert lock_actuator.calls == 2


# ---------------------------------------------------------------------------
# TestAlert
# ---------------------------------------------------------------------------


class TestAlert:
    def test_sound_directive_triggers_alert(self, lock_actuator, sink) -> None:
        applier = make_applier(lock_actuator, sink)
        outcome = applier.apply(SOUND, FULL_CAPS)
        assert outcome.alert_triggered is True
        assert sink.events == ["start"]
        applier.reset()

    def test_second_request_restarts_instead_of_overlapping(self, lock_actuator, sink) -> None:
        applier = make_applier(lock_actuator, sink)
        applier.apply(SOUND, FULL_CAPS)
        applier.apply(SOUND, FULL_CAPS)
        assert sink.events == ["start", "stop", "start"]
        applier.reset()
        assert sink.events == ["start", "stop", "start", "stop"]

    def test_alert_is_not_suppressed_by_lock_epoch(self, lock_actuator, sink) -> None:
        applier = make_applier(lock_actuator, sink)
        both = CommandDirective(lock=True, play_alert=True)
        applier.apply(both, FULL_CAPS)
        outcome = applier.apply(both, FULL_CAPS)
        assert outcome.alert_triggered is True
        assert sink.events.count("start") == 2
        applier.reset()

    def test_playback_stops_after_bounded_duration(self, sink) -> None:
        player = AlertPlayer(sink, duration=0.05)
        player.play()
        assert player.playing is True
        assert wait_for(lambda: sink.events == ["start", "stop"])
        assert player.playing is False

    def test_expired_timer_of_replaced_alert_does_not_stop_new_one(self, sink) -> None:
        player = AlertPlayer(sink, duration=0.2)
        player.play()
        time.sleep(0.1)
        player.play()
        time.sleep(0.15)
        # First timer would have fired by now; the second alert is still on.
        assert sink.events == ["start", "stop", "start"]
        assert wait_for(lambda: sink.events == ["start", "stop", "start", "stop"])

    def test_alert_failure_is_swallowed(self, lock_actuator) -> None:
        class BrokenSink(RecordingSink):
            def start(self):
                raise RuntimeError("no audio device")

        applier = make_applier(lock_actuator, BrokenSink())
        outcome = applier.apply(SOUND, FULL_CAPS)
        assert outcome.alert_triggered is False
