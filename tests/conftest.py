"""
Fixtures: preference store on tmp_path plus an AgentContext wired from fakes.
"""

from __future__ import annotations

import pytest

from lostmode_core.applier import AlertPlayer, CommandApplier
from lostmode_core.capabilities import CapabilityProbe
from lostmode_core.config import PreferenceStore
from lostmode_core.context import AgentContext
from tests.fakes import (
    SERVER,
    FakeChannel,
    FakeHost,
    FakeSource,
    RecordingLock,
    RecordingSink,
)


@pytest.fixture
def prefs(tmp_path) -> PreferenceStore:
    store = PreferenceStore(tmp_path / "config.json")
    store.set("server_url", SERVER)
    return store


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def lock_actuator() -> RecordingLock:
    return RecordingLock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def ctx(prefs, host, source, channel, lock_actuator, sink) -> AgentContext:
    return AgentContext(
        prefs=prefs,
        probe=CapabilityProbe(host),
        position_source=source,
        channel=channel,
        applier=CommandApplier(lock_actuator, AlertPlayer(sink, duration=60)),
        recheck_interval=0.05,
    )
