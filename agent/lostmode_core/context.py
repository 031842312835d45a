"""
AgentContext — every collaborator the supervisor needs, passed in explicitly.

There are no module-level clients: tests build a context out of fakes,
production builds one with build_context().
"""

from dataclasses import dataclass
from typing import Any, Optional

from .applier import AlertPlayer, CommandApplier
from .capabilities import CapabilityProbe
from .channel import CommandChannel
from .config import PreferenceStore
from .constants import CAPABILITY_RECHECK_SEC
from .http_client import create_session
from .location import IpGeolocationProvider, PositionSource


@dataclass
class AgentContext:
    prefs: PreferenceStore
    probe: CapabilityProbe
    position_source: PositionSource
    channel: CommandChannel
    applier: CommandApplier
    recheck_interval: float = CAPABILITY_RECHECK_SEC
    session: Optional[Any] = None           # owned HTTP session, closed on shutdown

    def close(self):
        if self.session is not None:
            try:
                self.session.close()
            except Exception:
                pass


def build_context(prefs, session=None, host=None):
    """Production wiring: desktop host, IP geolocation, OS lock, beeper."""
    from .platform_host import BeepAlertSink, DesktopHost, lock_screen

    session = session or create_session()
    probe = CapabilityProbe(host or DesktopHost(prefs))
    return AgentContext(
        prefs=prefs,
        probe=probe,
        position_source=PositionSource(IpGeolocationProvider(session), probe),
        channel=CommandChannel(session, prefs),
        applier=CommandApplier(lock_screen, AlertPlayer(BeepAlertSink())),
        session=session,
    )
