"""
OperatingMode + AgentStatus — the only state exposed outside the core.

AgentSupervisor is the single writer. Status objects are frozen; every
change produces a new snapshot, so readers on other threads never see a
half-updated status.
"""

import enum
from dataclasses import dataclass, replace
from typing import Optional


class OperatingMode(enum.Enum):
    IDLE = "idle"           # Reporting disabled, nothing required
    ENGAGED = "engaged"     # Reporting active, capabilities verified
    DEGRADED = "degraded"   # Reporting required but a capability is missing


@dataclass(frozen=True)
class AgentStatus:
    mode: OperatingMode = OperatingMode.IDLE
    last_sample_at: Optional[int] = None    # capture time (unix ms) of last processed sample
    last_error: Optional[str] = None
    pending_lock: bool = False              # lock requested, waiting for admin authority
    locked: bool = False                    # inside a lock epoch

    def evolve(self, **changes):
        return replace(self, **changes)

    @property
    def needs_attention(self) -> bool:
        """True when the UI should prompt the user to fix something."""
        return self.mode is OperatingMode.DEGRADED or self.pending_lock
