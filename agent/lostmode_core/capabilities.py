"""
CapabilityProbe — what the host currently allows us to do.

Capabilities can be granted or revoked at any moment from outside the
agent, so a CapabilitySet is only valid for the decision it was fetched
for. Nothing here caches.
"""

import enum
from dataclasses import dataclass

from .constants import REPORTING_USER_MODES
from .state import OperatingMode


class CapabilityKind(enum.Enum):
    LOCATION = "location"                       # fine OR coarse
    BACKGROUND_LOCATION = "background_location"
    ADMIN_AUTHORITY = "admin_authority"


@dataclass(frozen=True)
class CapabilitySet:
    has_fine_location: bool = False
    has_coarse_location: bool = False
    has_background_location: bool = False
    has_admin_authority: bool = False

    def has(self, kind):
        if kind is CapabilityKind.LOCATION:
            return self.has_fine_location or self.has_coarse_location
        if kind is CapabilityKind.BACKGROUND_LOCATION:
            return self.has_background_location
        if kind is CapabilityKind.ADMIN_AUTHORITY:
            return self.has_admin_authority
        return False

    def missing(self, kinds):
        """Subset of `kinds` not granted, in a stable order."""
        return [k for k in CapabilityKind if k in kinds and not self.has(k)]


_REPORTING_REQUIRED = frozenset({CapabilityKind.LOCATION})
_REPORTING_DESIRED = frozenset({
    CapabilityKind.ADMIN_AUTHORITY,
    CapabilityKind.BACKGROUND_LOCATION,
})

REMEDIATION_HINTS = {
    CapabilityKind.LOCATION: "Missing location permissions — open app to grant",
    CapabilityKind.BACKGROUND_LOCATION: "Background location not allowed — open app to grant",
    CapabilityKind.ADMIN_AUTHORITY: "Device admin inactive — open app to enable",
}


def requires_reporting(user_mode) -> bool:
    """SECURE and BOTH run lost mode; AI (and anything unknown) does not."""
    return str(user_mode or "").upper() in REPORTING_USER_MODES


class CapabilityProbe:
    """
    Thin query layer over a host object.

    The host must provide `location_access() -> (fine, coarse, background)`
    and `admin_active() -> bool`. DesktopHost in platform_host.py is the
    production host; tests pass a fake.
    """

    def __init__(self, host):
        self._host = host

    def current_capabilities(self) -> CapabilitySet:
        fine, coarse, background = self._host.location_access()
        return CapabilitySet(
            has_fine_location=bool(fine),
            has_coarse_location=bool(coarse),
            has_background_location=bool(background),
            has_admin_authority=bool(self._host.admin_active()),
        )

    @staticmethod
    def required_capabilities(mode):
        if mode is OperatingMode.IDLE:
            return frozenset()
        return _REPORTING_REQUIRED

    @staticmethod
    def desired_capabilities(mode):
        if mode is OperatingMode.IDLE:
            return frozenset()
        return _REPORTING_DESIRED
