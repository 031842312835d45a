"""
PositionSource — periodic location fixes on a background thread.

A fix comes from a provider object with a single `fix()` method returning a
PositionSample or None. The bundled provider asks public IP geolocation
services (city-level accuracy); anything with better hardware can be
plugged in through AgentContext.

Samples are never stored: each one is handed to the callback and dropped.
"""

import itertools
import threading
import time
from dataclasses import dataclass

import requests

from .capabilities import CapabilityKind
from .config import log
from .constants import (
    FASTEST_INTERVAL_MS, GEOLOCATION_TIMEOUT_SEC, IP_GEOLOCATION_ACCURACY_M,
    IP_GEOLOCATION_SERVICES,
)


class CapabilityDenied(Exception):
    """Location was requested without the location capability."""


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PositionSample:
    latitude: float
    longitude: float
    accuracy_meters: float
    captured_at_ms: int


# ─── IP geolocation provider ─────────────────────────────────────

def _parse_ip_geo(data):
    """Return (lat, lng) from any of the supported services, or None."""
    if not isinstance(data, dict):
        return None
    if "status" in data:                        # ip-api.com
        if data.get("status") != "success":
            return None
        lat, lng = data.get("lat"), data.get("lon")
    else:                                       # ipapi.co / geojs.io
        lat, lng = data.get("latitude"), data.get("longitude")
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return None
    if lat == 0.0 and lng == 0.0:
        return None
    return lat, lng


class IpGeolocationProvider:
    """Coarse location from the public IP. Tries each service in order."""

    def __init__(self, session, services=IP_GEOLOCATION_SERVICES,
                 timeout=GEOLOCATION_TIMEOUT_SEC, clock=now_ms):
        self._session = session
        self._services = tuple(services)
        self._timeout = timeout
        self._clock = clock

    def fix(self):
        for url in self._services:
            try:
                resp = self._session.get(url, timeout=self._timeout)
                if resp.status_code != 200:
                    log.debug("Geolocation %s: HTTP %d", url, resp.status_code)
                    continue
                coords = _parse_ip_geo(resp.json())
            except (requests.RequestException, ValueError) as e:
                log.debug("Geolocation %s failed: %s", url, e)
                continue
            if coords:
                return PositionSample(
                    latitude=coords[0],
                    longitude=coords[1],
                    accuracy_meters=IP_GEOLOCATION_ACCURACY_M,
                    captured_at_ms=self._clock(),
                )
        log.warning("No geolocation service returned a position")
        return None


# ─── PositionSource ──────────────────────────────────────────────

class SourceHandle:
    """Identifies one start() call. Once stopped it never delivers again."""

    def __init__(self, handle_id, interval_ms):
        self.id = handle_id
        self.interval_ms = interval_ms
        self._stop = threading.Event()
        self.thread = None

    @property
    def active(self) -> bool:
        return not self._stop.is_set()

    def __repr__(self):
        return f"<SourceHandle #{self.id} every {self.interval_ms}ms{'' if self.active else ' stopped'}>"


class PositionSource:
    """
    start(interval_ms, on_sample) → SourceHandle
    stop(handle)

    The caller must check the location capability first; start() re-checks
    and raises CapabilityDenied, which is a caller bug, not a runtime path.
    """

    def __init__(self, provider, probe, fastest_interval_ms=FASTEST_INTERVAL_MS):
        self._provider = provider
        self._probe = probe
        self._fastest_ms = fastest_interval_ms
        self._ids = itertools.count(1)

    def start(self, interval_ms, on_sample):
        caps = self._probe.current_capabilities()
        if not caps.has(CapabilityKind.LOCATION):
            raise CapabilityDenied("location capability not granted")

        interval_ms = max(int(interval_ms), self._fastest_ms)
        handle = SourceHandle(next(self._ids), interval_ms)
        handle.thread = threading.Thread(
            target=self._run, args=(handle, on_sample),
            name=f"position-{handle.id}", daemon=True,
        )
        handle.thread.start()
        log.info("Location updates started (interval=%dms, fastest=%dms)", interval_ms, self._fastest_ms)
        return handle

    def stop(self, handle):
        if handle is None or not handle.active:
            return
        handle._stop.set()
        log.info("Location updates stopped (%r)", handle)

    def _acquire(self):
        try:
            return self._provider.fix()
        except Exception as e:
            log.warning("Location provider error: %s", e)
            return None

    def _run(self, handle, on_sample):
        interval = handle.interval_ms / 1000.0
        next_due = time.monotonic()
        last_delivered = None

        while handle.active:
            sample = self._acquire()
            if sample is not None and handle.active:
                if (last_delivered is not None
                        and sample.captured_at_ms - last_delivered < self._fastest_ms):
                    log.debug("Fix at %d inside fastest interval — skipped", sample.captured_at_ms)
                else:
                    last_delivered = sample.captured_at_ms
                    try:
                        on_sample(sample)
                    except Exception as e:
                        log.error("Sample callback failed: %s", e, exc_info=True)

            # Fixed-rate schedule; missed ticks are skipped, not bunched up.
            next_due += interval
            delay = next_due - time.monotonic()
            if delay < 0:
                next_due = time.monotonic()
                delay = 0
            handle._stop.wait(delay)
