"""
CommandChannel — one telemetry report out, one command directive back.

report() is blocking and runs on the supervisor's worker thread. Transport
failures are retried a bounded number of times with exponential backoff;
after that the sample is abandoned (a newer one will follow). A 2xx reply
is never retried, and nothing that fails to parse is ever treated as a
command.
"""

import json
import threading
from dataclasses import dataclass
from typing import Optional

import requests

from .config import log
from .constants import (
    MAX_RETRY_ATTEMPTS, NETWORK_TIMEOUT_SEC, PREF_AUTH_TOKEN,
    RETRY_BACKOFF_BASE_SEC, RETRY_BACKOFF_CAP_SEC, UPDATE_PATH,
)
from .http_client import auth_headers
from .location import PositionSample


class TransportError(Exception):
    """Report could not be delivered (network failure or non-2xx reply)."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class ReportCancelled(TransportError):
    """Retry loop aborted because the agent is stopping."""


class MalformedResponse(ValueError):
    """2xx body that is not a JSON object."""


# ─── Wire types ──────────────────────────────────────────────────

def map_link(latitude, longitude):
    return f"https://maps.google.com/?q={latitude},{longitude}"


@dataclass(frozen=True)
class TelemetryReport:
    sample: PositionSample
    device_id: Optional[int] = None
    map_link: str = ""

    @classmethod
    def from_sample(cls, sample, device_id=None):
        return cls(
            sample=sample,
            device_id=device_id,
            map_link=map_link(sample.latitude, sample.longitude),
        )

    def to_payload(self):
        payload = {
            "lat": self.sample.latitude,
            "lng": self.sample.longitude,
            "accuracy": self.sample.accuracy_meters,
            "timestamp": self.sample.captured_at_ms,
            "map_link": self.map_link,
        }
        if self.device_id is not None and self.device_id > 0:
            payload["device_id"] = self.device_id
        return payload


@dataclass(frozen=True)
class CommandDirective:
    lock: bool = False
    play_alert: bool = False

    @property
    def empty(self) -> bool:
        return not (self.lock or self.play_alert)


CommandDirective.EMPTY = CommandDirective()


def _flag(value):
    """JSON true or the string "true"; everything else is false."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def parse_body(text):
    """Decode a 2xx body into a dict. Raises MalformedResponse."""
    if not text or not text.strip():
        raise MalformedResponse("empty body")
    try:
        data = json.loads(text)
    except ValueError as e:
        raise MalformedResponse(f"not JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponse(f"expected object, got {type(data).__name__}")
    return data


def directive_from_json(data):
    """Map a decoded response object onto a CommandDirective."""
    sound = data.get("sound")
    if sound is None:
        sound = data.get("play_sound")
    return CommandDirective(lock=_flag(data.get("lock")), play_alert=_flag(sound))


# ─── Channel ─────────────────────────────────────────────────────

class CommandChannel:
    """
    POST {server_url}/update with the report payload.

    `prefs` supplies server_url and auth_token on every attempt, so a token
    refreshed mid-retry is picked up. A rotated token in the reply is
    written back.
    """

    def __init__(self, session, prefs, timeout=NETWORK_TIMEOUT_SEC,
                 max_attempts=MAX_RETRY_ATTEMPTS,
                 backoff_base=RETRY_BACKOFF_BASE_SEC,
                 backoff_cap=RETRY_BACKOFF_CAP_SEC):
        self._session = session
        self._prefs = prefs
        self._timeout = timeout
        self._max_attempts = max(1, int(max_attempts))
        self._backoff_base = backoff_base
        self._backoff_cap = backoff_cap
        self._cancelled = threading.Event()

    # ── Cancellation ─────────────────────────────────────────

    def cancel(self):
        """Abort any retry loop at its next wait."""
        self._cancelled.set()

    def resume(self):
        self._cancelled.clear()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def backoff_delay(self, attempt):
        """Delay after the (0-based) failed attempt."""
        return min(self._backoff_base * (2 ** attempt), self._backoff_cap)

    # ── Report ───────────────────────────────────────────────

    def report(self, report):
        """Deliver `report`. Returns a CommandDirective or raises TransportError."""
        payload = report.to_payload()
        url = f"{self._prefs.server_url}{UPDATE_PATH}"
        last_error = None

        for attempt in range(self._max_attempts):
            if self._cancelled.is_set():
                raise ReportCancelled("agent stopping")
            try:
                resp = self._session.post(
                    url,
                    json=payload,
                    headers=auth_headers(self._prefs.auth_token),
                    timeout=self._timeout,
                )
            except requests.RequestException as e:
                last_error = e
                log.warning("Report attempt %d/%d failed: %s", attempt + 1, self._max_attempts, e)
                if attempt + 1 < self._max_attempts:
                    if self._cancelled.wait(self.backoff_delay(attempt)):
                        raise ReportCancelled("agent stopping") from e
                continue

            return self._handle_response(resp)

        log.error("Report FAILED after %d attempts — dropping sample", self._max_attempts)
        raise TransportError(f"delivery failed: {last_error}") from last_error

    def _handle_response(self, resp):
        if not 200 <= resp.status_code < 300:
            if resp.status_code == 401:
                log.error("Report REJECTED (401) — token missing or revoked")
            else:
                log.warning("Report failed: HTTP %d", resp.status_code)
            raise TransportError(f"HTTP {resp.status_code}", status_code=resp.status_code)

        try:
            data = parse_body(resp.text)
        except MalformedResponse as e:
            if resp.text and resp.text.strip():
                log.warning("Malformed reply ignored: %s", e)
            return CommandDirective.EMPTY

        self._acknowledge_token(data.get("token"))
        directive = directive_from_json(data)
        log.info("Report OK | lock=%s | sound=%s", directive.lock, directive.play_alert)
        return directive

    def _acknowledge_token(self, token):
        if isinstance(token, str) and token and token != self._prefs.auth_token:
            self._prefs.set(PREF_AUTH_TOKEN, token)
            log.info("Auth token rotated by server")
