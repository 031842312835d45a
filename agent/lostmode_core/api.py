"""
Backend account / device API — login, device registration, device list,
remote commands.

These are used by the setup flow and by the owner's "find my device" side;
the reporting loop itself only needs CommandChannel. All functions are
blocking and take the session and PreferenceStore explicitly.
"""

import platform
from dataclasses import dataclass

import requests

from .config import log
from .constants import (
    ADD_DEVICE_PATH, COMMAND_PATH, DEVICES_PATH, LOGIN_PATH, NETWORK_TIMEOUT_SEC,
    PREF_AUTH_TOKEN, PREF_DEVICE_ID, SIGNUP_PATH,
)
from .http_client import auth_headers


class ApiError(Exception):
    """Backend call failed (network, HTTP status, or unexpected body)."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class Device:
    id: int
    name: str
    owner_id: int
    last_lat: float = 0.0
    last_lng: float = 0.0
    last_update: str = ""

    @classmethod
    def from_json(cls, data):
        try:
            return cls(
                id=int(data["id"]),
                name=str(data["name"]),
                owner_id=int(data["owner_id"]),
                last_lat=float(data.get("last_lat") or 0.0),
                last_lng=float(data.get("last_lng") or 0.0),
                last_update=str(data.get("last_update") or ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ApiError(f"Invalid device object: {e}") from e


def _url(prefs, path):
    return f"{prefs.server_url}{path}"


def _request(session, method, url, token=None, **kwargs):
    kwargs.setdefault("timeout", NETWORK_TIMEOUT_SEC)
    try:
        resp = session.request(method, url, headers=auth_headers(token), **kwargs)
    except requests.RequestException as e:
        log.warning("%s %s network error: %s", method, url, e)
        raise ApiError(f"network error: {e}") from e
    log.info("%s %s → HTTP %d", method, url, resp.status_code)
    return resp


def _json_or_fail(resp, what):
    if not resp.ok:
        raise ApiError(f"{what} failed: HTTP {resp.status_code}", status_code=resp.status_code)
    try:
        return resp.json()
    except ValueError as e:
        raise ApiError(f"{what} failed: invalid JSON") from e


# ─── Authentication ──────────────────────────────────────────────

def _authenticate(session, prefs, path, email, password, what):
    resp = _request(session, "POST", _url(prefs, path), json={"email": email, "password": password})
    data = _json_or_fail(resp, what)
    token = data.get("token") if isinstance(data, dict) else None
    if not token:
        message = data.get("message") if isinstance(data, dict) else None
        raise ApiError(message or "Invalid response")
    prefs.set(PREF_AUTH_TOKEN, token)
    log.info("Auth token saved")
    return token


def login(session, prefs, email, password):
    """Log in and persist the bearer token. Returns the token."""
    return _authenticate(session, prefs, LOGIN_PATH, email, password, "Login")


def signup(session, prefs, email, password):
    return _authenticate(session, prefs, SIGNUP_PATH, email, password, "Signup")


def logout(prefs):
    prefs.remove(PREF_AUTH_TOKEN)
    prefs.remove(PREF_DEVICE_ID)


# ─── Devices ─────────────────────────────────────────────────────

def register_device(session, prefs, device_name=None):
    """Create this device on the backend and select it for reporting."""
    payload = {
        "name": device_name or platform.node(),
        "last_lat": None,
        "last_lng": None,
        "last_update": None,
    }
    resp = _request(session, "POST", _url(prefs, ADD_DEVICE_PATH), token=prefs.auth_token, json=payload)
    device = Device.from_json(_json_or_fail(resp, "Device registration"))
    prefs.set(PREF_DEVICE_ID, device.id)
    log.info("Registered device #%d (%s)", device.id, device.name)
    return device


def fetch_devices(session, prefs):
    """GET the owner's devices. Returns a list of Device."""
    resp = _request(session, "GET", _url(prefs, DEVICES_PATH), token=prefs.auth_token)
    data = _json_or_fail(resp, "Fetch devices")
    if not isinstance(data, list):
        raise ApiError("Fetch devices failed: expected a JSON array")
    return [Device.from_json(item) for item in data]


def send_device_command(session, prefs, device_id, command):
    """POST an arbitrary command object to a device. Returns True on 2xx."""
    url = f"{_url(prefs, COMMAND_PATH)}/{device_id}"
    resp = _request(session, "POST", url, token=prefs.auth_token, json=command)
    return resp.ok
