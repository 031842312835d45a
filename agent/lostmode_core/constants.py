"""
Constants: version, reporting cadence, network timeouts, retry policy, user modes.
"""

AGENT_VERSION = "1.0.0"

# ─── Reporting cadence ───────────────────────────────────────────
REPORT_INTERVAL_MS = 10_000     # Desired interval between location fixes
FASTEST_INTERVAL_MS = 5_000     # Never deliver two fixes closer than this
CAPABILITY_RECHECK_SEC = 10     # Mode re-evaluation (one reporting cycle)

# ─── Network ─────────────────────────────────────────────────────
NETWORK_TIMEOUT_SEC = 15        # Per-attempt timeout for every backend call
MAX_RETRY_ATTEMPTS = 3          # Attempts per telemetry report (then drop)
RETRY_BACKOFF_BASE_SEC = 1.0    # 1s, 2s, 4s ...
RETRY_BACKOFF_CAP_SEC = 4.0     # ... capped here
GEOLOCATION_TIMEOUT_SEC = 5

DEFAULT_SERVER_URL = "http://localhost:5000"

# Backend routes, relative to server_url
UPDATE_PATH = "/update"
DEVICES_PATH = "/devices"
ADD_DEVICE_PATH = "/devices/add"
COMMAND_PATH = "/command"
LOGIN_PATH = "/login"
SIGNUP_PATH = "/signup"

# ─── Actuators ───────────────────────────────────────────────────
ALERT_DURATION_SEC = 6          # Bounded playback so a stuck flag can't ring forever
LOCK_MONITOR_SEC = 3            # How often the desktop host polls lock state

# ─── User modes (written by the mode-selection screen) ──────────
USER_MODE_AI = "AI"
USER_MODE_SECURE = "SECURE"
USER_MODE_BOTH = "BOTH"
DEFAULT_USER_MODE = USER_MODE_AI

REPORTING_USER_MODES = frozenset({USER_MODE_SECURE, USER_MODE_BOTH})

# ─── Preference keys ─────────────────────────────────────────────
PREF_USER_MODE = "user_mode"
PREF_DEVICE_ID = "selected_device_id"
PREF_AUTH_TOKEN = "auth_token"
PREF_SERVER_URL = "server_url"
PREF_REPORT_INTERVAL = "report_interval_ms"
PREF_LOCATION_CONSENT = "location_consent"

# Public IP geolocation services, tried in order. Accuracy is city-level.
IP_GEOLOCATION_SERVICES = (
    "http://ip-api.com/json/",
    "https://ipapi.co/json/",
    "https://get.geojs.io/v1/ip/geo.json",
)
IP_GEOLOCATION_ACCURACY_M = 5000.0
