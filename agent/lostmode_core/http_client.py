"""
HTTP session with connection pooling, gateway retry, and CA bundle fix.

Only GET/HEAD are retried at the adapter level, and only on 502/503/504.
POST is never replayed: a gateway error can arrive after the backend already
stored the report. Connection and read errors are NOT retried here either;
CommandChannel owns that loop so that stopping the agent can cancel it
between attempts.
"""

import os

import certifi
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

_retry_strategy = Retry(
    total=2,
    connect=0,
    read=0,
    backoff_factor=0.5,                         # 0.5s, 1s between gateway retries
    status_forcelist=[502, 503, 504],
    allowed_methods=["HEAD", "GET"],
    raise_on_status=False,
)


def _get_ca_bundle():
    """Get the CA bundle path.

    Priority: env var (corporate proxies, frozen builds) → certifi.
    """
    env_ca = os.environ.get("REQUESTS_CA_BUNDLE") or os.environ.get("SSL_CERT_FILE")
    if env_ca and os.path.isfile(env_ca):
        return env_ca
    return certifi.where()


def create_session():
    """Create a new requests.Session with connection pooling, retry, and SSL."""
    session = requests.Session()
    adapter = HTTPAdapter(
        pool_connections=1,
        pool_maxsize=3,
        max_retries=_retry_strategy,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.verify = _get_ca_bundle()
    session.headers["Accept"] = "application/json"
    return session


def auth_headers(token):
    """Bearer header when a token is present, otherwise nothing."""
    if token:
        return {"Authorization": f"Bearer {token}"}
    return {}
