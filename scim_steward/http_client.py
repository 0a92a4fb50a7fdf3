"""HTTP transport for delegating persistence to a remote SCIM service provider.

``HttpResourceStore`` speaks to the remote endpoint through ``SCIMClient``.
One ``requests.Session`` per client carries the credentials, TLS and proxy
settings; every call goes through ``_request``, which retries on
429 Too Many Requests (RFC 6585) using the ``Retry-After`` delay.
"""

import json
import logging
import time
from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth
from requests.structures import CaseInsensitiveDict

logger = logging.getLogger(__name__)

SCIM_MEDIA_TYPE = "application/scim+json"
DEFAULT_RETRY_AFTER = 2.0


class SCIMResponse:
    """Status, headers and body of one remote call."""

    def __init__(self, status_code: int, headers: Dict[str, str], body: str):
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers)
        self.body = body
        self._parsed = False
        self._json: Any = None

    def json(self) -> Any:
        if not self._parsed:
            self._json = json.loads(self.body) if self.body else None
            self._parsed = True
        return self._json

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name)

    def error_detail(self) -> str:
        """``scimType: detail`` from an RFC 7644 §3.12 error body, else the raw body."""
        try:
            body = self.json()
        except ValueError:
            return self.body[:200]
        if not isinstance(body, dict):
            return self.body[:200]
        detail = body.get("detail") or ""
        scim_type = body.get("scimType")
        return f"{scim_type}: {detail}" if scim_type else detail


class SCIMClient:
    """Client for one remote SCIM base URL.

    Args:
        base_url:       Root of the remote endpoint, e.g. ``https://idp.example.com/scim/v2``.
        token:          Bearer token; wins over basic credentials.
        username:       HTTP Basic user.
        password:       HTTP Basic password.
        tls_no_verify:  Accept any server certificate.
        ca_bundle:      CA bundle used to verify the server certificate.
        proxy:          Proxy URL for both schemes.
        timeout:        Seconds per attempt.
        max_retries:    How many times a 429 is retried before it is returned.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        tls_no_verify: bool = False,
        ca_bundle: Optional[str] = None,
        proxy: Optional[str] = None,
        timeout: float = 30,
        max_retries: int = 3,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self.session.headers.update({"Accept": SCIM_MEDIA_TYPE, "Content-Type": SCIM_MEDIA_TYPE})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"
        elif username and password:
            self.session.auth = HTTPBasicAuth(username, password)
        self.session.verify = ca_bundle or not tls_no_verify
        if proxy:
            self.session.proxies.update({"http": proxy, "https": proxy})

    def get(self, path: str) -> SCIMResponse:
        return self._request("GET", path)

    def post(self, path: str, payload: Dict[str, Any]) -> SCIMResponse:
        return self._request("POST", path, payload)

    def put(self, path: str, payload: Dict[str, Any]) -> SCIMResponse:
        return self._request("PUT", path, payload)

    def patch(self, path: str, payload: Dict[str, Any]) -> SCIMResponse:
        return self._request("PATCH", path, payload)

    def delete(self, path: str) -> SCIMResponse:
        return self._request("DELETE", path)

    def close(self):
        self.session.close()

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> SCIMResponse:
        url = f"{self.base_url}{path}"
        logger.debug("%s %s headers=%s", method, url, redact_auth(dict(self.session.headers)))
        attempt = 0
        while True:
            resp = self.session.request(method, url, json=payload, timeout=self.timeout)
            result = SCIMResponse(resp.status_code, dict(resp.headers), resp.text)
            if result.status_code != 429 or attempt >= self.max_retries:
                return result
            attempt += 1
            delay = parse_retry_after(result.header("Retry-After"))
            logger.info("%s %s throttled (attempt %d/%d), retrying in %.1fs",
                        method, url, attempt, self.max_retries, delay)
            time.sleep(delay)


def parse_retry_after(value: Optional[str]) -> float:
    """Seconds to wait for a ``Retry-After`` value given in delta-seconds.

    Missing or unparseable values fall back to ``DEFAULT_RETRY_AFTER``; ``0``
    means retry at once.
    """
    if not value:
        return DEFAULT_RETRY_AFTER
    try:
        return max(0.0, float(value))
    except ValueError:
        return DEFAULT_RETRY_AFTER


def redact_auth(headers: Dict[str, str]) -> Dict[str, str]:
    return {k: ("***REDACTED***" if k.lower() == "authorization" else v) for k, v in headers.items()}
