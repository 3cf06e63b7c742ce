"""Cloudflare REST API v4 client — KV, Workers scripts, Workers routes, DNS.

A CloudflareClient is built from an immutable CloudflareCredentials value
and is never re-pointed at another account: each request that needs
Cloudflare gets its own client (see cloudflare_service.initialize_for_user).

Every call is a single synchronous HTTP request with a timeout. No retries.
Errors surface as CloudflareAPIError carrying the HTTP status and the
`errors` list from the Cloudflare response envelope.
"""

import logging
from dataclasses import dataclass
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.cloudflare.com/client/v4"
DEFAULT_TIMEOUT = 15
KV_BINDING_NAME = "MAINTENANCE_PAGES"


# ──────────────────────────────────────────────
# Errors
# ──────────────────────────────────────────────

class CloudflareError(Exception):
    """Base class for everything the Cloudflare layer raises."""

    def __init__(self, message, status_code=None, errors=None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class CloudflareAPIError(CloudflareError):
    """An HTTP call failed or Cloudflare answered success=false."""


class ConfigurationError(CloudflareError):
    """Missing or invalid Cloudflare credentials."""


class KVWriteError(CloudflareError):
    pass


class KVReadError(CloudflareError):
    pass


class WorkerDeployError(CloudflareError):
    pass


class RouteError(CloudflareError):
    pass


class DNSError(CloudflareError):
    pass


# ──────────────────────────────────────────────
# Credentials
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class CloudflareCredentials:
    api_token: str
    account_id: str
    zone_id: str
    kv_namespace_id: str
    worker_name: str = "maintenance-worker"
    email: str = ""

    def __repr__(self):
        # Keep the token out of logs and tracebacks.
        return (
            f"CloudflareCredentials(account_id={self.account_id!r}, "
            f"zone_id={self.zone_id!r}, worker_name={self.worker_name!r})"
        )


# ──────────────────────────────────────────────
# Client
# ──────────────────────────────────────────────

def _error_list(resp):
    try:
        payload = resp.json()
    except ValueError:
        return []
    if isinstance(payload, dict):
        return payload.get("errors") or []
    return []


def _error_message(errors, fallback):
    if errors:
        return "; ".join(
            f"{e.get('code', '?')}: {e.get('message', '')}" if isinstance(e, dict) else str(e)
            for e in errors
        )
    return fallback


class CloudflareClient:
    def __init__(self, credentials, base_url=DEFAULT_API_BASE,
                 timeout=DEFAULT_TIMEOUT, session=None):
        self.credentials = credentials
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    # --- Plumbing ---

    def _account_path(self, suffix=""):
        return f"/accounts/{self.credentials.account_id}{suffix}"

    def _zone_path(self, suffix=""):
        return f"/zones/{self.credentials.zone_id}{suffix}"

    def _kv_value_path(self, key):
        return self._account_path(
            f"/storage/kv/namespaces/{self.credentials.kv_namespace_id}"
            f"/values/{quote(key, safe='')}"
        )

    def _script_path(self, name, suffix=""):
        return self._account_path(f"/workers/scripts/{quote(name, safe='')}{suffix}")

    def _send(self, method, path, **kwargs):
        headers = {"Authorization": f"Bearer {self.credentials.api_token}"}
        headers.update(kwargs.pop("headers", {}))
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise CloudflareAPIError(f"{method} {path} failed: {e}") from e

        logger.debug(f"Cloudflare {method} {path} -> {resp.status_code}")
        return resp

    def _call(self, method, path, **kwargs):
        """Send a request whose response is a JSON envelope; return `result`."""
        resp = self._send(method, path, **kwargs)
        try:
            payload = resp.json()
        except ValueError:
            payload = {}

        if resp.status_code >= 400 or not payload.get("success", False):
            errors = payload.get("errors") or []
            raise CloudflareAPIError(
                _error_message(errors, f"{method} {path} returned HTTP {resp.status_code}"),
                status_code=resp.status_code,
                errors=errors,
            )
        return payload.get("result")

    # --- Identity / access ---

    def verify_token(self):
        return self._call("GET", "/user/tokens/verify")

    def get_account(self):
        return self._call("GET", self._account_path())

    def get_zone(self):
        return self._call("GET", self._zone_path())

    def get_kv_namespace(self):
        return self._call(
            "GET",
            self._account_path(
                f"/storage/kv/namespaces/{self.credentials.kv_namespace_id}"
            ),
        )

    # --- KV ---

    def read_kv_value(self, key):
        """Raw stored value as text, or None when the key does not exist."""
        resp = self._send("GET", self._kv_value_path(key))
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            errors = _error_list(resp)
            raise CloudflareAPIError(
                _error_message(errors, f"KV read of {key!r} returned HTTP {resp.status_code}"),
                status_code=resp.status_code,
                errors=errors,
            )
        return resp.text

    def write_kv_value(self, key, value):
        return self._call(
            "PUT",
            self._kv_value_path(key),
            data=value.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )

    def delete_kv_value(self, key):
        """Delete a KV key. Returns False if it was already absent."""
        try:
            self._call("DELETE", self._kv_value_path(key))
        except CloudflareAPIError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    # --- Workers scripts ---

    def get_worker_script(self, name):
        """Script source, or None if no script exists under this name."""
        resp = self._send("GET", self._script_path(name))
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            errors = _error_list(resp)
            raise CloudflareAPIError(
                _error_message(errors, f"Worker lookup returned HTTP {resp.status_code}"),
                status_code=resp.status_code,
                errors=errors,
            )
        return resp.text

    def upload_worker_script(self, name, script):
        return self._call(
            "PUT",
            self._script_path(name),
            data=script.encode("utf-8"),
            headers={"Content-Type": "application/javascript"},
        )

    def delete_worker_script(self, name):
        """Delete a script. Returns False if none existed."""
        try:
            self._call("DELETE", self._script_path(name), params={"force": "true"})
        except CloudflareAPIError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    def put_worker_bindings(self, name, bindings):
        return self._call(
            "PUT", self._script_path(name, "/bindings"), json={"bindings": bindings}
        )

    def kv_binding(self):
        return {
            "type": "kv_namespace",
            "name": KV_BINDING_NAME,
            "namespace_id": self.credentials.kv_namespace_id,
        }

    # --- Workers routes ---

    def list_routes(self):
        return self._call("GET", self._zone_path("/workers/routes")) or []

    def find_route(self, pattern):
        for route in self.list_routes():
            if route.get("pattern") == pattern:
                return route
        return None

    def create_route(self, pattern, script):
        return self._call(
            "POST",
            self._zone_path("/workers/routes"),
            json={"pattern": pattern, "script": script},
        )

    def update_route(self, route_id, pattern, script):
        return self._call(
            "PUT",
            self._zone_path(f"/workers/routes/{route_id}"),
            json={"pattern": pattern, "script": script},
        )

    def delete_route(self, route_id):
        return self._call("DELETE", self._zone_path(f"/workers/routes/{route_id}"))

    # --- DNS ---

    def list_dns_records(self, name, record_type="CNAME"):
        return self._call(
            "GET",
            self._zone_path("/dns_records"),
            params={"type": record_type, "name": name},
        ) or []

    def delete_dns_record(self, record_id):
        return self._call("DELETE", self._zone_path(f"/dns_records/{record_id}"))
