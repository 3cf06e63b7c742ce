"""Shared test fixtures for the StatusSaaS test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: plan catalog, an admin, a free user and a pro user (both
  with Cloudflare configured)
- fake_cloudflare: in-memory Cloudflare API standing in for requests.Session
- login: helper that logs the test client in
"""

import json
import re
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from urllib.parse import unquote, urlsplit

import pytest
import requests
from werkzeug.security import generate_password_hash

from statussaas import DEFAULT_PLANS, create_app
from statussaas.extensions import db as _db
from statussaas.models.cloudflare_config import CloudflareConfig
from statussaas.models.plan import SubscriptionPlan
from statussaas.models.user import User

CF_TOKEN = "cf-test-token"
CF_ACCOUNT = "acc123"
CF_ZONE = "zone123"
CF_NAMESPACE = "ns123"
CF_WORKER = "maintenance-worker"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def login(client):
    """Return a function that logs the test client in as the given user."""

    def _login(email, password="password123"):
        return client.post(
            "/auth/login",
            data={"email": email, "password": password},
            follow_redirects=True,
        )

    return _login


def _add_cloudflare_config(user, worker_name=CF_WORKER):
    config = CloudflareConfig(
        user_id=user.id,
        api_token=CF_TOKEN,
        email=user.email,
        account_id=CF_ACCOUNT,
        zone_id=CF_ZONE,
        kv_namespace_id=CF_NAMESPACE,
        worker_name=worker_name,
    )
    _db.session.add(config)
    return config


@pytest.fixture
def seed_data(app, db_session):
    """Seed plans and three users.

    - admin@statussaas.local / admin123 (admin, free plan)
    - owner@example.com / password123 (free plan, Cloudflare configured)
    - pro@example.com / password123 (active pro subscription, Cloudflare configured)
    """
    for spec in DEFAULT_PLANS:
        _db.session.add(SubscriptionPlan(**spec))

    admin = User(
        email="admin@statussaas.local",
        password_hash=generate_password_hash("admin123"),
        full_name="Admin User",
        role="admin",
    )
    owner = User(
        email="owner@example.com",
        password_hash=generate_password_hash("password123"),
        full_name="Page Owner",
    )
    pro = User(
        email="pro@example.com",
        password_hash=generate_password_hash("password123"),
        full_name="Pro Owner",
        plan="pro",
        subscription_status="active",
        stripe_customer_id="cus_pro",
        stripe_subscription_id="sub_pro",
        current_period_end=datetime.now(timezone.utc) + timedelta(days=30),
    )
    _db.session.add_all([admin, owner, pro])
    _db.session.flush()

    _add_cloudflare_config(owner)
    _add_cloudflare_config(pro)
    _db.session.commit()

    return {
        "admin": admin,
        "admin_id": admin.id,
        "owner": owner,
        "owner_id": owner.id,
        "pro": pro,
        "pro_id": pro.id,
    }


# ──────────────────────────────────────────────
# Fake Cloudflare API
# ──────────────────────────────────────────────

class FakeCloudflare:
    """Stands in for requests.Session, emulating the Cloudflare v4 API.

    State is plain dicts so tests can inspect it. `fail` maps an
    operation name (see _ROUTES) to the HTTP status it should answer with.
    """

    _ROUTES = [
        ("GET", r"/user/tokens/verify", "verify"),
        ("GET", r"/accounts/(?P<account>[^/]+)", "account"),
        ("GET", r"/zones/(?P<zone>[^/]+)", "zone"),
        ("GET", r"/accounts/(?P<account>[^/]+)/storage/kv/namespaces/(?P<ns>[^/]+)", "kv_namespace"),
        ("GET", r"/accounts/[^/]+/storage/kv/namespaces/[^/]+/values/(?P<key>[^/]+)", "kv_read"),
        ("PUT", r"/accounts/[^/]+/storage/kv/namespaces/[^/]+/values/(?P<key>[^/]+)", "kv_write"),
        ("DELETE", r"/accounts/[^/]+/storage/kv/namespaces/[^/]+/values/(?P<key>[^/]+)", "kv_delete"),
        ("GET", r"/accounts/[^/]+/workers/scripts/(?P<name>[^/]+)", "script_get"),
        ("PUT", r"/accounts/[^/]+/workers/scripts/(?P<name>[^/]+)", "script_upload"),
        ("DELETE", r"/accounts/[^/]+/workers/scripts/(?P<name>[^/]+)", "script_delete"),
        ("PUT", r"/accounts/[^/]+/workers/scripts/(?P<name>[^/]+)/bindings", "bindings"),
        ("GET", r"/zones/[^/]+/workers/routes", "routes_list"),
        ("POST", r"/zones/[^/]+/workers/routes", "route_create"),
        ("PUT", r"/zones/[^/]+/workers/routes/(?P<route_id>[^/]+)", "route_update"),
        ("DELETE", r"/zones/[^/]+/workers/routes/(?P<route_id>[^/]+)", "route_delete"),
        ("GET", r"/zones/[^/]+/dns_records", "dns_list"),
        ("DELETE", r"/zones/[^/]+/dns_records/(?P<record_id>[^/]+)", "dns_delete"),
    ]

    def __init__(self, token=CF_TOKEN):
        self.token = token
        self.token_status = "active"
        self.kv = {}
        self.scripts = {}
        self.bindings = {}
        self.routes = {}
        self.dns_records = {}
        self.fail = {}
        self.calls = []
        self._next_id = 1

    # --- Test helpers ---

    def add_route(self, pattern, script=CF_WORKER):
        route_id = self._new_id("route")
        self.routes[route_id] = {"id": route_id, "pattern": pattern, "script": script}
        return route_id

    def add_dns_record(self, name, record_type="CNAME"):
        record_id = self._new_id("dns")
        self.dns_records[record_id] = {"id": record_id, "name": name, "type": record_type}
        return record_id

    def route_for(self, pattern):
        for route in self.routes.values():
            if route["pattern"] == pattern:
                return route
        return None

    def ops(self):
        return [op for op, _ in self.calls]

    def _new_id(self, prefix):
        value = f"{prefix}{self._next_id}"
        self._next_id += 1
        return value

    # --- requests.Session surface ---

    def request(self, method, url, headers=None, timeout=None, params=None,
                data=None, json=None, **kwargs):
        path = urlsplit(url).path
        path = path[len("/client/v4"):] if path.startswith("/client/v4") else path

        for route_method, pattern, op in self._ROUTES:
            if route_method != method:
                continue
            match = re.fullmatch(pattern, path)
            if match:
                break
        else:
            return self._envelope(404, None, "Route not found")

        self.calls.append((op, match.groupdict()))

        if (headers or {}).get("Authorization") != f"Bearer {self.token}":
            return self._envelope(401, None, "Authentication error", code=10000)
        if op in self.fail:
            return self._envelope(self.fail[op], None, f"Injected {op} failure")

        handler = getattr(self, f"_op_{op}")
        return handler(params=params or {}, data=data, body=json, **match.groupdict())

    # --- Responses ---

    @staticmethod
    def _response(status, content, content_type="application/json"):
        resp = requests.Response()
        resp.status_code = status
        resp._content = content.encode("utf-8")
        resp.encoding = "utf-8"
        resp.headers["Content-Type"] = content_type
        return resp

    def _envelope(self, status, result, error=None, code=1000):
        payload = {
            "success": error is None,
            "errors": [] if error is None else [{"code": code, "message": error}],
            "messages": [],
            "result": result,
        }
        return self._response(status, json.dumps(payload))

    def _ok(self, result=None):
        return self._envelope(200, result)

    # --- Operations ---

    def _op_verify(self, **kwargs):
        return self._ok({"id": "tok1", "status": self.token_status})

    def _op_account(self, account, **kwargs):
        return self._ok({"id": account, "name": "Test Account"})

    def _op_zone(self, zone, **kwargs):
        return self._ok({"id": zone, "name": "example.com"})

    def _op_kv_namespace(self, account, ns, **kwargs):
        return self._ok({"id": ns, "title": "MAINTENANCE_PAGES"})

    def _op_kv_read(self, key, **kwargs):
        key = unquote(key)
        if key not in self.kv:
            return self._envelope(404, None, "key not found", code=10009)
        return self._response(200, self.kv[key], "text/plain")

    def _op_kv_write(self, key, data=None, **kwargs):
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        self.kv[unquote(key)] = data
        return self._ok()

    def _op_kv_delete(self, key, **kwargs):
        self.kv.pop(unquote(key), None)
        return self._ok()

    def _op_script_get(self, name, **kwargs):
        name = unquote(name)
        if name not in self.scripts:
            return self._envelope(404, None, "workers.api.error.script_not_found", code=10007)
        return self._response(200, self.scripts[name], "application/javascript")

    def _op_script_upload(self, name, data=None, **kwargs):
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        self.scripts[unquote(name)] = data
        return self._ok({"id": unquote(name)})

    def _op_script_delete(self, name, **kwargs):
        name = unquote(name)
        if name not in self.scripts:
            return self._envelope(404, None, "workers.api.error.script_not_found", code=10007)
        del self.scripts[name]
        self.bindings.pop(name, None)
        return self._ok()

    def _op_bindings(self, name, body=None, **kwargs):
        self.bindings[unquote(name)] = (body or {}).get("bindings", [])
        return self._ok()

    def _op_routes_list(self, **kwargs):
        return self._ok(list(self.routes.values()))

    def _op_route_create(self, body=None, **kwargs):
        route_id = self.add_route(body["pattern"], body["script"])
        return self._ok(self.routes[route_id])

    def _op_route_update(self, route_id, body=None, **kwargs):
        if route_id not in self.routes:
            return self._envelope(404, None, "Route not found")
        self.routes[route_id].update(pattern=body["pattern"], script=body["script"])
        return self._ok(self.routes[route_id])

    def _op_route_delete(self, route_id, **kwargs):
        if route_id not in self.routes:
            return self._envelope(404, None, "Route not found")
        del self.routes[route_id]
        return self._ok({"id": route_id})

    def _op_dns_list(self, params=None, **kwargs):
        records = [
            r for r in self.dns_records.values()
            if r["name"] == params.get("name") and r["type"] == params.get("type")
        ]
        return self._ok(records)

    def _op_dns_delete(self, record_id, **kwargs):
        if record_id not in self.dns_records:
            return self._envelope(404, None, "Record not found")
        del self.dns_records[record_id]
        return self._ok({"id": record_id})


@pytest.fixture
def fake_cloudflare():
    """Route every CloudflareClient built during the test to a FakeCloudflare."""
    fake = FakeCloudflare()
    with patch(
        "statussaas.services.cloudflare_client.requests.Session", return_value=fake
    ):
        yield fake


@pytest.fixture
def reload(db_session):
    """Re-read a row from the database, dropping anything cached in the session."""

    def _reload(model, ident):
        db_session.expire_all()
        return db_session.get(model, ident)

    return _reload
