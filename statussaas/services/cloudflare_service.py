"""Cloudflare deployment orchestration.

Responsible for:
- Loading a user's CloudflareConfig and building a verified client
- Deploying a page (KV value -> Worker script + binding -> Worker route)
- Toggling a deployed page between published and draft
- Tearing a page's edge resources down
- The connectivity self-test run after saving credentials

None of this is transactional across Cloudflare resources: a failure part
way through a deploy leaves the earlier steps in place, and re-running the
deploy converges on the same end state.

Functions flush but do NOT commit — the caller commits.
"""

import json
import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.orm import undefer

from statussaas.extensions import db
from statussaas.models.cloudflare_config import CloudflareConfig
from statussaas.services.cloudflare_client import (
    CloudflareAPIError,
    CloudflareClient,
    CloudflareCredentials,
    ConfigurationError,
    DNSError,
    KVReadError,
    KVWriteError,
    RouteError,
    WorkerDeployError,
)
from statussaas.services.edge_render import (
    KV_ROUTER_SCRIPT,
    render_page_html,
    render_worker_script,
)

logger = logging.getLogger(__name__)

SELF_TEST_CHECKS = [
    ("token", "API token verification"),
    ("account", "Account access"),
    ("zone", "Zone access"),
    ("kv", "KV namespace access"),
    ("worker", "Worker script"),
]


# ──────────────────────────────────────────────
# Credentials
# ──────────────────────────────────────────────

def load_credentials(user_id):
    """Return (config, CloudflareCredentials) for a user.

    Raises:
        ConfigurationError: No config row, or the stored token is empty.
    """
    config = (
        CloudflareConfig.query
        .options(undefer(CloudflareConfig.api_token))
        .filter_by(user_id=user_id)
        .first()
    )
    if config is None:
        raise ConfigurationError("Cloudflare is not configured for this account.")
    if not config.api_token:
        raise ConfigurationError("Cloudflare API token is missing.")

    credentials = CloudflareCredentials(
        api_token=config.api_token,
        account_id=config.account_id,
        zone_id=config.zone_id,
        kv_namespace_id=config.kv_namespace_id,
        worker_name=(
            config.worker_name or current_app.config["CLOUDFLARE_DEFAULT_WORKER_NAME"]
        ),
        email=config.email,
    )
    return config, credentials


def build_client(credentials, session=None):
    return CloudflareClient(
        credentials,
        base_url=current_app.config["CLOUDFLARE_API_BASE"],
        timeout=current_app.config["CLOUDFLARE_TIMEOUT"],
        session=session,
    )


def initialize_for_user(user_id, session=None):
    """Load the user's credentials, verify the token, return a client.

    Raises:
        ConfigurationError: Missing config/token, or the token does not
            verify as active.
    """
    config, credentials = load_credentials(user_id)
    client = build_client(credentials, session=session)

    try:
        result = client.verify_token()
    except CloudflareAPIError as e:
        raise ConfigurationError(
            f"Cloudflare token verification failed: {e}",
            status_code=e.status_code,
            errors=e.errors,
        ) from e

    if not result or result.get("status") != "active":
        raise ConfigurationError("Cloudflare API token is not active.")

    config.last_used_at = datetime.now(timezone.utc)
    db.session.flush()
    return client


# ──────────────────────────────────────────────
# Deploy
# ──────────────────────────────────────────────

def build_page_projection(page, status=None):
    """The JSON document stored in KV under the page's domain."""
    return {
        "title": page.title,
        "description": page.description or "",
        "content": page.content or "",
        "status": status or page.status,
        "domain": page.domain,
        "design": page.design_settings,
    }


def _write_projection(client, domain, projection):
    try:
        client.write_kv_value(domain, json.dumps(projection))
    except CloudflareAPIError as e:
        raise KVWriteError(
            f"Failed to write page for {domain} to KV: {e}",
            status_code=e.status_code,
            errors=e.errors,
        ) from e


def _deploy_worker(client, html):
    name = client.credentials.worker_name
    try:
        client.delete_worker_script(name)
        client.upload_worker_script(name, render_worker_script(html))
        client.put_worker_bindings(name, [client.kv_binding()])
    except CloudflareAPIError as e:
        raise WorkerDeployError(
            f"Failed to deploy worker {name}: {e}",
            status_code=e.status_code,
            errors=e.errors,
        ) from e


def _upsert_route(client, pattern):
    """Point the route for `pattern` at the worker, creating it if needed."""
    script = client.credentials.worker_name
    try:
        existing = client.find_route(pattern)
        if existing:
            return client.update_route(existing["id"], pattern, script)
        return client.create_route(pattern, script)
    except CloudflareAPIError as e:
        raise RouteError(
            f"Failed to configure route {pattern}: {e}",
            status_code=e.status_code,
            errors=e.errors,
        ) from e


def _delete_route(client, pattern):
    """Delete the route for `pattern`. Returns False if there was none."""
    try:
        existing = client.find_route(pattern)
        if not existing:
            return False
        client.delete_route(existing["id"])
    except CloudflareAPIError as e:
        raise RouteError(
            f"Failed to delete route {pattern}: {e}",
            status_code=e.status_code,
            errors=e.errors,
        ) from e
    return True


def deploy_page(client, page):
    """Deploy a page to the edge: KV value, Worker script, Worker route.

    Each step runs only if the previous one succeeded. On success the page
    is marked deployed (flushed, not committed).

    Raises:
        KVWriteError, WorkerDeployError, RouteError
    """
    if not page.domain:
        raise ValueError("A domain is required before deploying.")

    projection = build_page_projection(page)

    _write_projection(client, page.domain, projection)
    logger.info(f"KV value written for {page.domain}")

    _deploy_worker(client, render_page_html(projection))
    logger.info(f"Worker {client.credentials.worker_name} deployed for {page.domain}")

    _upsert_route(client, page.route_pattern)
    logger.info(f"Route {page.route_pattern} -> {client.credentials.worker_name}")

    page.deployed = True
    page.deployed_at = datetime.now(timezone.utc)
    db.session.flush()
    return projection


# ──────────────────────────────────────────────
# Toggle
# ──────────────────────────────────────────────

def read_projection(client, domain):
    """Current KV projection for `domain`, or None if nothing is stored."""
    try:
        raw = client.read_kv_value(domain)
    except CloudflareAPIError as e:
        raise KVReadError(
            f"Failed to read KV value for {domain}: {e}",
            status_code=e.status_code,
            errors=e.errors,
        ) from e
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning(f"KV value for {domain} is not valid JSON, rebuilding")
        return None


def toggle_page(client, page, status):
    """Switch a deployed page between published and draft.

    The KV write must succeed before anything else happens; the route
    change afterwards is best-effort. The page status is updated only
    once KV holds the new status.

    Raises:
        ValueError: status is not published or draft.
        KVReadError, KVWriteError
    """
    if status not in ("published", "draft"):
        raise ValueError("Status must be 'published' or 'draft'.")

    projection = read_projection(client, page.domain)
    if projection is None:
        projection = build_page_projection(page)
    projection["status"] = status

    _write_projection(client, page.domain, projection)

    route_ok = True
    try:
        if status == "published":
            _upsert_route(client, page.route_pattern)
        else:
            _delete_route(client, page.route_pattern)
    except RouteError as e:
        route_ok = False
        logger.warning(f"Route update for {page.domain} failed during toggle: {e}")

    page.status = status
    db.session.flush()
    return route_ok


# ──────────────────────────────────────────────
# Teardown
# ──────────────────────────────────────────────

def teardown_page(client, domain):
    """Remove a domain's KV value, Worker route and DNS CNAME records.

    Every step is attempted even if an earlier one failed. Route and DNS
    failures are only reported; a KV failure raises KVWriteError after
    the other steps have run.

    Returns a dict of per-step results.
    """
    report = {"domain": domain, "kv": None, "route": None, "dns": None, "errors": []}

    try:
        previous = read_projection(client, domain)
        if previous is not None:
            logger.info(f"Tearing down {domain} (was {previous.get('status')})")
    except KVReadError as e:
        logger.warning(f"Could not read KV value for {domain} before delete: {e}")

    kv_error = None
    try:
        report["kv"] = client.delete_kv_value(domain)
    except CloudflareAPIError as e:
        kv_error = e
        report["kv"] = False
        report["errors"].append(f"kv: {e}")
        logger.warning(f"KV delete for {domain} failed: {e}")

    try:
        report["route"] = _delete_route(client, f"*{domain}/*")
    except RouteError as e:
        report["route"] = False
        report["errors"].append(f"route: {e}")
        logger.warning(f"Route delete for {domain} failed: {e}")

    try:
        report["dns"] = _delete_dns_records(client, domain)
    except DNSError as e:
        report["dns"] = False
        report["errors"].append(f"dns: {e}")
        logger.warning(f"DNS cleanup for {domain} failed: {e}")

    if kv_error is not None:
        raise KVWriteError(
            f"Failed to delete KV value for {domain}: {kv_error}",
            status_code=kv_error.status_code,
            errors=kv_error.errors,
        ) from kv_error
    return report


def _delete_dns_records(client, domain):
    try:
        records = client.list_dns_records(domain, "CNAME")
        for record in records:
            client.delete_dns_record(record["id"])
    except CloudflareAPIError as e:
        raise DNSError(
            f"Failed to delete DNS records for {domain}: {e}",
            status_code=e.status_code,
            errors=e.errors,
        ) from e
    return len(records)


def teardown_for_user(user_id, domain, session=None):
    """Best-effort teardown used when a page record is deleted.

    Never raises: a user without Cloudflare configured simply has nothing
    at the edge, and any other failure is logged.
    """
    if not domain:
        return False
    try:
        client = initialize_for_user(user_id, session=session)
        teardown_page(client, domain)
    except ConfigurationError:
        return False
    except Exception as e:
        logger.warning(f"Edge teardown for {domain} failed: {e}", exc_info=True)
        return False
    return True


# ──────────────────────────────────────────────
# Connectivity self-test
# ──────────────────────────────────────────────

def _check_worker(client):
    name = client.credentials.worker_name
    if client.get_worker_script(name) is not None:
        return f"Worker {name} exists"
    client.upload_worker_script(name, KV_ROUTER_SCRIPT)
    client.put_worker_bindings(name, [client.kv_binding()])
    return f"Worker {name} created"


def run_connectivity_test(client):
    """Run the ordered access checks; stop at the first failure.

    Returns:
        {"success": bool, "checks": [{"name", "label", "success",
        "skipped", "message"}, ...]}
    """
    steps = {
        "token": lambda: (
            "Token is active"
            if (client.verify_token() or {}).get("status") == "active"
            else _inactive_token()
        ),
        "account": lambda: f"Account: {(client.get_account() or {}).get('name', 'ok')}",
        "zone": lambda: f"Zone: {(client.get_zone() or {}).get('name', 'ok')}",
        "kv": lambda: f"Namespace: {(client.get_kv_namespace() or {}).get('title', 'ok')}",
        "worker": lambda: _check_worker(client),
    }

    checks = []
    failed = False
    for name, label in SELF_TEST_CHECKS:
        if failed:
            checks.append({
                "name": name, "label": label, "success": False,
                "skipped": True, "message": "Skipped",
            })
            continue
        try:
            message = steps[name]()
            checks.append({
                "name": name, "label": label, "success": True,
                "skipped": False, "message": message,
            })
        except (CloudflareAPIError, ConfigurationError) as e:
            failed = True
            checks.append({
                "name": name, "label": label, "success": False,
                "skipped": False, "message": str(e),
            })
            logger.warning(f"Cloudflare self-test failed at {name}: {e}")

    return {"success": not failed, "checks": checks}


def _inactive_token():
    raise ConfigurationError("API token is not active.")
