"""API blueprint — /api/* (JSON + Server-Sent Events)

Session-authenticated JSON used by the dashboard scripts:
- /api/pages                     — list / create
- /api/pages/<id>                — get / update / delete
- /api/analytics/page/<id>       — per-day views for one page
- /api/analytics/summary         — totals across the user's pages
- /api/user/profile              — get / update name
- /api/plans                     — active plan catalog
- /api/events                    — live event stream (SSE)
- /api/admin/users               — admin: user list
- /api/admin/analytics           — admin: platform totals
"""

import json
import logging

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    stream_with_context,
)
from flask_login import current_user

from statussaas.decorators import api_admin_required, api_login_required
from statussaas.events import event_bus
from statussaas.extensions import db
from statussaas.models.page import MaintenancePage
from statussaas.models.user import User
from statussaas.services import page_service, subscription_service

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")


@api_bp.errorhandler(PermissionError)
def _forbidden(e):
    db.session.rollback()
    return jsonify({"error": str(e)}), 403


@api_bp.errorhandler(ValueError)
def _invalid(e):
    db.session.rollback()
    return jsonify({"error": str(e)}), 400


def _page_payload():
    data = request.get_json(silent=True) or {}
    payload = {
        k: data[k]
        for k in ("title", "domain", "description", "content", "design", "status")
        if k in data
    }
    if "publishType" in data:
        payload["publish_type"] = data["publishType"]
    if "scheduledFor" in data:
        payload["scheduled_for"] = data["scheduledFor"]
    return payload


def _owned_page(page_id):
    return page_service.get_page_for_user(page_id, current_user)


# ──────────────────────────────────────────────
# Pages
# ──────────────────────────────────────────────

@api_bp.route("/pages")
@api_login_required
def list_pages():
    return jsonify({"pages": [p.to_dict() for p in page_service.list_pages(current_user)]})


@api_bp.route("/pages", methods=["POST"])
@api_login_required
def create_page():
    page = page_service.create_page(current_user, _page_payload())
    db.session.commit()
    page_service.publish_page_count(current_user)
    return jsonify(page.to_dict()), 201


@api_bp.route("/pages/<page_id>")
@api_login_required
def get_page(page_id):
    page = _owned_page(page_id)
    if page is None:
        return jsonify({"error": "Page not found"}), 404
    return jsonify(page.to_dict())


@api_bp.route("/pages/<page_id>", methods=["PUT", "PATCH"])
@api_login_required
def update_page(page_id):
    page = _owned_page(page_id)
    if page is None:
        return jsonify({"error": "Page not found"}), 404
    page_service.update_page(page, current_user, _page_payload())
    db.session.commit()
    return jsonify(page.to_dict())


@api_bp.route("/pages/<page_id>", methods=["DELETE"])
@api_login_required
def delete_page(page_id):
    page = _owned_page(page_id)
    if page is None:
        return jsonify({"error": "Page not found"}), 404
    owner = page_service.delete_page(page, current_user)
    db.session.commit()
    if owner is not None:
        page_service.publish_page_count(owner)
    return jsonify({"success": True})


# ──────────────────────────────────────────────
# Analytics
# ──────────────────────────────────────────────

@api_bp.route("/analytics/page/<page_id>")
@api_login_required
def page_analytics(page_id):
    page = _owned_page(page_id)
    if page is None:
        return jsonify({"error": "Page not found"}), 404
    days = min(max(request.args.get("days", 30, type=int), 1), 365)
    return jsonify(page_service.page_analytics(page, days=days))


@api_bp.route("/analytics/summary")
@api_login_required
def analytics_summary():
    return jsonify(page_service.analytics_summary(current_user))


# ──────────────────────────────────────────────
# User & plans
# ──────────────────────────────────────────────

def _profile_dict(user):
    return {
        "id": user.id,
        "email": user.email,
        "fullName": user.full_name,
        "role": user.role,
        "plan": user.plan,
        "subscriptionStatus": user.subscription_status,
        "limits": subscription_service.get_plan_limits(user),
    }


@api_bp.route("/user/profile")
@api_login_required
def get_profile():
    return jsonify(_profile_dict(current_user))


@api_bp.route("/user/profile", methods=["PUT", "PATCH"])
@api_login_required
def update_profile():
    data = request.get_json(silent=True) or {}
    full_name = (data.get("fullName") or "").strip()
    if not full_name:
        raise ValueError("Full name is required.")
    current_user.full_name = full_name
    db.session.commit()
    return jsonify(_profile_dict(current_user))


@api_bp.route("/plans")
def plans():
    return jsonify({"plans": [p.to_dict() for p in subscription_service.list_active_plans()]})


# ──────────────────────────────────────────────
# Live events (SSE)
# ──────────────────────────────────────────────

def _sse(event, payload):
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


@api_bp.route("/events")
@api_login_required
def events():
    """Stream this user's live events until the client disconnects.

    A comment line goes out every EVENTS_KEEPALIVE_SECONDS of silence so
    proxies keep the connection open.
    """
    user_id = current_user.id
    keepalive = current_app.config["EVENTS_KEEPALIVE_SECONDS"]

    def stream():
        subscription = event_bus.subscribe(user_id)
        try:
            yield _sse("connected", {"userId": user_id})
            while True:
                payload = subscription.get(timeout=keepalive)
                if payload is None:
                    yield ": keepalive\n\n"
                    continue
                yield _sse(payload.get("type", "message"), payload)
        finally:
            subscription.close()

    return Response(
        stream_with_context(stream()),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ──────────────────────────────────────────────
# Admin
# ──────────────────────────────────────────────

@api_bp.route("/admin/users")
@api_admin_required
def admin_users():
    users = User.query.order_by(User.created_at.desc()).all()
    return jsonify({"users": [
        {
            "id": u.id,
            "email": u.email,
            "fullName": u.full_name,
            "role": u.role,
            "status": u.status,
            "plan": u.plan,
            "subscriptionStatus": u.subscription_status,
            "pages": u.pages.count(),
        }
        for u in users
    ]})


@api_bp.route("/admin/analytics")
@api_admin_required
def admin_analytics():
    plan_counts = dict(
        db.session.query(User.plan, db.func.count(User.id)).group_by(User.plan).all()
    )
    totals = db.session.query(
        db.func.count(MaintenancePage.id),
        db.func.coalesce(db.func.sum(MaintenancePage.total_views), 0),
    ).one()
    return jsonify({
        "users": User.query.count(),
        "activeUsers": User.query.filter_by(status="active").count(),
        "pages": totals[0],
        "deployedPages": MaintenancePage.query.filter_by(deployed=True).count(),
        "totalViews": int(totals[1]),
        "planDistribution": plan_counts,
    })
