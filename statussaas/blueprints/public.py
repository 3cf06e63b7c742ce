"""Public blueprint — /p/<page_id>

Anonymous view of a published page, counted against the owner's
views-per-page limit. A `visitor_<page_id>` cookie (24h) marks repeat
visitors so unique views can be told apart. CSRF-exempt.
"""

import logging

from flask import Blueprint, abort, jsonify, make_response, request

from statussaas.extensions import db
from statussaas.models.page import MaintenancePage
from statussaas.services import page_service
from statussaas.services.cloudflare_service import build_page_projection
from statussaas.services.edge_render import render_page_html

logger = logging.getLogger(__name__)

public_bp = Blueprint("public", __name__, url_prefix="/p")

VISITOR_COOKIE_MAX_AGE = 24 * 60 * 60


def _visitor_cookie(page):
    return f"visitor_{page.id}"


def _load_published(page_id):
    page = db.session.get(MaintenancePage, page_id)
    if page is None:
        return None
    page.apply_schedule()
    if page.status != "published":
        return None
    return page


def _count_view(page, response):
    cookie = _visitor_cookie(page)
    is_unique = cookie not in request.cookies
    counted = page_service.record_view(page, is_unique)
    db.session.commit()
    if counted:
        response.set_cookie(
            cookie, "1", max_age=VISITOR_COOKIE_MAX_AGE, httponly=True, samesite="Lax"
        )
    return counted


@public_bp.route("/<page_id>")
def view(page_id):
    page = _load_published(page_id)
    if page is None:
        abort(404)
    if page_service.view_limit_reached(page):
        logger.info(f"View limit reached for page {page_id}")
        abort(403)

    response = make_response(render_page_html(build_page_projection(page)))
    _count_view(page, response)
    return response


@public_bp.route("/<page_id>/view", methods=["POST"])
def track_view(page_id):
    page = _load_published(page_id)
    if page is None:
        return jsonify({"error": "Page not found"}), 404

    response = jsonify({"success": True})
    if not _count_view(page, response):
        return jsonify({"error": "View limit reached"}), 403
    return response
