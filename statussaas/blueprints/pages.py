"""Pages blueprint — /pages/*

Maintenance page CRUD plus the edge actions (deploy, toggle). Pages are
owner-scoped; an id that isn't yours is a 404.

Routes:
- GET  /pages                 — list
- GET  /pages/new             — create form
- POST /pages                 — create
- GET  /pages/<id>            — detail + analytics
- GET  /pages/<id>/edit       — edit form
- POST /pages/<id>            — update
- POST /pages/<id>/archive    — archive
- POST /pages/<id>/delete     — delete (tears down the edge deployment)
- GET  /pages/<id>/preview    — render the page as it will appear at the edge
- POST /pages/<id>/deploy     — deploy to Cloudflare
- POST /pages/<id>/toggle     — flip published/draft (KV + route)
"""

import logging

from flask import (
    Blueprint,
    abort,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import current_user, login_required

from statussaas.extensions import db
from statussaas.models.activity import log_activity
from statussaas.models.page import DEFAULT_DESIGN, MaintenancePage
from statussaas.services import cloudflare_service, page_service
from statussaas.services.cloudflare_client import CloudflareError, ConfigurationError
from statussaas.services.edge_render import render_page_html
from statussaas.services.subscription_service import has_pro_access

logger = logging.getLogger(__name__)

pages_bp = Blueprint("pages", __name__, url_prefix="/pages")


def _page_form_data(form):
    """Translate the page form into the dict page_service expects."""
    return {
        "title": form.get("title", ""),
        "domain": form.get("domain", ""),
        "description": form.get("description", ""),
        "content": form.get("content", ""),
        "publish_type": form.get("publish_type") or "draft",
        "scheduled_for": form.get("scheduled_for"),
        "status": form.get("status"),
        "design": {
            "backgroundColor": form.get("background_color"),
            "textColor": form.get("text_color"),
            "fontFamily": form.get("font_family"),
            "layout": form.get("layout"),
            "logo": form.get("logo"),
            "maxWidth": form.get("max_width"),
            "logoSize": {
                "width": form.get("logo_width"),
                "height": form.get("logo_height"),
            },
            "customCSS": form.get("custom_css"),
        },
    }


def _get_page_or_404(page_id):
    page = page_service.get_page_for_user(page_id, current_user)
    if page is None:
        abort(404)
    return page


def _render_form(page=None, form=None):
    return render_template(
        "pages/form.html",
        page=page,
        form=form or {},
        design=page.design_settings if page else DEFAULT_DESIGN,
        fonts=MaintenancePage.FONTS,
        layouts=MaintenancePage.LAYOUTS,
    )


# ──────────────────────────────────────────────
# List / create
# ──────────────────────────────────────────────

@pages_bp.route("")
@login_required
def list_pages():
    pages = page_service.list_pages(current_user)
    allowed, count, limit = page_service.can_create_page(current_user)
    return render_template(
        "pages/list.html",
        pages=pages,
        can_create=allowed,
        page_count=count,
        page_limit=limit,
    )


@pages_bp.route("/new")
@login_required
def new_page():
    allowed, _, _ = page_service.can_create_page(current_user)
    if not allowed:
        flash(
            "You have reached your page limit. Please upgrade your plan to create more pages.",
            "error",
        )
        return redirect(url_for("pages.list_pages"))
    return _render_form()


@pages_bp.route("", methods=["POST"])
@login_required
def create_page():
    try:
        page = page_service.create_page(current_user, _page_form_data(request.form))
    except PermissionError as e:
        flash(str(e), "error")
        return redirect(url_for("pages.list_pages"))
    except ValueError as e:
        db.session.rollback()
        flash(str(e), "error")
        return _render_form(form=request.form), 400

    db.session.commit()
    page_service.publish_page_count(current_user)
    flash("Page created.", "success")
    return redirect(url_for("pages.detail", page_id=page.id))


# ──────────────────────────────────────────────
# Detail / edit / update
# ──────────────────────────────────────────────

@pages_bp.route("/<page_id>")
@login_required
def detail(page_id):
    page = _get_page_or_404(page_id)
    return render_template(
        "pages/detail.html",
        page=page,
        analytics=page_service.page_analytics(page, days=14),
        has_cloudflare=current_user.cloudflare_config is not None,
        has_incidents=has_pro_access(current_user),
    )


@pages_bp.route("/<page_id>/edit")
@login_required
def edit(page_id):
    return _render_form(page=_get_page_or_404(page_id))


@pages_bp.route("/<page_id>", methods=["POST"])
@login_required
def update(page_id):
    page = _get_page_or_404(page_id)
    try:
        page_service.update_page(page, current_user, _page_form_data(request.form))
    except ValueError as e:
        db.session.rollback()
        flash(str(e), "error")
        return redirect(url_for("pages.edit", page_id=page_id))

    db.session.commit()
    if page.deployed:
        flash("Page saved. Deploy again to push the changes to the edge.", "success")
    else:
        flash("Page saved.", "success")
    return redirect(url_for("pages.detail", page_id=page.id))


@pages_bp.route("/<page_id>/archive", methods=["POST"])
@login_required
def archive(page_id):
    page = _get_page_or_404(page_id)
    page_service.archive_page(page, current_user)
    db.session.commit()
    flash("Page archived.", "info")
    return redirect(url_for("pages.list_pages"))


@pages_bp.route("/<page_id>/delete", methods=["POST"])
@login_required
def delete(page_id):
    page = _get_page_or_404(page_id)
    owner = page_service.delete_page(page, current_user)
    db.session.commit()
    if owner is not None:
        page_service.publish_page_count(owner)
    flash("Page deleted.", "info")
    return redirect(url_for("pages.list_pages"))


@pages_bp.route("/<page_id>/preview")
@login_required
def preview(page_id):
    page = _get_page_or_404(page_id)
    return render_page_html(cloudflare_service.build_page_projection(page))


# ──────────────────────────────────────────────
# Edge actions
# ──────────────────────────────────────────────

@pages_bp.route("/<page_id>/deploy", methods=["POST"])
@login_required
def deploy(page_id):
    page = _get_page_or_404(page_id)

    try:
        client = cloudflare_service.initialize_for_user(page.user_id)
        cloudflare_service.deploy_page(client, page)
    except ConfigurationError as e:
        db.session.rollback()
        flash(f"Cloudflare is not ready: {e}", "error")
        return redirect(url_for("cloudflare.show"))
    except ValueError as e:
        db.session.rollback()
        flash(str(e), "error")
        return redirect(url_for("pages.detail", page_id=page_id))
    except CloudflareError as e:
        db.session.rollback()
        logger.error(f"Deploy of page {page_id} failed: {e}", exc_info=True)
        flash(f"Deployment failed: {e}", "error")
        return redirect(url_for("pages.detail", page_id=page_id))

    log_activity(
        current_user.id, "page.deployed", f"Deployed {page.title} to {page.domain}",
        {"page_id": page.id, "domain": page.domain},
    )
    db.session.commit()
    flash(f"Deployed to {page.domain}.", "success")
    return redirect(url_for("pages.detail", page_id=page_id))


@pages_bp.route("/<page_id>/toggle", methods=["POST"])
@login_required
def toggle(page_id):
    page = _get_page_or_404(page_id)
    status = request.form.get("status") or (
        "draft" if page.status == "published" else "published"
    )
    if status not in ("published", "draft"):
        flash("Pages can only be toggled between published and draft.", "error")
        return redirect(url_for("pages.detail", page_id=page_id))

    if not page.deployed:
        page.status = status
        page.scheduled_for = None
        db.session.commit()
        flash(f"Page is now {status}.", "success")
        return redirect(url_for("pages.detail", page_id=page_id))

    try:
        client = cloudflare_service.initialize_for_user(page.user_id)
        route_ok = cloudflare_service.toggle_page(client, page, status)
    except ConfigurationError as e:
        db.session.rollback()
        flash(f"Cloudflare is not ready: {e}", "error")
        return redirect(url_for("cloudflare.show"))
    except CloudflareError as e:
        db.session.rollback()
        logger.error(f"Toggle of page {page_id} failed: {e}", exc_info=True)
        flash(f"Could not update the edge: {e}", "error")
        return redirect(url_for("pages.detail", page_id=page_id))

    log_activity(
        current_user.id, "page.toggled", f"{page.title} is now {status}",
        {"page_id": page.id, "status": status},
    )
    db.session.commit()
    if route_ok:
        flash(f"Page is now {status}.", "success")
    else:
        flash(f"Page is now {status}, but the Worker route could not be updated.", "warning")
    return redirect(url_for("pages.detail", page_id=page_id))
