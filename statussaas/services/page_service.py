"""Page service — CRUD, publishing/scheduling, plan limits, view counting.

Form input is validated and normalised here; the blueprints only move
request data in and flash the ValueError messages back out.

Functions flush but do NOT commit — the caller commits.
"""

import logging
import re
from datetime import date, datetime, timedelta, timezone

import bleach

from statussaas.events import event_bus
from statussaas.extensions import db
from statussaas.models.activity import log_activity
from statussaas.models.page import DEFAULT_DESIGN, MaintenancePage, PageViewDay
from statussaas.services.cloudflare_service import teardown_for_user
from statussaas.services.subscription_service import get_plan_limits

logger = logging.getLogger(__name__)

DOMAIN_RE = re.compile(r"^(?=.{1,253}$)(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")
HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
PUBLISH_TYPES = ["draft", "now", "schedule"]


def _sanitize(text):
    """Strip all HTML tags from plain-text fields."""
    if text is None:
        return ""
    return bleach.clean(text, tags=[], strip=True).strip()


def normalize_domain(value):
    """Lowercase host name without scheme, path or port.

    Raises ValueError if what's left is not a valid host name.
    """
    value = (value or "").strip().lower()
    value = re.sub(r"^[a-z]+://", "", value)
    value = value.split("/", 1)[0].split(":", 1)[0].rstrip(".")
    if not DOMAIN_RE.match(value):
        raise ValueError(f"'{value or '(empty)'}' is not a valid domain name.")
    return value


def _int_in_range(value, low, high, label):
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be a number.")
    if not low <= number <= high:
        raise ValueError(f"{label} must be between {low} and {high}.")
    return number


def validate_design(data):
    """Build a design dict from submitted values, defaults for the rest."""
    data = data or {}
    design = dict(DEFAULT_DESIGN)

    for key in ("backgroundColor", "textColor"):
        value = (data.get(key) or design[key]).strip()
        if not HEX_COLOR_RE.match(value):
            raise ValueError(f"{key} must be a hex colour like #1a2b3c.")
        design[key] = value

    font = data.get("fontFamily") or design["fontFamily"]
    if font not in MaintenancePage.FONTS:
        raise ValueError(f"Font must be one of: {', '.join(MaintenancePage.FONTS)}")
    design["fontFamily"] = font

    layout = data.get("layout") or design["layout"]
    if layout not in MaintenancePage.LAYOUTS:
        raise ValueError(f"Layout must be one of: {', '.join(MaintenancePage.LAYOUTS)}")
    design["layout"] = layout

    logo = (data.get("logo") or "").strip()
    if logo and not logo.startswith(("http://", "https://")):
        raise ValueError("Logo must be an http(s) URL.")
    design["logo"] = logo

    design["maxWidth"] = _int_in_range(
        data.get("maxWidth") or design["maxWidth"], 320, 1920, "Max width"
    )

    logo_size = data.get("logoSize") or {}
    design["logoSize"] = {
        "width": _int_in_range(
            logo_size.get("width") or DEFAULT_DESIGN["logoSize"]["width"],
            1, 1000, "Logo width",
        ),
        "height": _int_in_range(
            logo_size.get("height") or DEFAULT_DESIGN["logoSize"]["height"],
            1, 1000, "Logo height",
        ),
    }

    design["customCSS"] = data.get("customCSS") or ""
    return design


def _parse_datetime(value):
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat((value or "").strip())
        except ValueError:
            raise ValueError("Scheduled time is not a valid date/time.")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _apply_publish(page, publish_type, scheduled_for, status=None):
    if publish_type == "schedule":
        if not scheduled_for:
            raise ValueError("Choose a date and time to schedule publishing.")
        when = _parse_datetime(scheduled_for)
        if when <= datetime.now(timezone.utc):
            raise ValueError("Scheduled time must be in the future.")
        page.status = "scheduled"
        page.scheduled_for = when
    elif publish_type == "now":
        page.status = "published"
        page.scheduled_for = None
    elif status == "archived":
        page.status = "archived"
        page.scheduled_for = None
    else:
        page.status = "draft"
        page.scheduled_for = None


# ──────────────────────────────────────────────
# Limits
# ──────────────────────────────────────────────

def page_count(user):
    return MaintenancePage.query.filter_by(user_id=user.id).count()


def can_create_page(user):
    """(allowed, current count, limit) for this user's plan."""
    limit = get_plan_limits(user)["pages"]
    count = page_count(user)
    return count < limit, count, limit


def publish_page_count(user):
    """Push the user's current page count to their live connections.

    Call after the commit so a rolled-back change is never announced.
    """
    event_bus.publish(
        user.id, {"type": "pageCount", "userId": user.id, "count": page_count(user)}
    )


# ──────────────────────────────────────────────
# CRUD
# ──────────────────────────────────────────────

def get_page_for_user(page_id, user):
    """The page if the user owns it (admins see everything), else None."""
    page = db.session.get(MaintenancePage, page_id)
    if page is None:
        return None
    if page.user_id != user.id and not user.is_admin:
        return None
    return page


def list_pages(user):
    return (
        MaintenancePage.query
        .filter_by(user_id=user.id)
        .order_by(MaintenancePage.created_at.desc())
        .all()
    )


def create_page(user, data):
    """Create a page from submitted data.

    Args:
        data: dict with title, domain, description, content, design (dict),
              publish_type (draft | now | schedule), scheduled_for, status.

    Raises:
        PermissionError: Page limit for the plan reached.
        ValueError: Invalid fields.
    """
    allowed, count, limit = can_create_page(user)
    if not allowed:
        raise PermissionError(
            "You have reached your page limit. Please upgrade your plan to create more pages."
        )

    title = _sanitize(data.get("title"))
    if not title:
        raise ValueError("Title is required.")
    publish_type = data.get("publish_type") or "draft"
    if publish_type not in PUBLISH_TYPES:
        raise ValueError(f"Unknown publish option '{publish_type}'.")

    page = MaintenancePage(
        user_id=user.id,
        title=title,
        domain=normalize_domain(data.get("domain")),
        description=_sanitize(data.get("description")),
        content=data.get("content") or "",
        design=validate_design(data.get("design")),
    )
    _apply_publish(page, publish_type, data.get("scheduled_for"), data.get("status"))

    db.session.add(page)
    db.session.flush()

    log_activity(
        user.id, "page.created", f"Created page {page.title}",
        {"page_id": page.id, "domain": page.domain},
    )
    return page


def update_page(page, user, data):
    """Apply submitted changes to a page. Raises ValueError on bad input."""
    if "title" in data:
        title = _sanitize(data.get("title"))
        if not title:
            raise ValueError("Title is required.")
        page.title = title
    if "domain" in data:
        domain = normalize_domain(data.get("domain"))
        if domain != page.domain and page.deployed:
            raise ValueError("Delete the edge deployment before changing the domain.")
        page.domain = domain
    if "description" in data:
        page.description = _sanitize(data.get("description"))
    if "content" in data:
        page.content = data.get("content") or ""
    if "design" in data:
        page.design = validate_design(data.get("design"))

    publish_type = data.get("publish_type")
    if publish_type:
        if publish_type not in PUBLISH_TYPES:
            raise ValueError(f"Unknown publish option '{publish_type}'.")
        _apply_publish(page, publish_type, data.get("scheduled_for"), data.get("status"))
    elif data.get("status"):
        if data["status"] not in MaintenancePage.STATUSES:
            raise ValueError(f"Invalid status '{data['status']}'.")
        page.status = data["status"]

    db.session.flush()
    log_activity(user.id, "page.updated", f"Updated page {page.title}", {"page_id": page.id})
    return page


def archive_page(page, user):
    page.status = "archived"
    page.scheduled_for = None
    db.session.flush()
    log_activity(user.id, "page.archived", f"Archived page {page.title}", {"page_id": page.id})
    return page


def delete_page(page, user, session=None):
    """Delete a page, tearing its edge deployment down first (best-effort).

    Teardown runs even when the page never finished deploying: a failed
    deploy can leave its KV value behind, and misses are tolerated.

    Returns the owner so the caller can publish the new page count once
    the delete is committed.
    """
    owner = page.user
    domain = page.domain
    title = page.title
    teardown_for_user(page.user_id, domain, session=session)

    db.session.delete(page)
    db.session.flush()
    log_activity(user.id, "page.deleted", f"Deleted page {title}", {"domain": domain})
    return owner


def publish_scheduled_pages(now=None):
    """Flip every due scheduled page to published. Returns the pages."""
    now = now or datetime.now(timezone.utc)
    due = (
        MaintenancePage.query
        .filter(MaintenancePage.status == "scheduled")
        .filter(MaintenancePage.scheduled_for <= now)
        .all()
    )
    for page in due:
        page.apply_schedule(now)
    db.session.flush()
    return due


# ──────────────────────────────────────────────
# Views & analytics
# ──────────────────────────────────────────────

def view_limit_reached(page):
    limit = get_plan_limits(page.user)["views_per_page"]
    return page.total_views >= limit


def record_view(page, is_unique):
    """Count a public view. Returns False once the plan's view limit is hit."""
    if view_limit_reached(page):
        return False

    page.total_views = (page.total_views or 0) + 1
    if is_unique:
        page.unique_views = (page.unique_views or 0) + 1

    today = date.today()
    day = PageViewDay.query.filter_by(page_id=page.id, day=today).first()
    if day is None:
        day = PageViewDay(page_id=page.id, day=today, views=0, unique_views=0)
        db.session.add(day)
    day.views += 1
    if is_unique:
        day.unique_views += 1

    db.session.flush()
    event_bus.publish(page.user_id, {
        "type": "pageView",
        "pageId": page.id,
        "totalViews": page.total_views,
        "uniqueViews": page.unique_views,
    })
    return True


def page_analytics(page, days=30):
    """Daily views for the last `days` days, zero-filled."""
    start = date.today() - timedelta(days=days - 1)
    rows = {
        row.day: row
        for row in page.view_days.filter(PageViewDay.day >= start).all()
    }
    series = []
    for offset in range(days):
        day = start + timedelta(days=offset)
        row = rows.get(day)
        series.append({
            "day": day.isoformat(),
            "views": row.views if row else 0,
            "uniqueViews": row.unique_views if row else 0,
        })
    return {
        "pageId": page.id,
        "totalViews": page.total_views,
        "uniqueViews": page.unique_views,
        "daily": series,
    }


def analytics_summary(user):
    pages = list_pages(user)
    return {
        "pages": len(pages),
        "published": sum(1 for p in pages if p.status == "published"),
        "deployed": sum(1 for p in pages if p.deployed),
        "totalViews": sum(p.total_views or 0 for p in pages),
        "uniqueViews": sum(p.unique_views or 0 for p in pages),
        "limits": get_plan_limits(user),
    }
