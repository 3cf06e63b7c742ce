"""Dashboard blueprint — /

Signed-in home page: recent pages, usage against plan limits, recent
activity.
"""

from flask import Blueprint, render_template
from flask_login import current_user, login_required

from statussaas.models.activity import ActivityEvent
from statussaas.models.page import MaintenancePage
from statussaas.services import page_service
from statussaas.services.subscription_service import get_active_plan, get_plan_limits

dashboard_bp = Blueprint("dashboard", __name__)


@dashboard_bp.route("/")
@login_required
def index():
    recent_pages = (
        MaintenancePage.query
        .filter_by(user_id=current_user.id)
        .order_by(MaintenancePage.updated_at.desc())
        .limit(5)
        .all()
    )
    recent_activity = (
        ActivityEvent.query
        .filter_by(actor_user_id=current_user.id)
        .order_by(ActivityEvent.created_at.desc())
        .limit(10)
        .all()
    )
    _, page_count, page_limit = page_service.can_create_page(current_user)

    return render_template(
        "dashboard/index.html",
        recent_pages=recent_pages,
        recent_activity=recent_activity,
        page_count=page_count,
        page_limit=page_limit,
        limits=get_plan_limits(current_user),
        plan=get_active_plan(current_user.plan),
        summary=page_service.analytics_summary(current_user),
    )
