"""Admin blueprint — /admin/*

Platform overview, user management, plan catalog, all pages, activity log.
All routes protected by @admin_required decorator.

Route Map:
  GET  /admin/                         — Dashboard overview
  GET  /admin/users                    — User list (search + filters)
  GET/POST /admin/users/new            — Create user
  GET  /admin/users/<id>               — User detail
  POST /admin/users/<id>               — Update user
  POST /admin/users/<id>/delete        — Delete user (tears down their pages)
  GET  /admin/plans                    — Plan list
  GET/POST /admin/plans/new            — Create plan
  GET/POST /admin/plans/<id>/edit      — Edit plan
  POST /admin/plans/<id>/delete        — Delete (or deactivate) plan
  GET  /admin/pages                    — All pages
  GET  /admin/activity                 — Activity log
"""

import logging
from decimal import Decimal, InvalidOperation

from flask import (
    Blueprint,
    abort,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import current_user
from werkzeug.security import generate_password_hash

from statussaas.decorators import admin_required
from statussaas.extensions import db
from statussaas.models.activity import ActivityEvent, log_activity
from statussaas.models.page import MaintenancePage
from statussaas.models.plan import SubscriptionPlan
from statussaas.models.user import User
from statussaas.services import subscription_service
from statussaas.services.cloudflare_service import teardown_for_user

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")

ACTIVITY_PER_PAGE = 50


# ══════════════════════════════════════════════
#  DASHBOARD
# ══════════════════════════════════════════════

@admin_bp.route("/")
@admin_required
def dashboard():
    """Overview: user counts, plan mix, estimated MRR, pages, recent activity."""
    total_users = User.query.count()
    active_users = User.query.filter_by(status="active").count()

    plan_counts = dict(
        db.session.query(User.plan, db.func.count(User.id)).group_by(User.plan).all()
    )

    # --- Estimated MRR (monthly equivalent of active paid subscriptions) ---
    mrr = Decimal("0")
    plans = {p.code: p for p in SubscriptionPlan.query.all()}
    paying = User.query.filter(
        User.plan != "free", User.subscription_status == "active"
    ).all()
    for user in paying:
        plan = plans.get(user.plan)
        if plan is None or plan.is_free:
            continue
        price = Decimal(plan.price)
        mrr += price / 12 if plan.interval == "year" else price

    total_pages = MaintenancePage.query.count()
    deployed_pages = MaintenancePage.query.filter_by(deployed=True).count()
    total_views = db.session.query(
        db.func.coalesce(db.func.sum(MaintenancePage.total_views), 0)
    ).scalar()

    recent_activity = (
        ActivityEvent.query
        .order_by(ActivityEvent.created_at.desc())
        .limit(20)
        .all()
    )

    return render_template(
        "admin/dashboard.html",
        total_users=total_users,
        active_users=active_users,
        plan_counts=plan_counts,
        paying_count=len(paying),
        mrr=mrr.quantize(Decimal("0.01")),
        total_pages=total_pages,
        deployed_pages=deployed_pages,
        total_views=int(total_views or 0),
        recent_activity=recent_activity,
    )


# ══════════════════════════════════════════════
#  USERS
# ══════════════════════════════════════════════

@admin_bp.route("/users")
@admin_required
def user_list():
    query = User.query

    search = request.args.get("q", "").strip()
    if search:
        like = f"%{search.lower()}%"
        query = query.filter(
            db.or_(User.email.ilike(like), User.full_name.ilike(like))
        )

    plan_filter = request.args.get("plan")
    if plan_filter:
        query = query.filter_by(plan=plan_filter)

    status_filter = request.args.get("status")
    if status_filter in User.STATUSES:
        query = query.filter_by(status=status_filter)

    users = query.order_by(User.created_at.desc()).all()
    return render_template(
        "admin/users.html",
        users=users,
        plans=SubscriptionPlan.query.order_by(SubscriptionPlan.price.asc()).all(),
        search=search,
        plan_filter=plan_filter,
        status_filter=status_filter,
    )


def _apply_user_form(user, form, creating=False):
    """Validate and apply the user form. Returns a list of error strings."""
    errors = []
    email = form.get("email", "").lower().strip()
    full_name = form.get("full_name", "").strip()
    role = form.get("role", user.role or "user")
    status = form.get("status", user.status or "active")
    plan = form.get("plan", user.plan or "free")
    password = form.get("password", "")

    if not email or "@" not in email:
        errors.append("A valid email is required.")
    elif email != user.email and User.query.filter_by(email=email).first():
        errors.append("An account with this email already exists.")
    if not full_name:
        errors.append("Full name is required.")
    if role not in User.ROLES:
        errors.append(f"Invalid role '{role}'.")
    if status not in User.STATUSES:
        errors.append(f"Invalid status '{status}'.")
    if creating and len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    elif password and len(password) < 8:
        errors.append("Password must be at least 8 characters.")
    if plan != user.plan and subscription_service.get_active_plan(plan) is None:
        errors.append(f"Unknown plan '{plan}'.")
    if user.id == current_user.id and (role != "admin" or status != "active"):
        errors.append("You cannot demote or deactivate your own account.")

    if errors:
        return errors

    user.email = email
    user.full_name = full_name
    user.role = role
    user.status = status
    if password:
        user.password_hash = generate_password_hash(password)
    if creating:
        user.plan = plan
    elif plan != user.plan:
        subscription_service.change_plan(user, plan, actor_id=current_user.id)
    return []


@admin_bp.route("/users/new", methods=["GET", "POST"])
@admin_required
def user_new():
    plans = SubscriptionPlan.query.filter_by(is_active=True).all()
    if request.method == "POST":
        user = User(role="user", status="active", plan="free")
        errors = _apply_user_form(user, request.form, creating=True)
        if errors:
            for err in errors:
                flash(err, "error")
            return render_template(
                "admin/user_form.html", user=None, form=request.form, plans=plans
            ), 400

        db.session.add(user)
        db.session.flush()
        log_activity(
            current_user.id, "admin.user_created", f"Created user {user.email}",
            {"user_id": user.id},
        )
        db.session.commit()
        flash(f"User {user.email} created.", "success")
        return redirect(url_for("admin.user_detail", user_id=user.id))

    return render_template("admin/user_form.html", user=None, form={}, plans=plans)


@admin_bp.route("/users/<user_id>")
@admin_required
def user_detail(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        abort(404)
    return render_template(
        "admin/user_detail.html",
        user=user,
        pages=user.pages.order_by(MaintenancePage.created_at.desc()).all(),
        activity=user.activity_events.order_by(ActivityEvent.created_at.desc()).limit(20).all(),
        plans=SubscriptionPlan.query.filter_by(is_active=True).all(),
        limits=subscription_service.get_plan_limits(user),
    )


@admin_bp.route("/users/<user_id>", methods=["POST"])
@admin_required
def user_update(user_id):
    user = db.session.get(User, user_id)
    if user is None:
        abort(404)

    errors = _apply_user_form(user, request.form)
    if errors:
        db.session.rollback()
        for err in errors:
            flash(err, "error")
        return redirect(url_for("admin.user_detail", user_id=user_id))

    log_activity(
        current_user.id, "admin.user_updated", f"Updated user {user.email}",
        {"user_id": user.id},
    )
    db.session.commit()
    flash("User updated.", "success")
    return redirect(url_for("admin.user_detail", user_id=user_id))


@admin_bp.route("/users/<user_id>/delete", methods=["POST"])
@admin_required
def user_delete(user_id):
    """Delete a user and everything they own.

    Edge deployments are torn down first, best-effort; a page whose
    teardown fails is still deleted.
    """
    user = db.session.get(User, user_id)
    if user is None:
        abort(404)
    if user.id == current_user.id:
        flash("You cannot delete your own account.", "error")
        return redirect(url_for("admin.user_detail", user_id=user_id))

    email = user.email
    for page in user.pages.all():
        teardown_for_user(user.id, page.domain)
        db.session.delete(page)

    db.session.delete(user)
    log_activity(
        current_user.id, "admin.user_deleted", f"Deleted user {email}", {"email": email}
    )
    db.session.commit()
    flash(f"User {email} deleted.", "info")
    return redirect(url_for("admin.user_list"))


# ══════════════════════════════════════════════
#  PLANS
# ══════════════════════════════════════════════

@admin_bp.route("/plans")
@admin_required
def plan_list():
    plans = SubscriptionPlan.query.order_by(SubscriptionPlan.price.asc()).all()
    subscribers = dict(
        db.session.query(User.plan, db.func.count(User.id)).group_by(User.plan).all()
    )
    return render_template("admin/plans.html", plans=plans, subscribers=subscribers)


def _apply_plan_form(plan, form):
    """Validate and apply the plan form. Returns a list of error strings."""
    errors = []

    name = form.get("name", "").strip()
    if not name:
        errors.append("Name is required.")

    try:
        price = Decimal(form.get("price", "0") or "0")
        if price < 0:
            raise InvalidOperation
    except InvalidOperation:
        errors.append("Price must be a non-negative number.")
        price = Decimal("0")

    interval = form.get("interval", "month")
    if interval not in SubscriptionPlan.INTERVALS:
        errors.append(f"Interval must be one of: {', '.join(SubscriptionPlan.INTERVALS)}")

    limits = {}
    for field, label in (("page_limit", "Page limit"), ("views_per_page", "Views per page")):
        try:
            limits[field] = int(form.get(field, ""))
            if limits[field] < 1:
                raise ValueError
        except ValueError:
            errors.append(f"{label} must be a positive whole number.")

    if plan.code is None:
        try:
            plan.code = form.get("code", "")
        except ValueError as e:
            errors.append(str(e))
        else:
            if SubscriptionPlan.query.filter_by(code=plan.code).first():
                errors.append(f"A plan with code '{plan.code}' already exists.")

    if errors:
        return errors

    plan.name = name
    plan.description = form.get("description", "").strip()
    plan.price = price
    plan.interval = interval
    plan.stripe_price_id = form.get("stripe_price_id", "").strip() or None
    plan.features = [
        line.strip() for line in form.get("features", "").splitlines() if line.strip()
    ]
    plan.page_limit = limits["page_limit"]
    plan.views_per_page = limits["views_per_page"]
    plan.is_active = bool(form.get("is_active"))
    return []


@admin_bp.route("/plans/new", methods=["GET", "POST"])
@admin_required
def plan_new():
    if request.method == "POST":
        plan = SubscriptionPlan()
        errors = _apply_plan_form(plan, request.form)
        if errors:
            db.session.rollback()
            for err in errors:
                flash(err, "error")
            return render_template("admin/plan_form.html", plan=None, form=request.form), 400

        db.session.add(plan)
        db.session.flush()
        log_activity(
            current_user.id, "admin.plan_created", f"Created plan {plan.code}",
            {"plan_id": plan.id},
        )
        db.session.commit()
        flash(f"Plan {plan.name} created.", "success")
        return redirect(url_for("admin.plan_list"))

    return render_template("admin/plan_form.html", plan=None, form={})


@admin_bp.route("/plans/<plan_id>/edit", methods=["GET", "POST"])
@admin_required
def plan_edit(plan_id):
    plan = db.session.get(SubscriptionPlan, plan_id)
    if plan is None:
        abort(404)

    if request.method == "POST":
        errors = _apply_plan_form(plan, request.form)
        if errors:
            db.session.rollback()
            for err in errors:
                flash(err, "error")
            return redirect(url_for("admin.plan_edit", plan_id=plan_id))

        log_activity(
            current_user.id, "admin.plan_updated", f"Updated plan {plan.code}",
            {"plan_id": plan.id},
        )
        db.session.commit()
        flash("Plan updated.", "success")
        return redirect(url_for("admin.plan_list"))

    return render_template("admin/plan_form.html", plan=plan, form={})


@admin_bp.route("/plans/<plan_id>/delete", methods=["POST"])
@admin_required
def plan_delete(plan_id):
    """Delete a plan nobody is on; otherwise only deactivate it."""
    plan = db.session.get(SubscriptionPlan, plan_id)
    if plan is None:
        abort(404)

    if User.query.filter_by(plan=plan.code).count():
        plan.is_active = False
        flash(f"Plan {plan.name} has subscribers, so it was deactivated instead.", "warning")
        action = "admin.plan_deactivated"
    else:
        db.session.delete(plan)
        flash(f"Plan {plan.name} deleted.", "info")
        action = "admin.plan_deleted"

    log_activity(current_user.id, action, f"Plan {plan.code}", {"plan_code": plan.code})
    db.session.commit()
    return redirect(url_for("admin.plan_list"))


# ══════════════════════════════════════════════
#  PAGES & ACTIVITY
# ══════════════════════════════════════════════

@admin_bp.route("/pages")
@admin_required
def page_list():
    query = MaintenancePage.query
    status_filter = request.args.get("status")
    if status_filter in MaintenancePage.STATUSES:
        query = query.filter_by(status=status_filter)
    pages = query.order_by(MaintenancePage.created_at.desc()).all()
    return render_template("admin/pages.html", pages=pages, status_filter=status_filter)


@admin_bp.route("/activity")
@admin_required
def activity():
    page_number = max(request.args.get("page", 1, type=int), 1)
    pagination = db.paginate(
        db.select(ActivityEvent).order_by(ActivityEvent.created_at.desc()),
        page=page_number,
        per_page=ACTIVITY_PER_PAGE,
        error_out=False,
    )
    return render_template("admin/activity.html", pagination=pagination)
