"""Settings blueprint — /settings/*

Profile, password, and the subscription page (plan list, confirm,
change). Paid plan changes go through Stripe Checkout; downgrades to free
cancel the Stripe subscription directly.
"""

import logging

import stripe
from flask import (
    Blueprint,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import current_user, login_required
from werkzeug.security import check_password_hash, generate_password_hash

from statussaas.extensions import db
from statussaas.models.activity import log_activity
from statussaas.models.user import User
from statussaas.services import stripe_service, subscription_service

logger = logging.getLogger(__name__)

settings_bp = Blueprint("settings", __name__, url_prefix="/settings")


# ──────────────────────────────────────────────
# Profile
# ──────────────────────────────────────────────

@settings_bp.route("", methods=["GET", "POST"])
@login_required
def profile():
    if request.method == "POST":
        full_name = request.form.get("full_name", "").strip()
        email = request.form.get("email", "").lower().strip()

        errors = []
        if not full_name:
            errors.append("Full name is required.")
        if not email or "@" not in email:
            errors.append("A valid email is required.")
        elif email != current_user.email and User.query.filter_by(email=email).first():
            errors.append("An account with this email already exists.")

        if errors:
            for err in errors:
                flash(err, "error")
            return render_template("settings/profile.html"), 400

        current_user.full_name = full_name
        current_user.email = email
        log_activity(current_user.id, "user.profile_updated", "Updated profile")
        db.session.commit()
        flash("Profile updated.", "success")
        return redirect(url_for("settings.profile"))

    return render_template("settings/profile.html")


@settings_bp.route("/password", methods=["POST"])
@login_required
def change_password():
    current_password = request.form.get("current_password", "")
    new_password = request.form.get("new_password", "")
    confirm = request.form.get("confirm_password", "")

    if not check_password_hash(current_user.password_hash, current_password):
        flash("Current password is incorrect.", "error")
    elif len(new_password) < 8:
        flash("New password must be at least 8 characters.", "error")
    elif new_password != confirm:
        flash("New passwords do not match.", "error")
    else:
        current_user.password_hash = generate_password_hash(new_password)
        log_activity(current_user.id, "user.password_changed", "Changed password")
        db.session.commit()
        flash("Password changed.", "success")

    return redirect(url_for("settings.profile"))


# ──────────────────────────────────────────────
# Subscription
# ──────────────────────────────────────────────

@settings_bp.route("/subscription")
@login_required
def subscription():
    return render_template(
        "settings/subscription.html",
        plans=subscription_service.list_active_plans(),
        current_plan=subscription_service.get_active_plan(current_user.plan),
        limits=subscription_service.get_plan_limits(current_user),
    )


@settings_bp.route("/subscription/confirm")
@login_required
def confirm_plan():
    plan = subscription_service.get_active_plan(request.args.get("plan"))
    if plan is None:
        flash("That plan is not available.", "error")
        return redirect(url_for("settings.subscription"))
    if plan.code == current_user.plan:
        flash(f"You are already on the {plan.name} plan.", "info")
        return redirect(url_for("settings.subscription"))
    return render_template(
        "settings/confirm_plan.html",
        plan=plan,
        current_plan=subscription_service.get_active_plan(current_user.plan),
    )


@settings_bp.route("/subscription/change-plan", methods=["POST"])
@login_required
def change_plan():
    plan = subscription_service.get_active_plan(request.form.get("plan"))
    if plan is None:
        flash("That plan is not available.", "error")
        return redirect(url_for("settings.subscription"))

    if not plan.is_free:
        try:
            checkout_url = stripe_service.create_checkout_session(current_user, plan.code)
            db.session.commit()
            return redirect(checkout_url, code=303)
        except ValueError as e:
            db.session.rollback()
            flash(str(e), "error")
        except stripe.StripeError as e:
            db.session.rollback()
            logger.error(f"Checkout error: {e}", exc_info=True)
            flash("Something went wrong starting checkout. Please try again.", "error")
        return redirect(url_for("settings.subscription"))

    try:
        if current_user.stripe_subscription_id:
            stripe_service.cancel_subscription(current_user)
        else:
            subscription_service.change_plan(current_user, plan.code)
        db.session.commit()
        flash(f"You are now on the {plan.name} plan.", "success")
    except stripe.StripeError as e:
        db.session.rollback()
        logger.error(f"Downgrade error for user {current_user.id}: {e}", exc_info=True)
        flash("Something went wrong. Please try again.", "error")
    return redirect(url_for("settings.subscription"))
