"""Subscription service — plan catalog, plan limits, plan changes.

The user's subscription lives on the User row (plan code + Stripe ids +
status). Plan rows carry the limits. Anything that can't be resolved to
an active plan falls back to FREE_LIMITS.

Functions flush but do NOT commit — the caller commits.
"""

import logging

from statussaas.extensions import db
from statussaas.models.activity import log_activity
from statussaas.models.plan import FREE_LIMITS, SubscriptionPlan

logger = logging.getLogger(__name__)


def list_active_plans():
    return (
        SubscriptionPlan.query
        .filter_by(is_active=True)
        .order_by(SubscriptionPlan.price.asc())
        .all()
    )


def get_active_plan(code):
    if not code:
        return None
    return SubscriptionPlan.query.filter_by(code=code.lower(), is_active=True).first()


def get_plan_limits(user):
    """Page and view limits for a user's current plan."""
    plan = get_active_plan(user.plan)
    if plan is None or not user.has_active_subscription():
        return dict(FREE_LIMITS)
    return plan.limits


def plan_code_for_price_id(stripe_price_id):
    """Resolve a Stripe price id to a plan code (None if unknown)."""
    if not stripe_price_id:
        return None
    plan = SubscriptionPlan.query.filter_by(stripe_price_id=stripe_price_id).first()
    return plan.code if plan else None


def has_pro_access(user):
    """Incidents are gated behind an active pro plan (admins always pass)."""
    if user.is_admin:
        return True
    return user.plan == "pro" and user.has_active_subscription()


def change_plan(user, plan_code, actor_id=None):
    """Move a user onto another plan without going through Stripe.

    Used for downgrades to free and for admin overrides.

    Raises:
        ValueError: Unknown or inactive plan.
    """
    plan = get_active_plan(plan_code)
    if plan is None:
        raise ValueError(f"Unknown plan '{plan_code}'.")

    old_plan = user.plan
    if old_plan == plan.code:
        return user

    user.plan = plan.code
    if plan.is_free:
        user.subscription_status = "active"
        user.stripe_subscription_id = None
        user.current_period_end = None
    db.session.flush()

    log_activity(
        actor_id or user.id,
        "subscription.plan_changed",
        f"Plan changed from {old_plan} to {plan.code}",
        {"user_id": user.id, "old_plan": old_plan, "new_plan": plan.code},
    )
    logger.info(f"User {user.id} plan {old_plan} -> {plan.code}")
    return user


def sync_subscription(user, *, status, stripe_subscription_id=None,
                      stripe_price_id=None, current_period_end=None):
    """Apply subscription state reported by Stripe to a user.

    The plan is only changed when the price maps to a known plan; a
    cancelled subscription drops the user back to free.
    """
    if status not in user.SUBSCRIPTION_STATUSES:
        logger.warning(f"Unknown Stripe subscription status '{status}' for user {user.id}")
        status = "incomplete"

    user.subscription_status = status
    if stripe_subscription_id:
        user.stripe_subscription_id = stripe_subscription_id
    if current_period_end is not None:
        user.current_period_end = current_period_end

    if status == "canceled":
        user.plan = "free"
        user.subscription_status = "active"
        user.stripe_subscription_id = None
        user.current_period_end = None
    else:
        plan_code = plan_code_for_price_id(stripe_price_id)
        if plan_code:
            user.plan = plan_code

    db.session.flush()
    return user
