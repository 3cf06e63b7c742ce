"""Stripe service — all Stripe API calls and webhook handling.

Responsible for:
- Creating Stripe Checkout Sessions for a paid plan
- Creating Stripe Customer Portal Sessions
- Cancelling a subscription
- Handling incoming webhooks with signature verification
- Dispatching to event-specific handlers
- Idempotency via stripe_events table
"""

import logging
from datetime import datetime, timezone

import stripe
from flask import current_app

from statussaas.extensions import db
from statussaas.models.activity import log_activity
from statussaas.models.stripe_event import StripeEvent
from statussaas.models.user import User
from statussaas.services.subscription_service import (
    get_active_plan,
    sync_subscription,
)

logger = logging.getLogger(__name__)


def _extract_period_end(sub_data):
    """current_period_end as an aware datetime, or None.

    Newer Stripe API versions moved it from the subscription top level to
    items.data[0]; check both.
    """
    ts = sub_data.get("current_period_end")
    if not ts:
        items = sub_data.get("items")
        if items and items.get("data"):
            ts = items["data"][0].get("current_period_end")
    if ts:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    return None


def _extract_price_id(sub_data):
    items = sub_data.get("items")
    if items and items.get("data"):
        return items["data"][0].get("price", {}).get("id")
    return None


# ──────────────────────────────────────────────
# Customers
# ──────────────────────────────────────────────

def get_or_create_customer(user):
    """Return the user's Stripe customer id, creating the customer if needed."""
    if user.stripe_customer_id:
        return user.stripe_customer_id

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    customer = stripe.Customer.create(
        email=user.email,
        name=user.full_name,
        metadata={"user_id": user.id},
    )
    user.stripe_customer_id = customer.id
    db.session.flush()
    logger.info(f"Created Stripe customer {customer.id} for user {user.id}")
    return customer.id


# ──────────────────────────────────────────────
# Checkout, Portal & Cancel
# ──────────────────────────────────────────────

def create_checkout_session(user, plan_code):
    """Create a Checkout Session subscribing the user to a paid plan.

    Returns the Stripe checkout session URL.
    Raises ValueError for unknown/free plans or plans without a price.
    Raises stripe.StripeError on API failures.
    """
    plan = get_active_plan(plan_code)
    if plan is None:
        raise ValueError(f"Unknown plan '{plan_code}'.")
    if plan.is_free:
        raise ValueError("The free plan does not need checkout.")
    if not plan.stripe_price_id:
        raise ValueError(f"Plan '{plan.code}' has no Stripe price configured.")

    customer_id = get_or_create_customer(user)

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    app_base_url = current_app.config["APP_BASE_URL"]
    metadata = {"user_id": user.id, "plan": plan.code}

    session = stripe.checkout.Session.create(
        mode="subscription",
        customer=customer_id,
        line_items=[{"price": plan.stripe_price_id, "quantity": 1}],
        success_url=(
            f"{app_base_url}/billing/success"
            f"?session_id={{CHECKOUT_SESSION_ID}}"
        ),
        cancel_url=f"{app_base_url}/billing/cancel",
        metadata=metadata,
        subscription_data={"metadata": metadata},
    )
    return session.url


def create_portal_session(user):
    """Create a Customer Portal Session.

    Raises ValueError if the user has never checked out.
    """
    if not user.stripe_customer_id:
        raise ValueError("No billing account found for this user")

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    app_base_url = current_app.config["APP_BASE_URL"]

    session = stripe.billing_portal.Session.create(
        customer=user.stripe_customer_id,
        return_url=f"{app_base_url}/settings/subscription",
    )
    return session.url


def cancel_subscription(user):
    """Cancel the user's Stripe subscription and drop them to free.

    Raises ValueError if there is no subscription to cancel.
    """
    if not user.stripe_subscription_id:
        raise ValueError("No active subscription to cancel")

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    stripe.Subscription.cancel(user.stripe_subscription_id)

    old_plan = user.plan
    sync_subscription(user, status="canceled")
    log_activity(
        user.id,
        "subscription.canceled",
        f"Cancelled {old_plan} subscription",
        {"old_plan": old_plan},
    )
    return user


def sync_checkout_session(user, session_id):
    """Pull a completed Checkout Session straight from Stripe.

    Used by the success page so the plan updates even if the webhook
    has not arrived yet. Returns True when the subscription is live.
    """
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    session = stripe.checkout.Session.retrieve(session_id)

    if session.get("customer") != user.stripe_customer_id:
        logger.warning(f"Checkout session {session_id} does not belong to user {user.id}")
        return False
    if session.get("payment_status") != "paid" or not session.get("subscription"):
        return False

    sub = stripe.Subscription.retrieve(session["subscription"])
    sync_subscription(
        user,
        status=sub.get("status", "active"),
        stripe_subscription_id=sub["id"],
        stripe_price_id=_extract_price_id(sub),
        current_period_end=_extract_period_end(sub),
    )
    return sub.get("status") in ("active", "trialing")


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    Raises stripe.SignatureVerificationError on invalid signature.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: checks stripe_events table before processing.
    Returns (success: bool, message: str).
    """
    event_id = event["id"]
    event_type = event["type"]

    existing = StripeEvent.query.filter_by(stripe_event_id=event_id).first()
    if existing:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "customer.subscription.created": _handle_subscription_updated,
        "customer.subscription.updated": _handle_subscription_updated,
        "customer.subscription.deleted": _handle_subscription_deleted,
        "invoice.payment_failed": _handle_payment_failed,
        "invoice.payment_succeeded": _handle_payment_succeeded,
    }

    user = None
    handler = handlers.get(event_type)
    if handler:
        try:
            user = handler(event)
        except Exception as e:
            logger.error(f"Error handling {event_type}: {e}", exc_info=True)
            db.session.rollback()
            return False, str(e)

    db.session.add(StripeEvent(
        stripe_event_id=event_id,
        event_type=event_type,
        user_id=user.id if user else None,
    ))
    db.session.commit()

    return True, "processed"


def _find_user(customer_id=None, metadata=None):
    user_id = (metadata or {}).get("user_id")
    if user_id:
        user = db.session.get(User, user_id)
        if user:
            return user
    if customer_id:
        return User.query.filter_by(stripe_customer_id=customer_id).first()
    return None


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    session = event["data"]["object"]
    metadata = session.get("metadata") or {}
    stripe_customer_id = session.get("customer")
    stripe_subscription_id = session.get("subscription")

    user = _find_user(stripe_customer_id, metadata)
    if user is None or not stripe_subscription_id:
        logger.warning("checkout.session.completed without a known user or subscription")
        return None

    if not user.stripe_customer_id:
        user.stripe_customer_id = stripe_customer_id

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    sub = stripe.Subscription.retrieve(stripe_subscription_id)

    sync_subscription(
        user,
        status=sub.get("status", "active"),
        stripe_subscription_id=stripe_subscription_id,
        stripe_price_id=_extract_price_id(sub),
        current_period_end=_extract_period_end(sub),
    )
    log_activity(
        user.id,
        "subscription.created",
        f"Subscribed to {user.plan}",
        {"stripe_subscription_id": stripe_subscription_id, "plan": user.plan},
    )
    return user


def _handle_subscription_updated(event):
    sub_data = event["data"]["object"]
    user = _find_user(sub_data.get("customer"), sub_data.get("metadata"))
    if user is None:
        logger.warning(
            f"{event['type']}: no user for customer={sub_data.get('customer')}"
        )
        return None

    sync_subscription(
        user,
        status=sub_data.get("status", "active"),
        stripe_subscription_id=sub_data.get("id"),
        stripe_price_id=_extract_price_id(sub_data),
        current_period_end=_extract_period_end(sub_data),
    )
    log_activity(
        user.id,
        "subscription.updated",
        f"Subscription is {user.subscription_status} on {user.plan}",
        {"stripe_subscription_id": sub_data.get("id"), "status": sub_data.get("status")},
    )
    return user


def _handle_subscription_deleted(event):
    sub_data = event["data"]["object"]
    user = _find_user(sub_data.get("customer"), sub_data.get("metadata"))
    if user is None:
        logger.warning(
            f"subscription.deleted: no user for sub={sub_data.get('id')}"
        )
        return None

    sync_subscription(user, status="canceled")
    log_activity(
        user.id,
        "subscription.deleted",
        "Subscription ended, moved to free plan",
        {"stripe_subscription_id": sub_data.get("id")},
    )
    return user


def _handle_payment_failed(event):
    invoice = event["data"]["object"]
    user = _find_user(invoice.get("customer"))
    if user is None:
        return None

    user.subscription_status = "past_due"
    db.session.flush()
    log_activity(
        user.id,
        "billing.payment_failed",
        "Invoice payment failed",
        {"invoice_id": invoice.get("id")},
    )
    return user


def _handle_payment_succeeded(event):
    invoice = event["data"]["object"]
    user = _find_user(invoice.get("customer"))
    if user is None:
        return None

    if user.subscription_status in ("past_due", "unpaid", "incomplete"):
        user.subscription_status = "active"
        db.session.flush()
    log_activity(
        user.id,
        "billing.payment_succeeded",
        "Invoice paid",
        {"invoice_id": invoice.get("id"), "amount_paid": invoice.get("amount_paid")},
    )
    return user
