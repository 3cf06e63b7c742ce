"""Billing blueprint — /billing/*

Stripe Checkout, Customer Portal, success/cancel pages, cancellation.

Routes:
- POST /billing/checkout             — create Checkout Session, redirect to Stripe
- GET  /billing/success              — post-checkout landing page
- GET  /billing/cancel               — user cancelled checkout
- POST /billing/portal               — create Customer Portal Session, redirect to Stripe
- POST /billing/cancel-subscription  — cancel the Stripe subscription now
"""

import logging

from flask import (
    Blueprint,
    flash,
    redirect,
    render_template,
    request,
    url_for,
)
from flask_login import current_user, login_required

from statussaas.extensions import db
from statussaas.services import stripe_service

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__, url_prefix="/billing")


# ──────────────────────────────────────────────
# POST /billing/checkout
# ──────────────────────────────────────────────

@billing_bp.route("/checkout", methods=["POST"])
@login_required
def checkout():
    """Create a Stripe Checkout Session for the chosen plan and redirect."""
    try:
        checkout_url = stripe_service.create_checkout_session(
            current_user, request.form.get("plan", "")
        )
        db.session.commit()
        return redirect(checkout_url, code=303)
    except ValueError as e:
        db.session.rollback()
        flash(str(e), "error")
    except Exception as e:
        db.session.rollback()
        logger.error(f"Checkout error: {e}", exc_info=True)
        flash("Something went wrong starting checkout. Please try again.", "error")
    return redirect(url_for("settings.subscription"))


# ──────────────────────────────────────────────
# GET /billing/success
# ──────────────────────────────────────────────

@billing_bp.route("/success")
@login_required
def checkout_success():
    """Post-checkout landing page.

    The webhook updates the subscription asynchronously; if a session_id
    came back from Stripe we also sync it here so the page can show the
    new plan straight away.
    """
    active = current_user.plan != "free" and current_user.has_active_subscription()
    session_id = request.args.get("session_id")
    if session_id and not active:
        try:
            active = stripe_service.sync_checkout_session(current_user, session_id)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.warning(f"Failed to sync from Stripe session: {e}")

    return render_template("billing/success.html", active=active)


# ──────────────────────────────────────────────
# GET /billing/cancel
# ──────────────────────────────────────────────

@billing_bp.route("/cancel")
@login_required
def checkout_cancel():
    flash("Checkout was cancelled. You can upgrade anytime.", "info")
    return redirect(url_for("settings.subscription"))


# ──────────────────────────────────────────────
# POST /billing/portal
# ──────────────────────────────────────────────

@billing_bp.route("/portal", methods=["POST"])
@login_required
def customer_portal():
    """Redirect to Stripe's hosted portal (payment methods, invoices)."""
    try:
        portal_url = stripe_service.create_portal_session(current_user)
        return redirect(portal_url, code=303)
    except ValueError:
        flash("No billing account found. Please subscribe first.", "error")
    except Exception as e:
        logger.error(f"Portal session error: {e}", exc_info=True)
        flash("Something went wrong. Please try again.", "error")
    return redirect(url_for("settings.subscription"))


# ──────────────────────────────────────────────
# POST /billing/cancel-subscription
# ──────────────────────────────────────────────

@billing_bp.route("/cancel-subscription", methods=["POST"])
@login_required
def cancel_subscription():
    try:
        stripe_service.cancel_subscription(current_user)
        db.session.commit()
        flash("Your subscription has been cancelled. You are now on the free plan.", "info")
    except ValueError as e:
        flash(str(e), "error")
    except Exception as e:
        db.session.rollback()
        logger.error(f"Cancel subscription error: {e}", exc_info=True)
        flash("Something went wrong. Please try again.", "error")
    return redirect(url_for("settings.subscription"))
