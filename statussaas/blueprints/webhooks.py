"""Webhooks blueprint — /webhook/stripe

Receives Stripe webhook events. CSRF-exempt.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, request, jsonify

from statussaas.services.stripe_service import verify_webhook_signature, handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhook")


@webhooks_bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    """Verify the signature, process the event once, acknowledge.

    Returns 400 for a missing/invalid signature, 500 if a handler failed
    (Stripe will retry), 200 otherwise, including for duplicates.
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    try:
        event = verify_webhook_signature(payload, sig_header)
    except Exception as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": "Invalid signature"}), 400

    success, message = handle_webhook_event(event)

    if success:
        return jsonify({"status": message}), 200
    logger.error(f"Webhook processing failed: {message}")
    return jsonify({"error": message}), 500
