"""Tests for the webhooks blueprint and Stripe event handling.

Covers:
- Webhook signature verification (missing, invalid)
- Idempotent event processing (duplicate events skipped)
- checkout.session.completed handler
- customer.subscription.updated / deleted handlers
- invoice.payment_failed / payment_succeeded handlers
- Unknown event types (accepted and recorded)
- Handler failure -> 500 so Stripe retries
"""

import json
from unittest.mock import patch

from statussaas.extensions import db
from statussaas.models.activity import ActivityEvent
from statussaas.models.stripe_event import StripeEvent
from statussaas.models.user import User

FUTURE_TS = 1893456000  # 2030-01-01


def _post(client):
    return client.post(
        "/webhook/stripe",
        data="{}",
        content_type="application/json",
        headers={"Stripe-Signature": "valid_sig"},
    )


class TestWebhookSignature:

    def test_missing_signature_returns_400(self, client, seed_data):
        resp = client.post("/webhook/stripe", data="{}", content_type="application/json")
        assert resp.status_code == 400
        assert b"Missing signature" in resp.data

    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_invalid_signature_returns_400(self, mock_construct, client, seed_data):
        mock_construct.side_effect = ValueError("Invalid signature")

        resp = client.post(
            "/webhook/stripe",
            data="{}",
            content_type="application/json",
            headers={"Stripe-Signature": "bad_sig"},
        )
        assert resp.status_code == 400
        assert b"Invalid signature" in resp.data

    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_secret_passed_to_stripe(self, mock_construct, client, seed_data):
        mock_construct.return_value = {"id": "evt_x", "type": "ping", "data": {"object": {}}}
        _post(client)
        assert mock_construct.call_args.args[2] == "whsec_test_fake"


class TestWebhookIdempotency:

    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_duplicate_event_returns_200(self, mock_construct, client, seed_data):
        db.session.add(StripeEvent(
            stripe_event_id="evt_duplicate_123",
            event_type="customer.subscription.deleted",
        ))
        db.session.commit()

        mock_construct.return_value = {
            "id": "evt_duplicate_123",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_pro", "customer": "cus_pro"}},
        }

        resp = _post(client)
        assert resp.status_code == 200
        assert json.loads(resp.data)["status"] == "already_processed"
        # The handler did not run a second time.
        assert User.query.filter_by(email="pro@example.com").one().plan == "pro"

    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_unknown_event_recorded(self, mock_construct, client, seed_data):
        mock_construct.return_value = {
            "id": "evt_unknown_1", "type": "charge.refunded", "data": {"object": {}},
        }
        resp = _post(client)
        assert resp.status_code == 200
        assert StripeEvent.query.filter_by(stripe_event_id="evt_unknown_1").count() == 1


class TestCheckoutCompleted:

    @patch("statussaas.services.stripe_service.stripe.Subscription.retrieve")
    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_upgrades_user(self, mock_construct, mock_sub_retrieve, client, seed_data, reload):
        owner_id = seed_data["owner_id"]
        mock_construct.return_value = {
            "id": "evt_checkout_001",
            "type": "checkout.session.completed",
            "data": {"object": {
                "subscription": "sub_new",
                "customer": "cus_new",
                "metadata": {"user_id": owner_id, "plan": "basic"},
            }},
        }
        mock_sub_retrieve.return_value = {
            "id": "sub_new",
            "status": "active",
            "current_period_end": FUTURE_TS,
            "items": {"data": [{"price": {"id": "price_basic"}}]},
        }

        resp = _post(client)
        assert resp.status_code == 200

        user = reload(User, owner_id)
        assert user.plan == "basic"
        assert user.subscription_status == "active"
        assert user.stripe_customer_id == "cus_new"
        assert user.stripe_subscription_id == "sub_new"
        assert user.current_period_end is not None

        evt = StripeEvent.query.filter_by(stripe_event_id="evt_checkout_001").one()
        assert evt.user_id == owner_id
        assert ActivityEvent.query.filter_by(action="subscription.created").count() == 1

    @patch("statussaas.services.stripe_service.stripe.Subscription.retrieve")
    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_handler_error_returns_500(self, mock_construct, mock_sub_retrieve,
                                       client, seed_data):
        mock_construct.return_value = {
            "id": "evt_checkout_err",
            "type": "checkout.session.completed",
            "data": {"object": {
                "subscription": "sub_new",
                "customer": "cus_new",
                "metadata": {"user_id": seed_data["owner_id"]},
            }},
        }
        mock_sub_retrieve.side_effect = RuntimeError("Stripe is down")

        resp = _post(client)
        assert resp.status_code == 500
        assert StripeEvent.query.filter_by(stripe_event_id="evt_checkout_err").count() == 0


class TestSubscriptionChanges:

    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_updated_changes_plan_and_status(self, mock_construct, client, seed_data, reload):
        mock_construct.return_value = {
            "id": "evt_update_001",
            "type": "customer.subscription.updated",
            "data": {"object": {
                "id": "sub_pro",
                "customer": "cus_pro",
                "status": "active",
                "current_period_end": FUTURE_TS,
                "items": {"data": [{"price": {"id": "price_enterprise"}}]},
            }},
        }

        assert _post(client).status_code == 200

        user = reload(User, seed_data["pro_id"])
        assert user.plan == "enterprise"
        assert user.subscription_status == "active"

    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_unknown_price_keeps_plan(self, mock_construct, client, seed_data, reload):
        mock_construct.return_value = {
            "id": "evt_update_002",
            "type": "customer.subscription.updated",
            "data": {"object": {
                "id": "sub_pro",
                "customer": "cus_pro",
                "status": "past_due",
                "items": {"data": [{"price": {"id": "price_mystery"}}]},
            }},
        }

        _post(client)

        user = reload(User, seed_data["pro_id"])
        assert user.plan == "pro"
        assert user.subscription_status == "past_due"

    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_deleted_moves_to_free(self, mock_construct, client, seed_data, reload):
        mock_construct.return_value = {
            "id": "evt_delete_001",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_pro", "customer": "cus_pro"}},
        }

        _post(client)

        user = reload(User, seed_data["pro_id"])
        assert user.plan == "free"
        assert user.subscription_status == "active"
        assert user.stripe_subscription_id is None
        assert user.stripe_customer_id == "cus_pro"

    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_unknown_customer_is_ignored(self, mock_construct, client, seed_data):
        mock_construct.return_value = {
            "id": "evt_delete_002",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_x", "customer": "cus_nobody"}},
        }
        resp = _post(client)
        assert resp.status_code == 200
        assert StripeEvent.query.filter_by(stripe_event_id="evt_delete_002").one().user_id is None


class TestInvoices:

    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_payment_failed_marks_past_due(self, mock_construct, client, seed_data, reload):
        mock_construct.return_value = {
            "id": "evt_fail_001",
            "type": "invoice.payment_failed",
            "data": {"object": {"id": "in_1", "customer": "cus_pro"}},
        }

        _post(client)

        assert reload(User, seed_data["pro_id"]).subscription_status == "past_due"

    @patch("statussaas.services.stripe_service.stripe.Webhook.construct_event")
    def test_payment_succeeded_restores_active(self, mock_construct, client, seed_data, reload):
        seed_data["pro"].subscription_status = "past_due"
        db.session.commit()
        mock_construct.return_value = {
            "id": "evt_paid_001",
            "type": "invoice.payment_succeeded",
            "data": {"object": {"id": "in_2", "customer": "cus_pro", "amount_paid": 2999}},
        }

        _post(client)

        assert reload(User, seed_data["pro_id"]).subscription_status == "active"
