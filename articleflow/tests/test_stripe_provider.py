"""
Stripe adapter: event normalization against a mocked StripeClient.
"""
import pytest
import stripe
from datetime import datetime, timezone
from unittest.mock import Mock

from articleflow.features.billing.provider import BillingProviderError, BillingWebhookError
from articleflow.features.billing.stripe_provider import StripeProvider, parse_subscription

START = 1735689600  # 2025-01-01T00:00:00Z
END = 1738368000  # 2025-02-01T00:00:00Z


def _subscription(**overrides):
    sub = {
        "id": "sub_1",
        "status": "active",
        "customer": "cus_1",
        "cancel_at_period_end": False,
        "current_period_start": START,
        "current_period_end": END,
        "metadata": {"user_id": "user_alice"},
        "items": {"data": [{"price": {"id": "price_pro"}}]},
    }
    sub.update(overrides)
    return sub


@pytest.fixture
def stripe_client():
    return Mock()


@pytest.fixture
def provider(stripe_client):
    return StripeProvider("sk_test", "whsec_test", client=stripe_client)


class TestParseSubscription:
    def test_top_level_period(self):
        obs = parse_subscription(_subscription())
        assert obs.provider_subscription_id == "sub_1"
        assert obs.price_id == "price_pro"
        assert obs.user_id == "user_alice"
        assert obs.current_period_start == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert obs.current_period_end == datetime(2025, 2, 1, tzinfo=timezone.utc)

    def test_period_from_subscription_item(self):
        sub = _subscription(
            current_period_start=None,
            current_period_end=None,
            items={"data": [{"price": {"id": "price_pro"}, "current_period_start": START, "current_period_end": END}]},
        )
        obs = parse_subscription(sub)
        assert obs.current_period_end == datetime(2025, 2, 1, tzinfo=timezone.utc)

    def test_expanded_customer(self):
        obs = parse_subscription(_subscription(customer={"id": "cus_9"}), user_id="user_bob")
        assert obs.customer_id == "cus_9"
        assert obs.user_id == "user_bob"


class TestParseWebhook:
    def test_subscription_event(self, provider, stripe_client):
        stripe_client.construct_event.return_value = {
            "id": "evt_1",
            "type": "customer.subscription.updated",
            "data": {"object": _subscription(status="past_due")},
        }
        event = provider.parse_webhook({"stripe-signature": "sig"}, b"{}")

        stripe_client.construct_event.assert_called_once_with(b"{}", "sig", "whsec_test")
        assert event.event_id == "evt_1"
        assert event.subscription.status == "past_due"
        assert event.subscription_id == "sub_1"

    def test_checkout_completed(self, provider, stripe_client):
        stripe_client.construct_event.return_value = {
            "id": "evt_2",
            "type": "checkout.session.completed",
            "data": {"object": {"subscription": "sub_2", "customer": "cus_2", "metadata": {"user_id": "u2"}}},
        }
        event = provider.parse_webhook({"stripe-signature": "sig"}, b"{}")
        assert event.subscription is None
        assert event.subscription_id == "sub_2"
        assert event.customer_id == "cus_2"
        assert event.metadata == {"user_id": "u2"}

    def test_invoice_nested_subscription(self, provider, stripe_client):
        stripe_client.construct_event.return_value = {
            "id": "evt_3",
            "type": "invoice.payment_failed",
            "data": {"object": {"customer": "cus_3", "parent": {"subscription_details": {"subscription": "sub_3"}}}},
        }
        event = provider.parse_webhook({"stripe-signature": "sig"}, b"{}")
        assert event.subscription_id == "sub_3"

    def test_bad_signature(self, provider, stripe_client):
        stripe_client.construct_event.side_effect = stripe.SignatureVerificationError("bad", "sig")
        with pytest.raises(BillingWebhookError, match="Invalid signature"):
            provider.parse_webhook({"stripe-signature": "sig"}, b"{}")

    def test_bad_payload(self, provider, stripe_client):
        stripe_client.construct_event.side_effect = ValueError("not json")
        with pytest.raises(BillingWebhookError, match="Invalid payload"):
            provider.parse_webhook({"stripe-signature": "sig"}, b"nope")

    def test_missing_header(self, provider):
        with pytest.raises(BillingWebhookError, match="Missing stripe-signature"):
            provider.parse_webhook({}, b"{}")

    def test_missing_secret(self, stripe_client):
        with pytest.raises(BillingWebhookError, match="not configured"):
            StripeProvider("sk_test", None, client=stripe_client).parse_webhook({"stripe-signature": "s"}, b"{}")


class TestClientCalls:
    def test_retrieve_checkout_session_expands_subscription(self, provider, stripe_client):
        stripe_client.checkout.sessions.retrieve.return_value = {
            "id": "cs_1",
            "payment_status": "paid",
            "metadata": {"user_id": "user_alice"},
            "subscription": _subscription(metadata={}),
        }
        state = provider.retrieve_checkout_session("cs_1")

        stripe_client.checkout.sessions.retrieve.assert_called_once_with(
            "cs_1", params={"expand": ["subscription"]}
        )
        assert state.payment_status == "paid"
        assert state.subscription.user_id == "user_alice"

    def test_retrieve_subscription_error(self, provider, stripe_client):
        stripe_client.subscriptions.retrieve.side_effect = stripe.StripeError("boom")
        with pytest.raises(BillingProviderError):
            provider.retrieve_subscription("sub_1")

    def test_create_checkout_session_params(self, provider, stripe_client):
        stripe_client.checkout.sessions.create.return_value = {"url": "https://checkout.stripe.test/cs"}
        url = provider.create_checkout_session(
            "price_pro",
            "https://app/success",
            "https://app/cancel",
            {"user_id": "user_alice", "plan_id": "pro"},
            customer_email="alice@example.com",
            trial_days=7,
        )

        assert url == "https://checkout.stripe.test/cs"
        params = stripe_client.checkout.sessions.create.call_args.kwargs["params"]
        assert params["mode"] == "subscription"
        assert params["line_items"] == [{"price": "price_pro", "quantity": 1}]
        assert params["subscription_data"]["trial_period_days"] == 7
        assert params["subscription_data"]["metadata"]["user_id"] == "user_alice"
        assert params["customer_email"] == "alice@example.com"

    def test_set_cancel_at_period_end(self, provider, stripe_client):
        stripe_client.subscriptions.update.return_value = _subscription(cancel_at_period_end=True)
        obs = provider.set_cancel_at_period_end("sub_1", True)

        stripe_client.subscriptions.update.assert_called_once_with("sub_1", params={"cancel_at_period_end": True})
        assert obs.cancel_at_period_end is True

    def test_create_portal_session(self, provider, stripe_client):
        stripe_client.billing_portal.sessions.create.return_value = {"url": "https://billing.stripe.test/p"}
        assert provider.create_portal_session("cus_1", "https://app/dashboard/billing") == "https://billing.stripe.test/p"
        stripe_client.billing_portal.sessions.create.assert_called_once_with(
            params={"customer": "cus_1", "return_url": "https://app/dashboard/billing"}
        )
