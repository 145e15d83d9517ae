"""
Tests for the /api/stripe billing routes and /api/ping

The app is built with an injected service container, so no environment
configuration or network access is needed.
"""

from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from realty_billing.config import Config
from realty_billing.main import create_app
from realty_billing.utils.exceptions import ProviderUnavailable
from tests.helpers.webhooks import make_event, make_invoice, make_subscription, sign_payload

AUTH = {"Authorization": "Bearer token-1"}


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services), raise_server_exceptions=False)


@pytest.fixture
def user_row(fake_supabase):
    return fake_supabase.add_user("user-1")


class TestCheckoutEndpoint:
    def test_requires_session(self, client, user_row):
        response = client.post("/api/stripe/create-checkout-session", json={"tier": "pro"})

        assert response.status_code == 401
        assert response.json() == {"error": "Not authenticated"}

    def test_unknown_token_is_unauthorized(self, client, user_row, provider):
        response = client.post(
            "/api/stripe/create-checkout-session",
            json={"tier": "pro"},
            headers={"Authorization": "Bearer nope"},
        )

        assert response.status_code == 401
        assert provider.checkout_calls == []

    def test_session_without_user_record_is_unauthorized(self, client):
        response = client.post(
            "/api/stripe/create-checkout-session", json={"tier": "pro"}, headers=AUTH
        )

        assert response.status_code == 401

    def test_returns_checkout_url(self, client, user_row, provider):
        response = client.post(
            "/api/stripe/create-checkout-session", json={"tier": "pro"}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json() == {"url": "https://checkout.stripe.com/c/pay/cs_test_1"}
        assert provider.checkout_calls[0]["metadata"] == {"user_id": "user-1", "tier": "pro"}

    @pytest.mark.parametrize("headers,cookies", [
        ({"Authorization": "JWT token-1"}, None),
        ({}, {"payload-token": "token-1"}),
    ])
    def test_cms_token_forms_accepted(self, services, user_row, headers, cookies):
        client = TestClient(create_app(services=services), cookies=cookies)

        response = client.post(
            "/api/stripe/create-checkout-session", json={"tier": "basic"}, headers=headers
        )

        assert response.status_code == 200

    @pytest.mark.parametrize("body", [{"tier": "gold"}, {"tier": "none"}, {}])
    def test_invalid_tier(self, client, user_row, provider, body):
        response = client.post("/api/stripe/create-checkout-session", json=body, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid subscription tier")
        assert provider.customers_created == []

    @pytest.mark.parametrize(
        "kwargs",
        [
            {},
            {"json": {"tier": 5}},
            {"content": b"not json", "headers": {**AUTH, "Content-Type": "application/json"}},
        ],
        ids=["no-body", "non-string-tier", "invalid-json"],
    )
    def test_malformed_body_is_invalid_tier(self, client, user_row, provider, kwargs):
        response = client.post(
            "/api/stripe/create-checkout-session", **{"headers": AUTH, **kwargs}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid subscription tier"}
        assert provider.customers_created == []

    def test_provider_failure_is_500(self, client, user_row, provider):
        def _fail():
            raise ProviderUnavailable("Payment processing error: card network down")

        provider.create_customer_hook = _fail

        response = client.post(
            "/api/stripe/create-checkout-session", json={"tier": "pro"}, headers=AUTH
        )

        assert response.status_code == 500
        assert response.json() == {"error": "Payment processing error: card network down"}

    def test_record_store_failure_is_503(self, client, fake_supabase, user_row):
        fake_supabase.fail_on("users", "update", httpx.ReadTimeout("timed out"))

        response = client.post(
            "/api/stripe/create-checkout-session", json={"tier": "pro"}, headers=AUTH
        )

        assert response.status_code == 503
        assert "error" in response.json()


class TestBillingPortalEndpoint:
    def test_requires_session(self, client, user_row):
        response = client.post("/api/stripe/create-billing-portal")

        assert response.status_code == 401

    def test_without_customer(self, client, user_row, provider):
        response = client.post("/api/stripe/create-billing-portal", headers=AUTH)

        assert response.status_code == 400
        assert response.json() == {"error": "No Stripe customer ID found. Please subscribe first."}
        assert provider.portal_calls == []

    def test_returns_portal_url(self, client, fake_supabase, provider):
        fake_supabase.add_user("user-1", stripe_customer_id="cus_7")

        response = client.post("/api/stripe/create-billing-portal", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["url"].startswith("https://billing.stripe.com/")
        assert provider.portal_calls[0]["customer_id"] == "cus_7"


class TestWebhookEndpoint:
    def _post(self, client, body, signature):
        headers = {"Content-Type": "application/json"}
        if signature is not None:
            headers["stripe-signature"] = signature
        return client.post("/api/stripe/webhooks", content=body, headers=headers)

    def test_applies_subscription(self, client, fake_supabase):
        fake_supabase.add_user("user-1", stripe_customer_id="cus_1")
        body = make_event("customer.subscription.created", make_subscription(), "evt_1")

        response = self._post(client, body, sign_payload(body))

        assert response.status_code == 200
        payload = response.json()
        assert payload["received"] is True
        assert payload["event_id"] == "evt_1"
        assert payload["action"] == "applied"
        assert fake_supabase.user_row("user-1")["subscription_tier"] == "pro"

    def test_bad_signature_is_400(self, client, fake_supabase):
        fake_supabase.add_user("user-1", stripe_customer_id="cus_1")
        body = make_event("customer.subscription.created", make_subscription())

        response = self._post(client, body, sign_payload(body, secret="whsec_other"))

        assert response.status_code == 400
        assert "error" in response.json()
        assert fake_supabase.user_writes() == []

    def test_missing_signature_is_400(self, client):
        body = make_event("customer.subscription.created", make_subscription())

        response = self._post(client, body, None)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing stripe-signature header"}

    def test_unknown_customer_is_acknowledged(self, client, fake_supabase):
        body = make_event("invoice.payment_failed", make_invoice(customer="cus_ghost"))

        response = self._post(client, body, sign_payload(body))

        assert response.status_code == 200
        assert response.json()["action"] == "unresolved"

    def test_store_outage_is_503(self, client, fake_supabase):
        fake_supabase.add_user("user-1", stripe_customer_id="cus_1")
        fake_supabase.fail_on("users", "update", httpx.ReadTimeout("timed out"))
        body = make_event("customer.subscription.created", make_subscription())

        response = self._post(client, body, sign_payload(body))

        assert response.status_code == 503

    def test_unexpected_error_is_generic_500(self, client, services):
        body = make_event("customer.subscription.created", make_subscription())

        with patch.object(services.reconciler, "handle_event", side_effect=KeyError("boom")):
            response = self._post(client, body, sign_payload(body))

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestCheckoutToCancellation:
    """Full lifecycle: checkout, subscription webhooks, stale invoice after deletion"""

    def test_lifecycle(self, client, fake_supabase, user_row):
        response = client.post(
            "/api/stripe/create-checkout-session", json={"tier": "pro"}, headers=AUTH
        )
        assert response.status_code == 200
        assert fake_supabase.user_row("user-1")["stripe_customer_id"] == "cus_1"
        assert fake_supabase.user_row("user-1")["subscription_tier"] == "none"

        def post_event(event_type, obj, event_id):
            body = make_event(event_type, obj, event_id)
            return client.post(
                "/api/stripe/webhooks",
                content=body,
                headers={"stripe-signature": sign_payload(body)},
            )

        post_event("customer.subscription.created", make_subscription(), "evt_1")
        for _ in range(3):
            post_event("customer.subscription.updated", make_subscription(), "evt_2")
        row = fake_supabase.user_row("user-1")
        assert (row["subscription_tier"], row["subscription_status"]) == ("pro", "active")

        post_event("customer.subscription.deleted", make_subscription(status="canceled"), "evt_3")
        stale = post_event("invoice.payment_succeeded", make_invoice(), "evt_4")

        assert stale.json()["action"] == "ignored"
        row = fake_supabase.user_row("user-1")
        assert row["subscription_tier"] == "none"
        assert row["subscription_status"] == "canceled"
        assert row["stripe_subscription_id"] is None

        portal = client.post("/api/stripe/create-billing-portal", headers=AUTH)
        assert portal.status_code == 200


@pytest.mark.smoke
def test_ping(client):
    response = client.get("/api/ping")

    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["service"] == Config.SERVICE_NAME
    assert "timestamp" in payload
