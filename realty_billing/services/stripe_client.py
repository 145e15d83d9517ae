#!/usr/bin/env python3
"""
Stripe Billing Client
Thin wrapper over the Stripe API used by the billing flows.

One instance is built at process start and passed to the orchestrators and
the webhook reconciler; nothing here touches the module-level ``stripe.api_key``.
"""

import logging
from typing import Any

import stripe

from realty_billing.utils.exceptions import InvalidSignature, ProviderUnavailable
from realty_billing.utils.sentry_context import capture_payment_error

logger = logging.getLogger(__name__)


class StripeBillingClient:
    """Creates customers and hosted sessions, and verifies webhook payloads."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str | None = None,
        *,
        timeout: float = 10.0,
        max_network_retries: int = 2,
        client: stripe.StripeClient | None = None,
    ):
        if not api_key and client is None:
            raise ValueError("STRIPE_SECRET_KEY is required to build the Stripe client")

        if not webhook_secret:
            logger.warning(
                "STRIPE_WEBHOOK_SECRET not configured - webhook signature validation will fail"
            )

        self.webhook_secret = webhook_secret
        self._stripe = client or stripe.StripeClient(
            api_key,
            http_client=stripe.RequestsClient(timeout=timeout),
            max_network_retries=max_network_retries,
        )

        logger.info("Stripe billing client initialized (timeout=%ss)", timeout)

    # ==================== Customers ====================

    def create_customer(self, user_id: str, email: str | None) -> str:
        """
        Create a Stripe customer tagged with the internal user id.

        The idempotency key makes concurrent first checkouts for one user
        resolve to the same customer while Stripe still remembers the key.
        """
        params: dict[str, Any] = {"metadata": {"user_id": str(user_id)}}
        if email:
            params["email"] = email

        try:
            customer = self._stripe.v1.customers.create(
                params=params,
                options={"idempotency_key": f"customer-create-{user_id}"},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating customer for user {user_id}: {e}")
            capture_payment_error(e, operation="create_customer", user_id=str(user_id))
            raise ProviderUnavailable(f"Payment processing error: {e.user_message or e}") from e

        logger.info(f"Stripe customer created: {customer.id} for user {user_id}")
        return customer.id

    def delete_customer(self, customer_id: str) -> None:
        try:
            self._stripe.v1.customers.delete(customer_id)
        except stripe.StripeError as e:
            capture_payment_error(
                e, operation="delete_customer", details={"customer_id": customer_id}
            )
            raise ProviderUnavailable(f"Payment processing error: {e.user_message or e}") from e
        logger.info(f"Stripe customer deleted: {customer_id}")

    # ==================== Hosted sessions ====================

    def create_checkout_session(
        self,
        customer_id: str,
        price_ref: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> str:
        """
        Create a subscription-mode Checkout Session and return its hosted URL.

        ``metadata`` is written to the session and to the subscription it
        creates, so ``customer.subscription.*`` events carry it back.
        """
        params = {
            "mode": "subscription",
            "customer": customer_id,
            "line_items": [{"price": price_ref, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata),
            "subscription_data": {"metadata": dict(metadata)},
        }
        if metadata.get("user_id"):
            params["client_reference_id"] = metadata["user_id"]

        try:
            session = self._stripe.v1.checkout.sessions.create(params=params)
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating checkout session for {customer_id}: {e}")
            capture_payment_error(
                e,
                operation="checkout_session",
                user_id=metadata.get("user_id"),
                details={"customer_id": customer_id, "tier": metadata.get("tier")},
            )
            raise ProviderUnavailable(f"Payment processing error: {e.user_message or e}") from e

        logger.info(f"Checkout session created: {session.id} for customer {customer_id}")
        return session.url

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            session = self._stripe.v1.billing_portal.sessions.create(
                params={"customer": customer_id, "return_url": return_url}
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating billing portal session for {customer_id}: {e}")
            capture_payment_error(
                e, operation="billing_portal", details={"customer_id": customer_id}
            )
            raise ProviderUnavailable(f"Payment processing error: {e.user_message or e}") from e

        logger.info(f"Billing portal session created: {session.id} for customer {customer_id}")
        return session.url

    # ==================== Webhooks ====================

    def verify_and_parse_event(
        self, raw_body: bytes, signature: str | None, secret: str | None = None
    ) -> stripe.Event:
        """
        Verify the ``stripe-signature`` header over the raw body, then parse it.

        Stripe checks the HMAC (constant-time) and timestamp tolerance before
        the payload is decoded, so a forged body is never interpreted.

        Raises:
            InvalidSignature: Missing secret or header, bad signature, or
                a verified body that is not a valid event
        """
        secret = secret or self.webhook_secret
        if not secret:
            logger.error("Webhook secret not configured - rejecting webhook")
            raise InvalidSignature("Webhook secret not configured")
        if not signature:
            raise InvalidSignature("Missing stripe-signature header")

        try:
            return self._stripe.construct_event(raw_body, signature, secret)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(f"Webhook error: {e.user_message or e}") from e
        except ValueError as e:
            raise InvalidSignature(f"Webhook error: invalid payload ({e})") from e
