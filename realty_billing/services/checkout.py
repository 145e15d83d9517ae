"""
Checkout Orchestrator
Builds the hosted Stripe Checkout redirect for a subscription purchase.
"""

import logging

from realty_billing.schemas.billing import PAID_TIERS, SubscriptionTier, UserBillingProfile
from realty_billing.services.customer_linker import CustomerLinker
from realty_billing.services.stripe_client import StripeBillingClient
from realty_billing.utils.exceptions import InvalidTier, Unauthorized

logger = logging.getLogger(__name__)


class CheckoutOrchestrator:
    def __init__(
        self,
        linker: CustomerLinker,
        provider: StripeBillingClient,
        price_map: dict[str, str],
        public_website_url: str,
    ):
        self.linker = linker
        self.provider = provider
        self.price_map = dict(price_map)
        self.public_website_url = public_website_url.rstrip("/")

    def resolve_price(self, tier: str | None) -> tuple[SubscriptionTier, str]:
        """Validate a requested tier and return it with its Stripe price id."""
        try:
            parsed = SubscriptionTier(tier)
        except ValueError:
            raise InvalidTier(tier) from None

        if parsed not in PAID_TIERS:
            raise InvalidTier(tier)

        price_ref = self.price_map.get(parsed.value)
        if not price_ref:
            logger.error(f"No Stripe price configured for tier {parsed.value!r}")
            raise InvalidTier(tier)
        return parsed, price_ref

    def create_checkout(self, user: UserBillingProfile | None, tier: str | None) -> str:
        """
        Create a subscription checkout for ``tier`` and return the hosted URL.

        The user record is not marked as subscribed here; that only happens
        when Stripe confirms the subscription through a webhook.

        Raises:
            Unauthorized: No authenticated user
            InvalidTier: Unknown or unpriced tier (never sent to Stripe)
            ProviderUnavailable: Stripe call failed
        """
        if user is None:
            raise Unauthorized()

        parsed_tier, price_ref = self.resolve_price(tier)
        logger.info(f"Creating checkout session for user {user.user_id}, tier: {parsed_tier.value}")

        customer_id = self.linker.ensure_customer(user)

        # The subscription webhooks recover the purchased tier from this metadata
        metadata = {"user_id": user.user_id, "tier": parsed_tier.value}

        return self.provider.create_checkout_session(
            customer_id=customer_id,
            price_ref=price_ref,
            metadata=metadata,
            success_url=f"{self.public_website_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.public_website_url}/billing/cancel",
        )
