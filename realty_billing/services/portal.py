"""
Portal Orchestrator
Builds the hosted Stripe billing-portal redirect for an existing customer.
"""

import logging

from realty_billing.schemas.billing import UserBillingProfile
from realty_billing.services.stripe_client import StripeBillingClient
from realty_billing.utils.exceptions import NoBillingAccount, Unauthorized

logger = logging.getLogger(__name__)


class PortalOrchestrator:
    def __init__(self, provider: StripeBillingClient, public_website_url: str):
        self.provider = provider
        self.public_website_url = public_website_url.rstrip("/")

    def create_portal_session(self, user: UserBillingProfile | None) -> str:
        if user is None:
            raise Unauthorized()
        if not user.external_customer_id:
            raise NoBillingAccount()

        logger.info(f"Creating billing portal session for user {user.user_id}")
        return self.provider.create_portal_session(
            customer_id=user.external_customer_id,
            return_url=f"{self.public_website_url}/billing",
        )
