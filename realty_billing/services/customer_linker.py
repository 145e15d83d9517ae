"""
Customer Linker
Maintains the one-to-one mapping between an internal user and a Stripe customer.
"""

import logging

from realty_billing.db.users import RecordStore
from realty_billing.schemas.billing import UserBillingProfile
from realty_billing.services.stripe_client import StripeBillingClient
from realty_billing.utils.exceptions import (
    ProviderUnavailable,
    RecordConflict,
    RecordNotFound,
    Unauthorized,
)

logger = logging.getLogger(__name__)


class CustomerLinker:
    def __init__(self, store: RecordStore, provider: StripeBillingClient):
        self.store = store
        self.provider = provider

    def ensure_customer(self, user: UserBillingProfile) -> str:
        """
        Return the user's Stripe customer id, creating and recording it on first use.

        The id is persisted with a compare-and-set write (only while the column
        is still NULL). A caller that loses the race adopts the committed id and
        removes the customer it created, so a user never maps to two customers.

        Raises:
            ProviderUnavailable: Stripe customer creation failed (nothing persisted)
        """
        if user.external_customer_id:
            logger.debug(f"Using existing Stripe customer {user.external_customer_id}")
            return user.external_customer_id

        logger.info(f"Creating Stripe customer for user {user.user_id}")
        customer_id = self.provider.create_customer(user.user_id, user.email)

        try:
            self.store.update_fields(
                user.user_id,
                {"external_customer_id": customer_id},
                only_if_unset="external_customer_id",
            )
        except RecordNotFound as e:
            raise Unauthorized("User no longer exists") from e
        except RecordConflict:
            return self._adopt_committed_customer(user, customer_id)

        logger.info(f"Linked Stripe customer {customer_id} to user {user.user_id}")
        return customer_id

    def _adopt_committed_customer(self, user: UserBillingProfile, created_id: str) -> str:
        current = self.store.find_by_id(user.user_id)
        winner = current.external_customer_id if current else None
        if not winner:
            # Conflict means the column was set; a NULL here is an unexpected store state
            raise RuntimeError(
                f"Conditional customer link for user {user.user_id} conflicted but no id is recorded"
            )

        if winner == created_id:
            logger.info(f"Stripe customer {winner} was already linked to user {user.user_id}")
            return winner

        logger.warning(
            f"Concurrent customer link for user {user.user_id}: keeping {winner}, discarding {created_id}"
        )
        try:
            self.provider.delete_customer(created_id)
        except ProviderUnavailable as e:
            logger.error(
                f"Orphaned Stripe customer {created_id} for user {user.user_id} "
                f"could not be deleted: {e}. ACTION REQUIRED: delete it in the Stripe dashboard."
            )
        return winner
