#!/usr/bin/env python3
"""
User Billing Record Store
Reads and writes the billing columns of the Supabase ``users`` table
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from realty_billing.config.supabase_config import execute_with_retry
from realty_billing.schemas.billing import SubscriptionStatus, SubscriptionTier, UserBillingProfile
from realty_billing.utils.exceptions import RecordConflict, RecordNotFound, RecordStoreUnavailable
from realty_billing.utils.sentry_context import capture_database_error

logger = logging.getLogger(__name__)

USERS_TABLE = "users"

# UserBillingProfile field -> users column
FIELD_COLUMNS: dict[str, str] = {
    "user_id": "id",
    "email": "email",
    "external_customer_id": "stripe_customer_id",
    "external_subscription_id": "stripe_subscription_id",
    "subscription_tier": "subscription_tier",
    "subscription_status": "subscription_status",
    "current_period_end": "subscription_current_period_end",
    "cancel_at_period_end": "subscription_cancel_at_period_end",
}

_SELECT_COLUMNS = ",".join(FIELD_COLUMNS.values())


class RecordStore(Protocol):
    """Record store operations the billing flows depend on."""

    def find_by_id(self, user_id: str) -> UserBillingProfile | None: ...

    def find_by_external_customer_id(self, customer_id: str) -> UserBillingProfile | None: ...

    def update_fields(
        self,
        user_id: str,
        fields: dict[str, Any],
        *,
        only_if_unset: str | None = None,
    ) -> UserBillingProfile: ...


def profile_from_row(row: dict[str, Any]) -> UserBillingProfile:
    """Build a UserBillingProfile from a users row, tolerating unexpected enum values."""
    tier_raw = row.get("subscription_tier") or SubscriptionTier.NONE.value
    status_raw = row.get("subscription_status") or SubscriptionStatus.INACTIVE.value

    try:
        tier = SubscriptionTier(tier_raw)
    except ValueError:
        logger.warning(f"Unknown subscription_tier {tier_raw!r} for user {row.get('id')}, using 'none'")
        tier = SubscriptionTier.NONE

    try:
        status = SubscriptionStatus(status_raw)
    except ValueError:
        logger.warning(
            f"Unknown subscription_status {status_raw!r} for user {row.get('id')}, using 'inactive'"
        )
        status = SubscriptionStatus.INACTIVE

    return UserBillingProfile(
        user_id=str(row["id"]),
        email=row.get("email"),
        external_customer_id=row.get("stripe_customer_id"),
        external_subscription_id=row.get("stripe_subscription_id"),
        subscription_tier=tier,
        subscription_status=status,
        current_period_end=row.get("subscription_current_period_end"),
        cancel_at_period_end=bool(row.get("subscription_cancel_at_period_end")),
    )


def fields_to_columns(fields: dict[str, Any]) -> dict[str, Any]:
    """Translate profile field names to column names, unwrapping enums."""
    columns: dict[str, Any] = {}
    for field, value in fields.items():
        if field == "user_id" or field not in FIELD_COLUMNS:
            raise ValueError(f"Field {field!r} is not an updatable billing field")
        if isinstance(value, SubscriptionTier | SubscriptionStatus):
            value = value.value
        columns[FIELD_COLUMNS[field]] = value
    return columns


class SupabaseUserStore:
    """RecordStore backed by the Supabase ``users`` table."""

    def __init__(self, client: Client | None = None):
        # An explicit client skips the shared lazily-initialised one (tests, scripts)
        self._client = client

    def _execute(self, operation: Callable[[Client], Any], operation_name: str, user_ref: str):
        try:
            if self._client is not None:
                return operation(self._client)
            return execute_with_retry(operation, operation_name=operation_name)
        except (APIError, httpx.HTTPError, RuntimeError) as e:
            logger.error(f"Record store {operation_name} failed for {user_ref}: {e}", exc_info=True)
            capture_database_error(
                e, operation=operation_name, table=USERS_TABLE, details={"ref": user_ref}
            )
            raise RecordStoreUnavailable(f"Record store {operation_name} failed") from e

    def find_by_id(self, user_id: str) -> UserBillingProfile | None:
        def _find(client):
            return (
                client.table(USERS_TABLE)
                .select(_SELECT_COLUMNS)
                .eq("id", user_id)
                .limit(1)
                .execute()
            )

        result = self._execute(_find, "find_by_id", user_id)
        if not result.data:
            return None
        return profile_from_row(result.data[0])

    def find_by_external_customer_id(self, customer_id: str) -> UserBillingProfile | None:
        if not customer_id:
            return None

        def _find(client):
            return (
                client.table(USERS_TABLE)
                .select(_SELECT_COLUMNS)
                .eq("stripe_customer_id", customer_id)
                .limit(2)
                .execute()
            )

        result = self._execute(_find, "find_by_external_customer_id", customer_id)
        if not result.data:
            return None
        if len(result.data) > 1:
            # Dual mapping is a correctness bug upstream; surface it loudly but stay deterministic
            logger.error(
                f"Multiple users mapped to stripe_customer_id={customer_id}; using the first match"
            )
        return profile_from_row(result.data[0])

    def update_fields(
        self,
        user_id: str,
        fields: dict[str, Any],
        *,
        only_if_unset: str | None = None,
    ) -> UserBillingProfile:
        """
        Overwrite billing fields for a user in a single statement.

        Args:
            user_id: Internal user id
            fields: Profile field names mapped to their new values
            only_if_unset: Profile field that must still be NULL for the write to
                apply (compare-and-set); a lost race raises RecordConflict

        Returns:
            The updated profile

        Raises:
            RecordNotFound: No user with this id
            RecordConflict: ``only_if_unset`` field was already set
            RecordStoreUnavailable: Transport or database failure
        """
        row = fields_to_columns(fields)
        row["updated_at"] = datetime.now(UTC).isoformat()
        guard_column = FIELD_COLUMNS[only_if_unset] if only_if_unset else None

        def _update(client):
            query = client.table(USERS_TABLE).update(row).eq("id", user_id)
            if guard_column:
                query = query.is_(guard_column, "null")
            return query.execute()

        result = self._execute(_update, "update_fields", user_id)
        if result.data:
            return profile_from_row(result.data[0])

        # Nothing matched: either the user is gone or the guard rejected the write
        if self.find_by_id(user_id) is None:
            raise RecordNotFound(user_id)
        if only_if_unset:
            raise RecordConflict(user_id, only_if_unset)
        raise RecordStoreUnavailable(f"Update for user {user_id} matched no rows")
