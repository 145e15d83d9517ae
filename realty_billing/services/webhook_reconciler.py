#!/usr/bin/env python3
"""
Webhook Reconciler
Applies verified Stripe events to the billing fields of the owning user.

Stripe may deliver events late, twice, or out of order. Every transition here
writes absolute values taken from the event payload (never increments), so
re-applying an event converges to the same profile. The deliberate exception
to plain last-write-wins is the terminal ``canceled`` state: events that refer
to a subscription the profile no longer tracks are acknowledged and ignored.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from realty_billing.db.users import RecordStore
from realty_billing.db.webhook_events import WebhookEventLedger
from realty_billing.schemas.billing import (
    PAID_TIERS,
    SubscriptionStatus,
    SubscriptionTier,
    UserBillingProfile,
    WebhookAction,
    WebhookProcessingResult,
)
from realty_billing.services.stripe_client import StripeBillingClient
from realty_billing.utils.exceptions import InvalidSignature, RecordNotFound
from realty_billing.utils.stripe_objects import (
    coerce_to_bool,
    coerce_to_int,
    get_id,
    get_path,
    get_value,
    metadata_to_dict,
)

logger = logging.getLogger(__name__)

# Stripe subscription statuses that have no local counterpart
_PROVIDER_STATUS_ALIASES = {
    "incomplete": SubscriptionStatus.INACTIVE,
    "paused": SubscriptionStatus.INACTIVE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}

INVOICE_STATUS_EVENTS = {
    "invoice.payment_failed": SubscriptionStatus.PAST_DUE,
    "invoice.payment_succeeded": SubscriptionStatus.ACTIVE,
    "invoice.paid": SubscriptionStatus.ACTIVE,
}


@dataclass
class _Outcome:
    action: WebhookAction
    message: str
    user_id: str | None = None


def normalize_status(raw: Any) -> SubscriptionStatus | None:
    """Map a Stripe subscription status onto the local status set."""
    if not isinstance(raw, str):
        return None
    try:
        return SubscriptionStatus(raw)
    except ValueError:
        return _PROVIDER_STATUS_ALIASES.get(raw)


def tier_from_metadata(metadata: dict[str, Any]) -> SubscriptionTier | None:
    """Return the paid tier recorded at checkout, or None when absent or unusable."""
    raw = metadata.get("tier")
    if not raw:
        return None
    try:
        tier = SubscriptionTier(str(raw).strip().lower())
    except ValueError:
        logger.warning(f"Ignoring unknown tier {raw!r} in subscription metadata")
        return None
    return tier if tier in PAID_TIERS else None


def subscription_period_end(subscription: Any) -> int | None:
    """
    Read ``current_period_end`` from a subscription.

    Newer Stripe API versions report the period on each subscription item
    instead of the subscription, so fall back to the first item.
    """
    period_end = coerce_to_int(get_value(subscription, "current_period_end"))
    if period_end is not None:
        return period_end

    items = get_path(subscription, "items", "data")
    if items:
        return coerce_to_int(get_value(items[0], "current_period_end"))
    return None


def invoice_subscription_id(invoice: Any) -> str | None:
    """Subscription an invoice belongs to, across old and new invoice shapes."""
    subscription = get_id(get_value(invoice, "subscription"))
    if subscription:
        return subscription
    return get_id(get_path(invoice, "parent", "subscription_details", "subscription"))


class WebhookReconciler:
    """Verifies, classifies and applies Stripe webhook events."""

    def __init__(
        self,
        provider: StripeBillingClient,
        store: RecordStore,
        ledger: WebhookEventLedger | None = None,
        webhook_secret: str | None = None,
    ):
        self.provider = provider
        self.store = store
        self.ledger = ledger
        self.webhook_secret = webhook_secret

        self._handlers = {
            "customer.created": self._handle_customer_created,
            "customer.subscription.created": self._handle_subscription_created,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
        }
        for event_type in INVOICE_STATUS_EVENTS:
            self._handlers[event_type] = self._handle_invoice

    def handle_event(self, raw_body: bytes, signature: str | None) -> WebhookProcessingResult:
        """
        Authenticate and apply one webhook delivery.

        Returns a successful result whenever the event was authentic, whether
        it was applied, ignored, or could not be matched to a user.

        Raises:
            InvalidSignature: Authentication failed; nothing was parsed or written
            RecordStoreUnavailable: The profile write failed; Stripe should retry
        """
        try:
            event = self.provider.verify_and_parse_event(raw_body, signature, self.webhook_secret)
        except InvalidSignature as e:
            logger.warning(f"Rejected webhook (possible forgery): {e}")
            raise

        ledger_key = get_value(event, "id")
        event_id = ledger_key or "unknown"
        event_type = get_value(event, "type") or "unknown"
        logger.info(
            f"Processing webhook: {event_type} (ID: {event_id})",
            extra={"event_id": event_id, "event_type": event_type},
        )

        # Events without an id cannot be deduplicated and are never recorded
        if ledger_key and self.ledger is not None and self.ledger.is_event_processed(ledger_key):
            logger.warning(f"Duplicate webhook event detected, skipping: {event_id}")
            return self._result(
                event_id,
                event_type,
                _Outcome(WebhookAction.DUPLICATE, f"Event {event_id} already processed (duplicate)"),
            )

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled event type: {event_type}")
            outcome = _Outcome(WebhookAction.IGNORED, f"Unhandled event type: {event_type}")
        else:
            outcome = handler(event_type, get_path(event, "data", "object"))

        if ledger_key and outcome.action is WebhookAction.APPLIED and self.ledger is not None:
            self.ledger.record_processed_event(
                event_id=ledger_key,
                event_type=event_type,
                user_id=outcome.user_id,
                metadata={"stripe_account": get_value(event, "account")},
            )

        return self._result(event_id, event_type, outcome)

    @staticmethod
    def _result(event_id: str, event_type: str, outcome: _Outcome) -> WebhookProcessingResult:
        return WebhookProcessingResult(
            success=True,
            event_type=event_type,
            event_id=event_id,
            action=outcome.action,
            message=outcome.message,
            user_id=outcome.user_id,
            processed_at=datetime.now(UTC),
        )

    # ==================== Target resolution ====================

    def _resolve_user(self, customer_ref: Any, event_type: str) -> UserBillingProfile | None:
        customer_id = get_id(customer_ref)
        if not customer_id:
            logger.warning(f"{event_type} carries no customer reference")
            return None

        user = self.store.find_by_external_customer_id(customer_id)
        if user is None:
            # Expected for dashboard test events and replays against other environments
            logger.warning(
                f"No user found with stripe_customer_id={customer_id} for {event_type}",
                extra={"customer_id": customer_id, "event_type": event_type},
            )
        return user

    def _apply(self, user: UserBillingProfile, fields: dict[str, Any], event_type: str) -> _Outcome:
        try:
            self.store.update_fields(user.user_id, fields)
        except RecordNotFound:
            logger.warning(f"User {user.user_id} disappeared before {event_type} could be applied")
            return _Outcome(WebhookAction.UNRESOLVED, f"User {user.user_id} no longer exists")

        logger.info(
            f"Applied {event_type} to user {user.user_id}: {sorted(fields)}",
            extra={"user_id": user.user_id, "event_type": event_type},
        )
        return _Outcome(WebhookAction.APPLIED, f"Event {event_type} applied", user.user_id)

    @staticmethod
    def _unresolved(event_type: str, customer_ref: Any) -> _Outcome:
        return _Outcome(
            WebhookAction.UNRESOLVED,
            f"No user for customer {get_id(customer_ref)} ({event_type}); acknowledged",
        )

    # ==================== Handlers ====================

    def _handle_customer_created(self, event_type: str, customer: Any) -> _Outcome:
        # The link was already recorded when the customer was created at checkout
        logger.info(f"Customer created: {get_value(customer, 'id')}")
        return _Outcome(WebhookAction.IGNORED, "Customer created (informational)")

    def _subscription_fields(self, subscription: Any) -> dict[str, Any] | None:
        raw_status = get_value(subscription, "status")
        status = normalize_status(raw_status)
        if status is None:
            logger.warning(
                f"Unrecognized status {raw_status!r} on subscription {get_value(subscription, 'id')}"
            )
            return None

        fields: dict[str, Any] = {
            "external_subscription_id": get_value(subscription, "id"),
            "subscription_status": status,
            "current_period_end": subscription_period_end(subscription),
            "cancel_at_period_end": coerce_to_bool(get_value(subscription, "cancel_at_period_end")),
        }

        # Renewals may arrive without checkout metadata; keep the current tier then
        tier = tier_from_metadata(metadata_to_dict(get_value(subscription, "metadata")))
        if tier is not None:
            fields["subscription_tier"] = tier
        return fields

    def _handle_subscription_created(self, event_type: str, subscription: Any) -> _Outcome:
        customer_ref = get_value(subscription, "customer")
        user = self._resolve_user(customer_ref, event_type)
        if user is None:
            return self._unresolved(event_type, customer_ref)

        fields = self._subscription_fields(subscription)
        if fields is None:
            return _Outcome(
                WebhookAction.IGNORED, "Unrecognized subscription status", user.user_id
            )

        # A new subscription always starts a new cycle, including after cancellation
        return self._apply(user, fields, event_type)

    def _handle_subscription_updated(self, event_type: str, subscription: Any) -> _Outcome:
        customer_ref = get_value(subscription, "customer")
        user = self._resolve_user(customer_ref, event_type)
        if user is None:
            return self._unresolved(event_type, customer_ref)

        subscription_id = get_value(subscription, "id")
        tracked = user.external_subscription_id
        if tracked and tracked != subscription_id:
            logger.info(
                f"Ignoring {event_type} for {subscription_id}: user {user.user_id} tracks {tracked}"
            )
            return _Outcome(
                WebhookAction.IGNORED, "Update for a subscription the user no longer tracks", user.user_id
            )
        if not tracked and user.subscription_status is SubscriptionStatus.CANCELED:
            logger.info(
                f"Ignoring late {event_type} for {subscription_id}: user {user.user_id} is canceled"
            )
            return _Outcome(
                WebhookAction.IGNORED, "Update after cancellation", user.user_id
            )

        fields = self._subscription_fields(subscription)
        if fields is None:
            return _Outcome(
                WebhookAction.IGNORED, "Unrecognized subscription status", user.user_id
            )
        return self._apply(user, fields, event_type)

    def _handle_subscription_deleted(self, event_type: str, subscription: Any) -> _Outcome:
        customer_ref = get_value(subscription, "customer")
        user = self._resolve_user(customer_ref, event_type)
        if user is None:
            return self._unresolved(event_type, customer_ref)

        subscription_id = get_value(subscription, "id")
        tracked = user.external_subscription_id
        if tracked and tracked != subscription_id:
            logger.info(
                f"Ignoring {event_type} for {subscription_id}: user {user.user_id} tracks {tracked}"
            )
            return _Outcome(
                WebhookAction.IGNORED, "Deletion of a subscription the user no longer tracks", user.user_id
            )

        fields = {
            "subscription_status": SubscriptionStatus.CANCELED,
            "subscription_tier": SubscriptionTier.NONE,
            "external_subscription_id": None,
            "current_period_end": None,
        }
        return self._apply(user, fields, event_type)

    def _handle_invoice(self, event_type: str, invoice: Any) -> _Outcome:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            logger.info(f"Invoice {get_value(invoice, 'id')} is not for a subscription, skipping")
            return _Outcome(WebhookAction.IGNORED, "Invoice is not for a subscription")

        customer_ref = get_value(invoice, "customer")
        user = self._resolve_user(customer_ref, event_type)
        if user is None:
            return self._unresolved(event_type, customer_ref)

        if user.external_subscription_id != subscription_id:
            # Covers invoices that trail a deletion: the profile has no open subscription
            logger.info(
                f"Ignoring {event_type} for {subscription_id}: user {user.user_id} tracks "
                f"{user.external_subscription_id}"
            )
            return _Outcome(
                WebhookAction.IGNORED, "Invoice for a subscription the user no longer tracks", user.user_id
            )

        return self._apply(user, {"subscription_status": INVOICE_STATUS_EVENTS[event_type]}, event_type)
