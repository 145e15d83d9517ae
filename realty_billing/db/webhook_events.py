#!/usr/bin/env python3
"""
Webhook Event Ledger
Keeps the ids of Stripe events that were applied to a user record, so a
redelivery can be acknowledged without another write.

Applying an event is already idempotent (absolute values only), which makes
the ledger a shortcut and an audit trail. Its failures are logged and reported
as "not seen" / "not recorded"; they never fail a webhook.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from supabase import Client

from realty_billing.config.supabase_config import execute_with_retry

logger = logging.getLogger(__name__)

EVENTS_TABLE = "stripe_webhook_events"


class WebhookEventLedger:
    """Supabase-backed record of applied webhook events."""

    # Shared across instances: one hint per process is enough
    _table_hint_logged = False

    def __init__(self, client: Client | None = None):
        self._client = client

    def _run(self, query: Callable[[Client], Any], name: str):
        if self._client is not None:
            return query(self._client)
        return execute_with_retry(query, operation_name=name)

    def _report_failure(self, action: str, error: Exception) -> None:
        text = str(error)
        if not WebhookEventLedger._table_hint_logged and (
            EVENTS_TABLE in text or "PGRST205" in text
        ):
            # Schema cache miss or migration not applied
            logger.warning(
                f"{EVENTS_TABLE} table is unavailable in Supabase; apply the billing "
                "migration. Redeliveries will be re-applied until then."
            )
            WebhookEventLedger._table_hint_logged = True
        logger.error(f"Webhook ledger could not {action}: {error}", exc_info=True)

    def is_event_processed(self, event_id: str) -> bool:
        """
        Whether ``event_id`` was applied before.

        A lookup failure answers False, so the event is applied again.
        """
        try:
            result = self._run(
                lambda client: client.table(EVENTS_TABLE)
                .select("event_id")
                .eq("event_id", event_id)
                .limit(1)
                .execute(),
                "is_event_processed",
            )
        except Exception as e:
            self._report_failure(f"look up {event_id}", e)
            return False
        return bool(result.data)

    def record_processed_event(
        self,
        event_id: str,
        event_type: str,
        user_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Store an applied event.

        Args:
            event_id: Stripe event id (evt_...)
            event_type: e.g. ``customer.subscription.updated``
            user_id: User the event was applied to
            metadata: Extra context kept for support lookups

        Returns:
            Whether the row was written
        """
        row = {
            "event_id": event_id,
            "event_type": event_type,
            "user_id": user_id,
            "metadata": metadata or {},
            "processed_at": datetime.now(UTC).isoformat(),
        }
        try:
            result = self._run(
                lambda client: client.table(EVENTS_TABLE).insert(row).execute(),
                "record_processed_event",
            )
        except Exception as e:
            self._report_failure(f"record {event_id}", e)
            return False

        if not result.data:
            logger.error(f"Webhook ledger insert for {event_id} returned no row")
            return False
        logger.debug(f"Ledger recorded {event_type} {event_id}")
        return True
