"""
Sentry reporting helpers for billing failures.

Each helper opens an isolated scope, attaches the operation and Stripe or
table identifiers, and captures the exception. Without an initialised Sentry
client the SDK drops the event, so callers never need to check.
"""

import logging
from typing import Any

import sentry_sdk

logger = logging.getLogger(__name__)


def capture_error(
    exception: Exception,
    context_type: str | None = None,
    context_data: dict[str, Any] | None = None,
    tags: dict[str, str] | None = None,
) -> str | None:
    """
    Send ``exception`` to Sentry.

    Args:
        exception: Error to report
        context_type: Name of the context block (``payment``, ``database``)
        context_data: Fields shown in that block
        tags: Searchable tags

    Returns:
        The Sentry event id, or None when nothing was sent
    """
    try:
        with sentry_sdk.new_scope() as scope:
            if context_type and context_data:
                scope.set_context(context_type, context_data)
            for key, value in (tags or {}).items():
                scope.set_tag(key, str(value))
            return sentry_sdk.capture_exception(exception)
    except Exception as e:
        logger.warning(f"Sentry capture failed for {type(exception).__name__}: {e}")
        return None


def capture_payment_error(
    exception: Exception,
    operation: str,
    provider: str = "stripe",
    user_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> str | None:
    """
    Report a failed Stripe call.

    ``operation`` names the call (``create_customer``, ``checkout_session``,
    ``billing_portal``, ``delete_customer``); ``details`` usually carries the
    customer id and tier.
    """
    context = {"operation": operation, "provider": provider}
    if user_id:
        context["user_id"] = user_id
    context.update(details or {})

    return capture_error(
        exception,
        context_type="payment",
        context_data=context,
        tags={"operation": operation, "provider": provider},
    )


def capture_database_error(
    exception: Exception,
    operation: str,
    table: str,
    details: dict[str, Any] | None = None,
) -> str | None:
    """Report a failed record-store query."""
    context = {"operation": operation, "table": table, **(details or {})}
    return capture_error(
        exception,
        context_type="database",
        context_data=context,
        tags={"operation": operation, "table": table},
    )
