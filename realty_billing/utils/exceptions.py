"""
Billing error taxonomy.

Every error the billing flows surface to a caller derives from BillingError,
which carries the HTTP status the API layer renders and whether the failure
is transient (safe for the caller or Stripe to retry).

Usage:
    from realty_billing.utils.exceptions import InvalidTier

    raise InvalidTier("gold")
"""


class BillingError(Exception):
    """Base class for errors rendered as ``{"error": message}``."""

    status_code: int = 500
    retryable: bool = False
    default_message: str = "Billing error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(BillingError):
    status_code = 401
    default_message = "Not authenticated"


class InvalidTier(BillingError):
    status_code = 400
    default_message = "Invalid subscription tier"

    def __init__(self, tier: str | None = None):
        self.tier = tier
        super().__init__(self.default_message if tier is None else f"{self.default_message}: {tier!r}")


class NoBillingAccount(BillingError):
    status_code = 400
    default_message = "No Stripe customer ID found. Please subscribe first."


class InvalidSignature(BillingError):
    status_code = 400
    default_message = "Webhook signature verification failed"


class ProviderUnavailable(BillingError):
    status_code = 500
    retryable = True
    default_message = "Payment provider unavailable, please try again"


class RecordStoreUnavailable(BillingError):
    status_code = 503
    retryable = True
    default_message = "Record store unavailable"


class RecordStoreError(Exception):
    """Base for record-store outcomes the store reports to its callers."""


class RecordNotFound(RecordStoreError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class RecordConflict(RecordStoreError):
    """A conditional write lost: the guarded field was already set."""

    def __init__(self, user_id: str, field: str):
        self.user_id = user_id
        self.field = field
        super().__init__(f"Conditional update of {field} for user {user_id} lost to a concurrent write")
