from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class SubscriptionTier(str, Enum):
    NONE = "none"
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


# Tiers a user can purchase through checkout
PAID_TIERS = frozenset({SubscriptionTier.BASIC, SubscriptionTier.PRO, SubscriptionTier.ENTERPRISE})


class SubscriptionStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


class UserBillingProfile(BaseModel):
    """Billing sub-structure of a user record"""

    user_id: str
    email: str | None = None
    external_customer_id: str | None = None
    external_subscription_id: str | None = None
    subscription_tier: SubscriptionTier = SubscriptionTier.NONE
    subscription_status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    current_period_end: int | None = None
    cancel_at_period_end: bool = False


class CreateCheckoutSessionRequest(BaseModel):
    # Validated by the checkout flow so unknown tiers map to a 400, not a 422
    tier: str | None = None


class RedirectResponse(BaseModel):
    url: str


class ErrorResponse(BaseModel):
    error: str


class WebhookAction(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    UNRESOLVED = "unresolved"
    DUPLICATE = "duplicate"


class WebhookProcessingResult(BaseModel):
    """Outcome of a verified webhook delivery"""

    success: bool = True
    event_type: str
    event_id: str
    action: WebhookAction
    message: str
    user_id: str | None = None
    processed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
