#!/usr/bin/env python3
"""
Stripe Billing Routes
Checkout, billing-portal and webhook endpoints
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from realty_billing.schemas.billing import (
    CreateCheckoutSessionRequest,
    ErrorResponse,
    RedirectResponse,
    UserBillingProfile,
)
from realty_billing.security.deps import get_current_user
from realty_billing.services.startup import BillingServices, get_billing_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Stripe Billing"])

_REDIRECT_ERRORS = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post(
    "/create-checkout-session", response_model=RedirectResponse, responses=_REDIRECT_ERRORS
)
async def create_checkout_session(
    body: CreateCheckoutSessionRequest,
    user: UserBillingProfile = Depends(get_current_user),
    services: BillingServices = Depends(get_billing_services),
):
    """
    Start a hosted Stripe Checkout for a subscription tier.

    Responds with ``{"url": ...}``; the browser is redirected there. The user's
    subscription fields change only once Stripe confirms via webhook.
    """
    url = await asyncio.to_thread(services.checkout.create_checkout, user, body.tier)
    return RedirectResponse(url=url)


@router.post(
    "/create-billing-portal", response_model=RedirectResponse, responses=_REDIRECT_ERRORS
)
async def create_billing_portal(
    user: UserBillingProfile = Depends(get_current_user),
    services: BillingServices = Depends(get_billing_services),
):
    """Open the Stripe billing portal for a user who has completed checkout."""
    url = await asyncio.to_thread(services.portal.create_portal_session, user)
    return RedirectResponse(url=url)


@router.post(
    "/webhooks",
    status_code=200,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="stripe-signature"),
    services: BillingServices = Depends(get_billing_services),
):
    """
    Stripe webhook endpoint.

    The raw body is passed through untouched because the signature covers the
    exact bytes Stripe sent.

    Responses:
    - 200 once the event is authenticated and applied, ignored, or unmatched
    - 400 when the signature is missing or invalid (Stripe will not fix it by retrying)
    - 503 when the user record could not be written; Stripe retries the delivery

    Configure in the Stripe Dashboard > Developers > Webhooks with the events
    customer.created, customer.subscription.created/updated/deleted,
    invoice.payment_succeeded and invoice.payment_failed, and copy the
    signing secret to STRIPE_WEBHOOK_SECRET.
    """
    payload = await request.body()
    result = await asyncio.to_thread(services.reconciler.handle_event, payload, stripe_signature)

    logger.info(f"Webhook processed: {result.event_type} - {result.message}")
    return JSONResponse(
        status_code=200,
        content={
            "received": True,
            "event_type": result.event_type,
            "event_id": result.event_id,
            "action": result.action.value,
            "message": result.message,
        },
    )
