"""
Service wiring for the billing API.

Every collaborator is constructed once, here, and handed to the components
that need it. Routes reach the container through ``get_billing_services``.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import Request

from realty_billing.config import Config
from realty_billing.db.users import RecordStore, SupabaseUserStore
from realty_billing.db.webhook_events import WebhookEventLedger
from realty_billing.security.session import CmsSessionResolver
from realty_billing.services.checkout import CheckoutOrchestrator
from realty_billing.services.customer_linker import CustomerLinker
from realty_billing.services.notifier import Notifier, notifier_from_config
from realty_billing.services.portal import PortalOrchestrator
from realty_billing.services.stripe_client import StripeBillingClient
from realty_billing.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


@dataclass
class BillingServices:
    store: RecordStore
    provider: StripeBillingClient
    sessions: CmsSessionResolver
    linker: CustomerLinker
    checkout: CheckoutOrchestrator
    portal: PortalOrchestrator
    reconciler: WebhookReconciler
    notifier: Notifier | None = None


def build_billing_services(
    store: RecordStore,
    provider: StripeBillingClient,
    sessions: CmsSessionResolver,
    *,
    price_map: dict[str, str],
    public_website_url: str,
    ledger: WebhookEventLedger | None = None,
    webhook_secret: str | None = None,
    notifier: Notifier | None = None,
) -> BillingServices:
    linker = CustomerLinker(store, provider)
    return BillingServices(
        store=store,
        provider=provider,
        sessions=sessions,
        linker=linker,
        checkout=CheckoutOrchestrator(linker, provider, price_map, public_website_url),
        portal=PortalOrchestrator(provider, public_website_url),
        reconciler=WebhookReconciler(provider, store, ledger, webhook_secret),
        notifier=notifier,
    )


def build_services_from_config(config: type[Config] = Config) -> BillingServices:
    """Construct the production service graph from environment configuration."""
    config.validate()

    price_map = config.tier_price_map()
    if not price_map:
        logger.warning("No STRIPE_PRICE_* configured - every checkout will be rejected")

    provider = StripeBillingClient(
        config.STRIPE_SECRET_KEY,
        config.STRIPE_WEBHOOK_SECRET,
        timeout=config.STRIPE_TIMEOUT_SECONDS,
        max_network_retries=config.STRIPE_MAX_NETWORK_RETRIES,
    )
    return build_billing_services(
        store=SupabaseUserStore(),
        provider=provider,
        sessions=CmsSessionResolver(config.CMS_URL, timeout=config.CMS_TIMEOUT_SECONDS),
        price_map=price_map,
        public_website_url=config.PUBLIC_WEBSITE_URL,
        ledger=WebhookEventLedger(),
        webhook_secret=config.STRIPE_WEBHOOK_SECRET,
        notifier=notifier_from_config(config),
    )


def get_billing_services(request: Request) -> BillingServices:
    return request.app.state.billing_services


@asynccontextmanager
async def lifespan(app):
    """
    Application lifespan manager: build services on startup unless a
    container was injected (tests), release HTTP clients on shutdown.
    """
    if getattr(app.state, "billing_services", None) is None:
        logger.info("Building billing services from environment configuration...")
        app.state.billing_services = build_services_from_config()

    yield

    services: BillingServices = app.state.billing_services
    for resource in (services.sessions, services.notifier):
        close = getattr(resource, "close", None)
        if callable(close):
            close()
    logger.info("Billing services shut down")
