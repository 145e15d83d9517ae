import pytest

from realty_billing.db.users import SupabaseUserStore
from realty_billing.db.webhook_events import WebhookEventLedger
from realty_billing.services.startup import build_billing_services
from tests.helpers.mocks import (
    PRICE_MAP,
    SITE_URL,
    WEBHOOK_SECRET,
    FakeSessions,
    FakeSupabase,
    RecordingStripeClient,
)


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def store(fake_supabase):
    return SupabaseUserStore(client=fake_supabase)


@pytest.fixture
def ledger(fake_supabase):
    return WebhookEventLedger(client=fake_supabase)


@pytest.fixture
def provider():
    return RecordingStripeClient()


@pytest.fixture
def sessions():
    return FakeSessions({"token-1": "user-1"})


@pytest.fixture
def services(store, provider, sessions, ledger):
    return build_billing_services(
        store=store,
        provider=provider,
        sessions=sessions,
        price_map=PRICE_MAP,
        public_website_url=SITE_URL,
        ledger=ledger,
        webhook_secret=WEBHOOK_SECRET,
    )
