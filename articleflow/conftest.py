# articleflow/conftest.py
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import insert

from articleflow.core.config import Settings
from articleflow.core.container import build_services
from articleflow.core.database import create_all_tables, create_db_engine, subscription_plans
from articleflow.tests.fakes import FakeBillingProvider, FakeLedgerClient, ImmediateDispatcher


@pytest.fixture
def test_settings():
    return Settings(
        ENV="test",
        DATABASE_URL="sqlite://",
        STRIPE_SECRET_KEY="sk_test_fake",
        STRIPE_WEBHOOK_SECRET="whsec_fake",
        STRIPE_PRICE_PRO_ID="price_pro",
        STRIPE_PRICE_ENTERPRISE_ID="price_enterprise",
        DEFAULT_PAID_PLAN="pro",
        FREE_ARTICLES_PER_MONTH=2,
        GOOGLE_SHEETS_CUSTOMER_CONFIG_ID="cfg-sheet",
        GOOGLE_SHEETS_ARTICLES_ID="articles-sheet",
        LEDGER_SYNC_BACKEND="thread",
    )


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = create_db_engine("sqlite://")
    create_all_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def ledger_client():
    return FakeLedgerClient()


@pytest.fixture
def billing_provider():
    return FakeBillingProvider()


@pytest.fixture
def dispatcher():
    return ImmediateDispatcher()


@pytest.fixture
def services(test_settings, engine, ledger_client, billing_provider, dispatcher):
    container = build_services(
        test_settings,
        engine=engine,
        billing_provider=billing_provider,
        ledger_client=ledger_client,
        dispatcher=dispatcher,
    )
    if isinstance(dispatcher, ImmediateDispatcher):
        dispatcher.runner = container.sync_runner
    return container


@pytest.fixture
def seed_plans(engine):
    with engine.begin() as conn:
        conn.execute(
            insert(subscription_plans),
            [
                {"id": "pro", "name": "Pro", "stripe_price_id": "price_pro",
                 "articles_per_month": 30, "is_active": True},
                {"id": "enterprise", "name": "Enterprise", "stripe_price_id": "price_enterprise",
                 "articles_per_month": 100, "is_active": True},
            ],
        )


@pytest.fixture
def client(services):
    from articleflow.main import create_app

    return TestClient(create_app(services=services))
