"""Shared fixtures: SQLite ledger, Stripe doubles and a fake campaign catalog"""
import os
import tempfile

# Configuration is read at import time, so the environment is set first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(tempfile.mkdtemp(), "app.db")
os.environ["STRIPE_SECRET_KEY"] = "sk_test_123"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PUBLISHABLE_KEY"] = "pk_test_123"
os.environ["PLATFORM_FEE_PERCENTAGE"] = "8"
os.environ["SUPABASE_URL"] = "https://project.supabase.co"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "service-role-key"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from unittest.mock import Mock  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

import app.db.models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402
from app.features.donations.gateway import ProviderIntent, StripePaymentGateway  # noqa: E402
from app.features.donations.repositories.catalog import Campaign, Participant  # noqa: E402
from tests.helpers import (  # noqa: E402
    ACTIVE_CAMPAIGN_ID,
    ENDED_CAMPAIGN_ID,
    OTHER_PARTICIPANT_ID,
    PARTICIPANT_ID,
    WEBHOOK_SECRET,
)


class FakeCatalog:
    """In-memory stand-in for the Supabase campaign catalog"""

    def __init__(self):
        self.campaigns = {
            ACTIVE_CAMPAIGN_ID: Campaign(id=ACTIVE_CAMPAIGN_ID, status="active", title="Spring Drive"),
            ENDED_CAMPAIGN_ID: Campaign(id=ENDED_CAMPAIGN_ID, status="ended", title="Last Year"),
        }
        self.participants = {
            PARTICIPANT_ID: Participant(id=PARTICIPANT_ID, campaign_id=ACTIVE_CAMPAIGN_ID),
            OTHER_PARTICIPANT_ID: Participant(id=OTHER_PARTICIPANT_ID, campaign_id=ENDED_CAMPAIGN_ID),
        }

    async def get_campaign(self, campaign_id):
        return self.campaigns.get(campaign_id)

    async def get_participant(self, participant_id, campaign_id):
        participant = self.participants.get(participant_id)
        if participant is None or participant.campaign_id != campaign_id:
            return None
        return participant


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's commits"""
    path = tmp_path / "donations.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def stripe_gateway():
    """Real gateway (real signature checks) with test credentials"""
    return StripePaymentGateway(
        api_key="sk_test_123",
        webhook_secret=WEBHOOK_SECRET,
        currency="usd",
        webhook_tolerance=300,
    )


@pytest.fixture
def mock_gateway():
    """Gateway double that never reaches Stripe"""
    gateway = Mock(spec=StripePaymentGateway)
    gateway.currency = "usd"
    gateway.is_configured = True
    counter = {"n": 0}

    def create_intent(amount_cents, campaign_id, **kwargs):
        counter["n"] += 1
        intent_id = f"pi_test_{counter['n']}"
        return ProviderIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_abc",
            amount=amount_cents,
            currency="usd",
            status="requires_payment_method",
            metadata={"campaign_id": campaign_id},
        )

    gateway.create_intent.side_effect = create_intent
    return gateway
