"""Shared test fixtures and configuration."""
import pytest
import os
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-token")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "+1234567890")
os.environ.setdefault("FLEX_WORKSPACE_SID", "WStest")
os.environ.setdefault("FLEX_WORKFLOW_SID", "WWtest")
os.environ.setdefault("TASK_QUEUE_VA", "WQtest")
os.environ.setdefault("WORKER_SID_VA", "WKtest")
os.environ.setdefault("SERVER_BASE_URL", "relay.example.com")
os.environ.setdefault("TOOLS_BASE_URL", "http://tools.test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from callrelay.main import app
from callrelay.core import dependencies
from callrelay.db.database import get_db
from callrelay.db.models import Base
from callrelay.services.relay.orchestrator import OrchestratorConfig
from callrelay.services.session.models import CallSession
from callrelay.services.session.registry import InMemorySessionRegistry
from callrelay.services.verification.store import VerificationStore
from tests.fakes import FakeTelephonyService, FakeTicketingBridge


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_db(test_db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest.fixture
def registry():
    """Empty in-memory session registry."""
    return InMemorySessionRegistry()


@pytest.fixture
def ticketing():
    """Ticketing bridge that records operations."""
    return FakeTicketingBridge()


@pytest.fixture
def telephony():
    """Telephony service that records dials and SMS."""
    return FakeTelephonyService()


@pytest.fixture
def verification_store():
    return VerificationStore()


@pytest.fixture
def orchestrator_config():
    """Orchestrator settings for driving a call by hand."""
    return OrchestratorConfig(
        agent_author="Assistant",
        callee_author="Pharmacy",
        setup_wait_seconds=0.05,
        setup_poll_seconds=0.01,
        cancel_on_interrupt=True,
        run_silence_timer=False,
    )


@pytest.fixture
def ticketed_session():
    """A session whose reservation has already been accepted."""
    return CallSession(
        correlation_token="ref-123",
        destination_number="+61400000000",
        customer_data={"customerReference": "ref-123", "customerName": "Jo Smith"},
        ticket_id="KD0001",
        ticket_channel_id="UO0001",
        transcript_destination="CH0001",
    )


@pytest.fixture
def override_get_db(test_db):
    """Override get_db dependency with test database."""
    async def _override_get_db():
        yield test_db
    return _override_get_db


@pytest.fixture
def test_client(override_get_db, registry, ticketing, telephony, verification_store, monkeypatch):
    """Create FastAPI test client with overrides."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[dependencies.get_session_registry] = lambda: registry
    app.dependency_overrides[dependencies.get_ticketing_bridge] = lambda: ticketing
    app.dependency_overrides[dependencies.get_telephony_service] = lambda: telephony
    app.dependency_overrides[dependencies.get_verification_store] = lambda: verification_store

    # The relay socket builds its collaborators directly rather than through Depends
    monkeypatch.setattr(dependencies, "_registry", registry)
    monkeypatch.setattr(dependencies, "_ticketing", ticketing)

    client = TestClient(app)

    yield client

    app.dependency_overrides.clear()
