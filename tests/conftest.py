"""Shared test fixtures and configuration."""
import pytest
import os
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ALLOW_DEVELOPMENT_CALLS", "false")

from outbound_voice.main import app
from outbound_voice.db.database import Base
from outbound_voice.db.models import AgentConfig, Profile, Prospect
from outbound_voice.core.dependencies import get_caller_store
from outbound_voice.core.errors import AgentConfigNotFound, ProfileNotFound, ProspectNotFound
from outbound_voice.services.calls.builder import CallOptions, CallRequestBuilder
from outbound_voice.services.calls.lifecycle import CallLifecycleManager
from outbound_voice.services.providers.client import ProviderClient
from outbound_voice.services.providers.models import (
    AgentSummary,
    PlacedCall,
    ProviderCallStatus,
    TelephonyCredentials,
    Voice,
)
from outbound_voice.services.store.models import AgentConfigRecord, CallerProfile, ProspectRecord


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ACCOUNT_SID = "AC" + "0123456789abcdef" * 2
SOURCE_NUMBER = "+15550001111"
PROSPECT_NUMBER = "+15557654321"


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
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
async def seeded_db(test_db):
    """Database with one caller, two prospects and one agent config."""
    test_db.add_all(
        [
            Profile(
                id="user-1",
                twilio_account_sid=ACCOUNT_SID,
                twilio_auth_token="twilio-secret",
                twilio_phone_number=SOURCE_NUMBER,
                elevenlabs_api_key="xi-test-key",
                elevenlabs_phone_number_id="phnum_123",
            ),
            Profile(id="user-2"),
        ]
    )
    await test_db.flush()
    test_db.add_all(
        [
            Prospect(
                id="p1",
                user_id="user-1",
                first_name="Dana",
                last_name="Reyes",
                phone_number="(555) 765-4321",
            ),
            Prospect(id="p-other", user_id="user-2", phone_number="5551112222"),
            AgentConfig(id="a1", user_id="user-1", config_name="Listing follow-up", voice_id="voice-a"),
        ]
    )
    await test_db.commit()
    return test_db


@pytest.fixture
def caller_profile():
    """A caller with complete telephony and speech credentials."""
    return CallerProfile(
        user_id="user-1",
        twilio_account_sid=ACCOUNT_SID,
        twilio_auth_token="twilio-secret",
        twilio_phone_number=SOURCE_NUMBER,
        elevenlabs_api_key="xi-test-key",
        elevenlabs_phone_number_id="phnum_123",
    )


@pytest.fixture
def telephony_credentials():
    return TelephonyCredentials(
        account_sid=ACCOUNT_SID,
        auth_token="twilio-secret",
        phone_number=SOURCE_NUMBER,
    )


@pytest.fixture
def build_request(caller_profile):
    """Build a CallRequest for p1 with the given options."""
    def _build(**options):
        options.setdefault("to_number", PROSPECT_NUMBER)
        options.setdefault("prospect_name", "Dana Reyes")
        if "direct_agent_id" not in options:
            options.setdefault("agent_config_id", "a1")
        builder = CallRequestBuilder(caller_profile, allow_development=True)
        return builder.build("p1", CallOptions(**options))
    return _build


@pytest.fixture
def mock_provider():
    """ProviderClient mock that accepts every call and reports it queued."""
    provider = AsyncMock(spec=ProviderClient)
    provider.place_call.return_value = PlacedCall(call_id="CA-standard-1", status="queued")
    provider.place_agent_call.return_value = PlacedCall(
        call_id="CA-agent-1", conversation_id="conv_1"
    )
    provider.fetch_call_status.return_value = ProviderCallStatus(
        call_id="CA-standard-1", status="queued"
    )
    provider.end_call.return_value = None
    provider.verify_telephony_credentials.return_value = True
    provider.request_signed_url.return_value = "wss://api.elevenlabs.io/v1/convai/conversation?token=abc"
    provider.list_voices.return_value = [Voice(voice_id="voice-a", name="Rachel", category="premade")]
    provider.list_agents.return_value = [AgentSummary(agent_id="agent-x", name="Listing agent")]
    return provider


@pytest.fixture
def status_sequence():
    """Build a fetch_call_status side_effect: one status per poll, repeating the last."""
    def _sequence(*statuses, call_id="CA-standard-1"):
        remaining = list(statuses)

        async def _fetch(credentials, requested_call_id):
            status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
            if isinstance(status, Exception):
                raise status
            return ProviderCallStatus(call_id=call_id, status=status)

        return _fetch
    return _sequence


@pytest.fixture
async def call_manager(mock_provider):
    """Lifecycle manager with fast polling over the mocked provider."""
    manager = CallLifecycleManager(
        mock_provider,
        request_timeout=1.0,
        poll_interval=0.01,
        watch_timeout=5.0,
        status_timeout=1.0,
    )
    yield manager
    await manager.shutdown()


class FakeCallerStore:
    """In-memory stand-in for CallerStore used by the API tests."""

    def __init__(self, profiles, prospects, agent_configs):
        self.profiles = {p.user_id: p for p in profiles}
        self.prospects = {p.id: p for p in prospects}
        self.agent_configs = {a.id: a for a in agent_configs}

    async def get_caller_profile(self, user_id):
        if user_id not in self.profiles:
            raise ProfileNotFound("Profile setup incomplete.")
        return self.profiles[user_id]

    async def get_prospect(self, prospect_id):
        if prospect_id not in self.prospects:
            raise ProspectNotFound(f"Prospect {prospect_id} not found.")
        return self.prospects[prospect_id]

    async def get_agent_config(self, agent_config_id):
        if agent_config_id not in self.agent_configs:
            raise AgentConfigNotFound(f"Agent configuration {agent_config_id} was not found.")
        return self.agent_configs[agent_config_id]


@pytest.fixture
def fake_store(caller_profile):
    return FakeCallerStore(
        profiles=[caller_profile, CallerProfile(user_id="user-no-keys")],
        prospects=[
            ProspectRecord(id="p1", user_id="user-1", first_name="Dana", last_name="Reyes", phone_number="5557654321"),
            ProspectRecord(id="p-bad", user_id="user-1", phone_number="12"),
        ],
        agent_configs=[AgentConfigRecord(id="a1", user_id="user-1", config_name="Listing follow-up")],
    )


@pytest.fixture
def test_client(fake_store, mock_provider, monkeypatch):
    """FastAPI test client with the store and provider replaced."""
    app.dependency_overrides[get_caller_store] = lambda: fake_store
    # The fake store needs no tables
    monkeypatch.setattr("outbound_voice.main.init_db", AsyncMock())

    with TestClient(app) as client:
        app.state.provider_client = mock_provider
        app.state.call_manager = CallLifecycleManager(
            mock_provider,
            request_timeout=1.0,
            poll_interval=60.0,
            watch_timeout=600.0,
            status_timeout=1.0,
        )
        app.state.closed_sessions = []
        app.state.session_closed_handler = app.state.closed_sessions.append
        yield client

    # Clear overrides
    app.dependency_overrides.clear()
