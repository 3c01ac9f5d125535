"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from outbound_voice.api import calls, catalog, conversations, health
from outbound_voice.core.logging import setup_logging
from outbound_voice.db.database import init_db
from outbound_voice.services.calls.lifecycle import CallLifecycleManager
from outbound_voice.services.conversations.models import ConversationSession
from outbound_voice.services.conversations.negotiator import ClosedSessionRegistry
from outbound_voice.services.providers.client import ProviderClient

logger = logging.getLogger(__name__)


def log_closed_session(session: ConversationSession) -> None:
    """Default closed-session handler. Transcripts are not stored here."""
    logger.info(
        f"[CONVERSATIONS] Session {session.session_id} with agent {session.agent_id} "
        f"ended with {len(session.messages)} messages"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    provider = ProviderClient()
    app.state.provider_client = provider
    app.state.call_manager = CallLifecycleManager(provider)
    app.state.session_closed_handler = log_closed_session
    app.state.closed_session_registry = ClosedSessionRegistry()
    logger.info("[STARTUP] Call orchestrator ready")
    yield
    # Shutdown
    await app.state.call_manager.shutdown()
    await provider.aclose()
    logger.info("[SHUTDOWN] Watches cancelled, provider client closed")


app = FastAPI(
    title="Outbound Voice Orchestrator",
    description="Outbound call placement, status tracking and agent test sessions",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(calls.router, tags=["calls"])
app.include_router(catalog.router, tags=["catalog"])
app.include_router(conversations.router, tags=["conversations"])
