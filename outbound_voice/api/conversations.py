"""Real-time agent test conversation endpoints."""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from outbound_voice.api.errors import to_http_exception
from outbound_voice.core.dependencies import (
    get_caller_store,
    get_closed_session_registry,
    get_provider_client,
    get_session_closed_handler,
)
from outbound_voice.core.errors import OrchestratorError
from outbound_voice.services.conversations.models import ConversationSession, SessionMetrics
from outbound_voice.services.conversations.negotiator import (
    ClosedSessionRegistry,
    ConversationSessionNegotiator,
    SessionClosedHandler,
)
from outbound_voice.services.providers.client import ProviderClient
from outbound_voice.services.store.repository import CallerStore

router = APIRouter()
logger = logging.getLogger(__name__)


class NegotiateBody(BaseModel):
    user_id: str
    agent_id: str


class SessionResponse(BaseModel):
    session_id: str
    agent_id: str
    signed_url: str
    issued_at: datetime
    expires_at: datetime


@router.post("/api/conversations/sessions", response_model=SessionResponse, status_code=201)
async def open_session(
    body: NegotiateBody,
    store: CallerStore = Depends(get_caller_store),
    provider: ProviderClient = Depends(get_provider_client),
):
    """Negotiate a signed URL for a live test conversation with an agent."""
    logger.info(f"[CONVERSATIONS] Session requested - user: {body.user_id}, agent: {body.agent_id}")
    try:
        profile = await store.get_caller_profile(body.user_id)
        negotiator = ConversationSessionNegotiator(provider, profile.elevenlabs_api_key)
        session = await negotiator.negotiate(body.agent_id)
    except OrchestratorError as e:
        logger.warning(f"[CONVERSATIONS] Session not opened: {e.code}: {e.message}")
        raise to_http_exception(e)
    return SessionResponse(
        session_id=session.session_id,
        agent_id=session.agent_id,
        signed_url=session.signed_url,
        issued_at=session.issued_at,
        expires_at=session.expires_at,
    )


@router.post("/api/conversations/sessions/close", response_model=SessionMetrics)
async def close_session(
    session: ConversationSession,
    provider: ProviderClient = Depends(get_provider_client),
    on_session_closed: Optional[SessionClosedHandler] = Depends(get_session_closed_handler),
    closed_sessions: ClosedSessionRegistry = Depends(get_closed_session_registry),
):
    """Close a test conversation and return its metrics.

    Repeated closes of the same session return metrics again without
    re-sending the transcript to the closed handler.
    """
    negotiator = ConversationSessionNegotiator(
        provider,
        credential=None,
        on_session_closed=on_session_closed,
        closed_sessions=closed_sessions,
    )
    return await negotiator.close(session)
