"""FastAPI dependencies."""
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_voice.db.database import get_db
from outbound_voice.services.calls.dispatch import CallDispatcher
from outbound_voice.services.calls.lifecycle import CallLifecycleManager
from outbound_voice.services.conversations.negotiator import ClosedSessionRegistry, SessionClosedHandler
from outbound_voice.services.providers.client import ProviderClient
from outbound_voice.services.store.repository import CallerStore


def get_provider_client(request: Request) -> ProviderClient:
    """Shared provider client created at startup."""
    return request.app.state.provider_client


def get_call_manager(request: Request) -> CallLifecycleManager:
    """Process-wide call lifecycle manager created at startup."""
    return request.app.state.call_manager


def get_caller_store(db: AsyncSession = Depends(get_db)) -> CallerStore:
    return CallerStore(db)


def get_call_dispatcher(
    store: CallerStore = Depends(get_caller_store),
    manager: CallLifecycleManager = Depends(get_call_manager),
) -> CallDispatcher:
    return CallDispatcher(store, manager)


def get_session_closed_handler(request: Request) -> Optional[SessionClosedHandler]:
    return getattr(request.app.state, "session_closed_handler", None)


def get_closed_session_registry(request: Request) -> ClosedSessionRegistry:
    """Closed-session ids shared by every close request."""
    return request.app.state.closed_session_registry
