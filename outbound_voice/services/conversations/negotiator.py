"""Signed-URL handshake for real-time agent test conversations."""
import inspect
import logging
from collections import OrderedDict
from datetime import timedelta
from typing import Any, Callable, Optional

from outbound_voice.core.config import settings
from outbound_voice.core.errors import CredentialMissing, ProviderError, SignedUrlUnavailable
from outbound_voice.services.calls.models import utcnow
from outbound_voice.services.conversations.metrics import compute_session_metrics
from outbound_voice.services.conversations.models import ConversationSession, SessionMetrics
from outbound_voice.services.providers.client import ProviderClient

logger = logging.getLogger(__name__)

SessionClosedHandler = Callable[[ConversationSession], Any]


class ClosedSessionRegistry:
    """Remembers recently closed session ids, evicting the oldest past ``max_size``."""

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = settings.closed_session_history_size if max_size is None else max_size
        self._session_ids: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._session_ids

    def __len__(self) -> int:
        return len(self._session_ids)

    def add(self, session_id: str) -> bool:
        """Record a closed session. Returns False if it was already recorded."""
        if session_id in self._session_ids:
            return False
        self._session_ids[session_id] = None
        while len(self._session_ids) > self.max_size:
            self._session_ids.popitem(last=False)
        return True


class ConversationSessionNegotiator:
    """Negotiates test sessions with a speech provider agent.

    Does not own the live socket. ``on_session_closed`` receives the full
    transcript when the UI closes a session; it may be a plain function or
    a coroutine function.
    """

    def __init__(
        self,
        provider: ProviderClient,
        credential: Optional[str],
        on_session_closed: Optional[SessionClosedHandler] = None,
        ttl: Optional[float] = None,
        closed_sessions: Optional[ClosedSessionRegistry] = None,
    ):
        self.provider = provider
        self.credential = (credential or "").strip() or None
        self.on_session_closed = on_session_closed
        self.ttl = settings.signed_url_ttl_seconds if ttl is None else ttl
        self._closed = closed_sessions if closed_sessions is not None else ClosedSessionRegistry()

    async def negotiate(self, agent_id: str) -> ConversationSession:
        if not self.credential:
            raise CredentialMissing()

        agent_id = (agent_id or "").strip()
        if not agent_id:
            raise SignedUrlUnavailable("An agent ID is required to start a conversation")

        logger.info(f"[CONVERSATION] Requesting signed URL for agent {agent_id}")
        try:
            signed_url = await self.provider.request_signed_url(self.credential, agent_id)
        except ProviderError as e:
            logger.warning(f"[CONVERSATION] Signed URL request failed for agent {agent_id}: {e.message}")
            raise SignedUrlUnavailable(e.message) from e

        issued_at = utcnow()
        session = ConversationSession(
            agent_id=agent_id,
            signed_url=signed_url,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=self.ttl),
        )
        logger.info(
            f"[CONVERSATION] Session {session.session_id} opened for agent {agent_id}, "
            f"expires at {session.expires_at.isoformat()}"
        )
        return session

    async def close(self, session: ConversationSession) -> SessionMetrics:
        """Close a session and hand its transcript to the closed handler.

        The provider URL expires on its own; nothing is revoked here.
        Closing the same session twice notifies the handler once.
        """
        metrics = self.metrics(session)
        if not self._closed.add(session.session_id):
            return metrics

        logger.info(
            f"[CONVERSATION] Session {session.session_id} closed with "
            f"{len(session.messages)} messages over {metrics.total_duration:.1f}s"
        )
        if self.on_session_closed is not None:
            result = self.on_session_closed(session)
            if inspect.isawaitable(result):
                await result
        return metrics

    def metrics(self, session: ConversationSession) -> SessionMetrics:
        return compute_session_metrics(session.messages)
