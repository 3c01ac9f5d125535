"""Conversation test session models."""
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from outbound_voice.services.calls.models import utcnow


class MessageRole(str, Enum):
    USER = "user"
    AGENT = "agent"

    def __str__(self) -> str:
        return self.value


class ConversationMessage(BaseModel):
    role: MessageRole
    text: str
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value):
        # The speech provider's SDK reports the agent side as "assistant" or "ai"
        if isinstance(value, str) and value.strip().lower() in ("assistant", "ai"):
            return MessageRole.AGENT
        return value


class ConversationSession(BaseModel):
    """A negotiated real-time test session.

    The signed URL is single use. The live socket belongs to the UI, which
    appends messages as they arrive and hands the session back on close.
    """

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    agent_id: str
    signed_url: str = Field(repr=False)
    issued_at: datetime
    expires_at: datetime
    messages: List[ConversationMessage] = Field(default_factory=list)

    def add_message(
        self, role: MessageRole, text: str, timestamp: Optional[datetime] = None
    ) -> ConversationMessage:
        message = ConversationMessage(role=role, text=text, timestamp=timestamp or utcnow())
        self.messages.append(message)
        return message

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class SessionMetrics(BaseModel):
    """Timing and volume figures for a finished test session. Times are in seconds."""

    message_count: Dict[MessageRole, int]
    mean_latency: Dict[MessageRole, Optional[float]]
    mean_message_length: Dict[MessageRole, float]
    total_duration: float
    turn_count: int
