"""Call request, handle and state models."""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from outbound_voice.services.providers.models import TelephonyCredentials


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionMode(str, Enum):
    """How a call is placed. Resolved once by the request builder."""

    STANDARD = "standard"  # Signature-validated telephony call
    DEVELOPMENT = "development"  # Same endpoint, webhook signature validation bypassed
    DIRECT_AGENT = "direct_agent"  # Speech provider's native calling

    def __str__(self) -> str:
        return self.value


class CallState(str, Enum):
    """Lifecycle states of an outbound call."""

    SUBMITTING = "submitting"  # Local only, before the provider accepts
    QUEUED = "queued"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no_answer"
    CANCELED = "canceled"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def rank(self) -> int:
        """Position in the partial order; all terminal states share the top rank."""
        return _STATE_RANK[self]


TERMINAL_STATES = frozenset(
    {
        CallState.COMPLETED,
        CallState.FAILED,
        CallState.BUSY,
        CallState.NO_ANSWER,
        CallState.CANCELED,
    }
)

_STATE_RANK = {
    CallState.SUBMITTING: 0,
    CallState.QUEUED: 1,
    CallState.INITIATED: 2,
    CallState.RINGING: 3,
    CallState.IN_PROGRESS: 4,
    **{state: 5 for state in TERMINAL_STATES},
}

# Request warnings (non-fatal)
VOICE_OVERRIDE_IGNORED = "VOICE_OVERRIDE_IGNORED"
DEBUG_FLAGS_IGNORED = "DEBUG_FLAGS_IGNORED"
DEVELOPMENT_FLAG_IGNORED = "DEVELOPMENT_FLAG_IGNORED"

# Failure reasons
WATCH_TIMED_OUT = "WATCH_TIMED_OUT"


class DebugFlags(BaseModel):
    verbose_protocol_trace: bool = False
    echo_only: bool = False

    @property
    def any_enabled(self) -> bool:
        return self.verbose_protocol_trace or self.echo_only


class CallRequest(BaseModel):
    """A validated call request, produced by CallRequestBuilder."""

    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    prospect_id: str
    execution_mode: ExecutionMode
    agent_config_id: Optional[str] = None
    direct_agent_id: Optional[str] = None
    direct_agent_phone_number_id: Optional[str] = None
    voice_override: Optional[str] = None
    debug_flags: DebugFlags = Field(default_factory=DebugFlags)
    to_number: str
    prospect_name: str = ""
    warnings: List[str] = Field(default_factory=list)

    # Caller credentials travel with the request but never leave the process
    credentials: TelephonyCredentials = Field(exclude=True, repr=False)
    speech_api_key: Optional[str] = Field(default=None, exclude=True, repr=False)

    @model_validator(mode="after")
    def _check_agent_selection(self) -> "CallRequest":
        if bool(self.agent_config_id) == bool(self.direct_agent_id):
            raise ValueError("exactly one of agent_config_id and direct_agent_id must be set")
        if self.execution_mode == ExecutionMode.DIRECT_AGENT:
            if not self.direct_agent_id or not self.direct_agent_phone_number_id:
                raise ValueError("direct agent calls need an agent id and a phone number binding")
        elif not self.agent_config_id:
            raise ValueError(f"{self.execution_mode} calls need an agent config id")
        return self

    @property
    def voice_override_ignored(self) -> bool:
        return VOICE_OVERRIDE_IGNORED in self.warnings


class CallHandle(BaseModel):
    """A call accepted by a provider.

    Only ``state``, ``failure_reason`` and the timestamps change after creation,
    and only the lifecycle manager changes them.
    """

    provider_call_id: str
    request: CallRequest
    state: CallState = CallState.QUEUED
    conversation_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None


class TerminationOutcome(str, Enum):
    ENDED = "ended"
    ALREADY_TERMINAL = "already_terminal"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class TerminationResult(BaseModel):
    """Result of CallLifecycleManager.end()."""

    model_config = ConfigDict(frozen=True)

    success: bool
    outcome: TerminationOutcome
    state: CallState
    error_code: Optional[str] = None
    message: str = ""
