"""Provider request/response models."""
from typing import Optional

from pydantic import BaseModel, Field


class TelephonyCredentials(BaseModel):
    """Twilio account credentials taken from the caller's profile."""

    account_sid: str
    auth_token: str = Field(repr=False)
    phone_number: str


class PlacedCall(BaseModel):
    """Provider acknowledgement of a placed call."""

    call_id: str
    conversation_id: Optional[str] = None
    status: Optional[str] = None


class ProviderCallStatus(BaseModel):
    """Provider-side view of a call."""

    call_id: str
    status: str
    duration: Optional[str] = None
    direction: Optional[str] = None
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    price: Optional[str] = None


class Voice(BaseModel):
    voice_id: str
    name: str
    category: Optional[str] = None


class AgentSummary(BaseModel):
    agent_id: str
    name: str
    description: Optional[str] = None
