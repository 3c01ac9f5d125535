"""Read models handed out by the caller store."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from outbound_voice.services.providers.models import TelephonyCredentials


class CallerProfile(BaseModel):
    """The calling account's configuration record."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = Field(default=None, repr=False)
    twilio_phone_number: Optional[str] = None
    elevenlabs_api_key: Optional[str] = Field(default=None, repr=False)
    elevenlabs_phone_number_id: Optional[str] = None

    def telephony_credentials(self) -> Optional[TelephonyCredentials]:
        """Return credentials when all three fields are present."""
        if not (self.twilio_account_sid and self.twilio_auth_token and self.twilio_phone_number):
            return None
        return TelephonyCredentials(
            account_sid=self.twilio_account_sid.strip(),
            auth_token=self.twilio_auth_token.strip(),
            phone_number=self.twilio_phone_number.strip(),
        )


class ProspectRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class AgentConfigRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    config_name: str
    voice_id: Optional[str] = None
