"""Call request validation and assembly."""
import logging
import re
from typing import List, Optional

from pydantic import BaseModel, Field

from outbound_voice.core.config import settings
from outbound_voice.core.errors import (
    ConflictingAgentSelection,
    DevelopmentModeDisabled,
    IncompleteTelephonyCredentials,
    InvalidDestinationNumber,
    MissingAgentSelection,
    MissingPhoneNumberBinding,
    MissingSpeechCredential,
)
from outbound_voice.services.calls.models import (
    DEBUG_FLAGS_IGNORED,
    DEVELOPMENT_FLAG_IGNORED,
    VOICE_OVERRIDE_IGNORED,
    CallRequest,
    DebugFlags,
    ExecutionMode,
)
from outbound_voice.services.providers.models import TelephonyCredentials
from outbound_voice.services.store.models import CallerProfile

logger = logging.getLogger(__name__)

ACCOUNT_SID_PATTERN = re.compile(r"^AC[0-9a-fA-F]{32}$")
E164_PATTERN = re.compile(r"^\+[1-9]\d{6,14}$")
_NON_DIGITS = re.compile(r"\D")


def format_e164(number: Optional[str]) -> Optional[str]:
    """Normalize a phone number to E.164, assuming +1 when no country code is given.

    Returns None when the result is not a plausible E.164 number.
    """
    raw = (number or "").strip()
    if not raw:
        return None
    if raw.startswith("+"):
        candidate = "+" + _NON_DIGITS.sub("", raw[1:])
    else:
        digits = _NON_DIGITS.sub("", raw)
        if len(digits) == 11 and digits.startswith("1"):
            candidate = f"+{digits}"
        else:
            candidate = f"+1{digits}"
    return candidate if E164_PATTERN.match(candidate) else None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class CallOptions(BaseModel):
    """What the user picked in the call dialog."""

    to_number: str
    prospect_name: str = ""
    agent_config_id: Optional[str] = None
    direct_agent_id: Optional[str] = None
    direct_agent_phone_number_id: Optional[str] = None
    voice_override: Optional[str] = None
    development: bool = False
    debug_flags: DebugFlags = Field(default_factory=DebugFlags)


class CallRequestBuilder:
    """Validates call options against the caller's configuration record.

    Pure and synchronous: no store or network access happens here.
    """

    def __init__(self, caller: CallerProfile, allow_development: Optional[bool] = None):
        self.caller = caller
        self.allow_development = (
            settings.allow_development_calls if allow_development is None else allow_development
        )

    def build(self, prospect_id: str, options: CallOptions) -> CallRequest:
        agent_config_id = _clean(options.agent_config_id)
        direct_agent_id = _clean(options.direct_agent_id)

        if not agent_config_id and not direct_agent_id:
            raise MissingAgentSelection()
        if agent_config_id and direct_agent_id:
            raise ConflictingAgentSelection()

        warnings: List[str] = []
        voice_override = _clean(options.voice_override)
        debug_flags = options.debug_flags
        phone_number_id = None
        speech_api_key = None

        if direct_agent_id:
            mode = ExecutionMode.DIRECT_AGENT
            # Direct agent sessions speak with the agent's own voice
            if voice_override:
                warnings.append(VOICE_OVERRIDE_IGNORED)
                voice_override = None
            if debug_flags.any_enabled:
                warnings.append(DEBUG_FLAGS_IGNORED)
                debug_flags = DebugFlags()
            if options.development:
                warnings.append(DEVELOPMENT_FLAG_IGNORED)

            phone_number_id = _clean(options.direct_agent_phone_number_id) or _clean(
                self.caller.elevenlabs_phone_number_id
            )
            if not phone_number_id:
                raise MissingPhoneNumberBinding()
        elif options.development:
            if not self.allow_development:
                raise DevelopmentModeDisabled()
            mode = ExecutionMode.DEVELOPMENT
        else:
            mode = ExecutionMode.STANDARD

        credentials = self._telephony_credentials()

        if mode == ExecutionMode.DIRECT_AGENT:
            speech_api_key = _clean(self.caller.elevenlabs_api_key)
            if not speech_api_key:
                raise MissingSpeechCredential()

        to_number = format_e164(options.to_number)
        if not to_number:
            raise InvalidDestinationNumber(
                f"Prospect phone number {options.to_number!r} is not a valid phone number."
            )

        if warnings:
            logger.info(f"[CALL BUILDER] Request for prospect {prospect_id} built with warnings: {warnings}")

        return CallRequest(
            user_id=self.caller.user_id,
            prospect_id=prospect_id,
            execution_mode=mode,
            agent_config_id=agent_config_id,
            direct_agent_id=direct_agent_id,
            direct_agent_phone_number_id=phone_number_id,
            voice_override=voice_override,
            debug_flags=debug_flags,
            to_number=to_number,
            prospect_name=options.prospect_name,
            warnings=warnings,
            credentials=credentials,
            speech_api_key=speech_api_key,
        )

    def _telephony_credentials(self) -> TelephonyCredentials:
        credentials = self.caller.telephony_credentials()
        if credentials is None:
            raise IncompleteTelephonyCredentials()
        if not ACCOUNT_SID_PATTERN.match(credentials.account_sid):
            raise IncompleteTelephonyCredentials(
                "Telephony Account SID is malformed. It should start with 'AC' followed by 32 hex characters."
            )
        if not E164_PATTERN.match(credentials.phone_number):
            raise IncompleteTelephonyCredentials(
                "Telephony phone number must be in E.164 format, for example +15551234567."
            )
        return credentials
