"""Telephony and speech provider REST client."""
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from outbound_voice.core.config import settings
from outbound_voice.core.errors import (
    ProviderNetworkError,
    ProviderRequestError,
    ProviderTimeout,
)
from outbound_voice.core.logging import mask_identifier
from outbound_voice.services.providers.models import (
    AgentSummary,
    PlacedCall,
    ProviderCallStatus,
    TelephonyCredentials,
    Voice,
)

logger = logging.getLogger(__name__)

TELEPHONY = "twilio"
SPEECH = "elevenlabs"

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]

# Twilio error codes
_TWILIO_AUTH_CODES = {20003}
_TWILIO_TRIAL_CODES = {21219, 21210, 21608}
_TWILIO_DESTINATION_CODES = {21211, 21214, 21217}


def _error_details(response: httpx.Response) -> Tuple[str, Optional[int]]:
    """Pull a message and numeric provider code out of an error response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase, None

    if not isinstance(payload, dict):
        return str(payload), None

    detail = payload.get("detail")
    if isinstance(detail, dict):
        message = detail.get("message") or detail.get("status")
    elif isinstance(detail, list) and detail:
        message = "; ".join(
            str(item.get("msg", item)) if isinstance(item, dict) else str(item)
            for item in detail
        )
    else:
        message = payload.get("message") or detail or payload.get("error")

    code = payload.get("code")
    return str(message or response.reason_phrase), code if isinstance(code, int) else None


def classify_error(
    provider: str, status_code: int, message: str, provider_code: Optional[int] = None
) -> str:
    """Map a provider error onto the orchestrator's rejection codes."""
    text = (message or "").lower()

    if provider == TELEPHONY:
        if status_code == 401 or provider_code in _TWILIO_AUTH_CODES:
            return "MISSING_CREDENTIAL"
        if provider_code in _TWILIO_TRIAL_CODES or "trial account" in text:
            return "TRIAL_ACCOUNT_RESTRICTION"
        if provider_code in _TWILIO_DESTINATION_CODES:
            return "INVALID_DESTINATION"
        return "PROVIDER_ERROR"

    if status_code == 401 or "api key" in text or "api_key" in text:
        return "MISSING_CREDENTIAL"
    if "phone_number_id" in text or "phone number" in text:
        return "MISSING_PHONE_NUMBER_BINDING"
    if "trial account" in text:
        return "TRIAL_ACCOUNT_RESTRICTION"
    return "PROVIDER_ERROR"


class ProviderClient:
    """Thin wrapper around the Twilio and ElevenLabs REST APIs.

    The client keeps no per-call state: credentials travel with each request,
    so one instance is shared by every call and conversation session.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        telephony_base_url: Optional[str] = None,
        speech_base_url: Optional[str] = None,
        call_webhook_url: Optional[str] = None,
        status_callback_url: Optional[str] = None,
    ):
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.provider_request_timeout_seconds
        )
        self.telephony_base_url = (telephony_base_url or settings.twilio_api_base_url).rstrip("/")
        self.speech_base_url = (speech_base_url or settings.elevenlabs_api_base_url).rstrip("/")
        self.call_webhook_url = call_webhook_url or settings.call_webhook_url
        self.status_callback_url = status_callback_url or settings.status_callback_url

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, *, provider: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderTimeout(
                f"{provider} request timed out", provider=provider
            ) from e
        except httpx.HTTPError as e:
            raise ProviderNetworkError(
                f"{provider} request failed: {type(e).__name__}: {e}", provider=provider
            ) from e

        if response.is_error:
            message, provider_code = _error_details(response)
            code = classify_error(provider, response.status_code, message, provider_code)
            logger.warning(
                f"[PROVIDER] {provider} {method} returned {response.status_code} "
                f"({code}): {message}"
            )
            raise ProviderRequestError(
                message, code=code, provider=provider, status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderRequestError(
                f"Invalid response format from {provider}",
                code="INVALID_RESPONSE",
                provider=provider,
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict):
            raise ProviderRequestError(
                f"Invalid response format from {provider}: expected a JSON object",
                code="INVALID_RESPONSE",
                provider=provider,
                status_code=response.status_code,
            )
        return data

    # Telephony provider

    def _account_url(self, credentials: TelephonyCredentials) -> str:
        return f"{self.telephony_base_url}/Accounts/{credentials.account_sid}"

    def build_webhook_url(
        self,
        *,
        prospect_id: str,
        agent_config_id: str,
        voice_id: Optional[str] = None,
        validate_signature: bool = True,
        verbose_protocol_trace: bool = False,
        echo_only: bool = False,
    ) -> str:
        """Build the TwiML webhook URL the telephony provider fetches on answer."""
        params = {"prospect_id": prospect_id, "agent_config_id": agent_config_id}
        if voice_id:
            params["voice_id"] = voice_id
        if not validate_signature:
            params["bypass_validation"] = "true"
        if verbose_protocol_trace:
            params["debug_twiml"] = "true"
        if echo_only:
            params["echo"] = "true"
        separator = "&" if "?" in self.call_webhook_url else "?"
        return f"{self.call_webhook_url}{separator}{urlencode(params)}"

    async def place_call(
        self,
        credentials: TelephonyCredentials,
        to_number: str,
        *,
        prospect_id: str,
        agent_config_id: str,
        voice_id: Optional[str] = None,
        validate_signature: bool = True,
        verbose_protocol_trace: bool = False,
        echo_only: bool = False,
    ) -> PlacedCall:
        """Create an outbound call through the telephony provider."""
        form: Dict[str, Any] = {
            "To": to_number,
            "From": credentials.phone_number,
            "Url": self.build_webhook_url(
                prospect_id=prospect_id,
                agent_config_id=agent_config_id,
                voice_id=voice_id,
                validate_signature=validate_signature,
                verbose_protocol_trace=verbose_protocol_trace,
                echo_only=echo_only,
            ),
            "Record": "true",
        }
        if self.status_callback_url:
            form["StatusCallback"] = self.status_callback_url
            form["StatusCallbackEvent"] = STATUS_CALLBACK_EVENTS
            form["StatusCallbackMethod"] = "POST"

        logger.info(
            f"[PROVIDER] Placing telephony call for account "
            f"{mask_identifier(credentials.account_sid)} "
            f"(signature validation: {'on' if validate_signature else 'BYPASSED'})"
        )
        data = await self._request(
            "POST",
            f"{self._account_url(credentials)}/Calls.json",
            provider=TELEPHONY,
            auth=(credentials.account_sid, credentials.auth_token),
            data=form,
        )
        call_sid = data.get("sid")
        if not call_sid:
            raise ProviderRequestError(
                "Telephony provider accepted the call without returning a call SID",
                code="MISSING_CALL_ID",
                provider=TELEPHONY,
            )
        return PlacedCall(call_id=call_sid, status=data.get("status"))

    async def fetch_call_status(
        self, credentials: TelephonyCredentials, call_id: str
    ) -> ProviderCallStatus:
        data = await self._request(
            "GET",
            f"{self._account_url(credentials)}/Calls/{call_id}.json",
            provider=TELEPHONY,
            auth=(credentials.account_sid, credentials.auth_token),
        )
        try:
            return ProviderCallStatus(
                call_id=data.get("sid") or call_id,
                status=data.get("status") or "",
                duration=data.get("duration"),
                direction=data.get("direction"),
                from_number=data.get("from"),
                to_number=data.get("to"),
                price=data.get("price"),
            )
        except ValidationError as e:
            raise ProviderRequestError(
                f"Unexpected call status payload from {TELEPHONY}: {e.error_count()} invalid field(s)",
                code="INVALID_RESPONSE",
                provider=TELEPHONY,
            ) from e

    async def end_call(
        self, credentials: TelephonyCredentials, call_id: str, status: str = "completed"
    ) -> ProviderCallStatus:
        """Ask the telephony provider to hang up.

        Twilio only accepts ``canceled`` for queued or ringing calls and
        ``completed`` for calls already in progress.
        """
        data = await self._request(
            "POST",
            f"{self._account_url(credentials)}/Calls/{call_id}.json",
            provider=TELEPHONY,
            auth=(credentials.account_sid, credentials.auth_token),
            data={"Status": status},
        )
        return ProviderCallStatus(call_id=call_id, status=data.get("status") or status)

    async def verify_telephony_credentials(self, credentials: TelephonyCredentials) -> bool:
        try:
            await self._request(
                "GET",
                f"{self._account_url(credentials)}.json",
                provider=TELEPHONY,
                auth=(credentials.account_sid, credentials.auth_token),
            )
        except ProviderRequestError as e:
            if e.status_code in (401, 403, 404):
                return False
            raise
        return True

    # Speech/AI provider

    @staticmethod
    def _speech_headers(api_key: str) -> Dict[str, str]:
        return {"xi-api-key": api_key, "Content-Type": "application/json"}

    async def list_voices(self, api_key: str) -> List[Voice]:
        data = await self._request(
            "GET",
            f"{self.speech_base_url}/voices",
            provider=SPEECH,
            headers=self._speech_headers(api_key),
        )
        return [
            Voice(
                voice_id=voice["voice_id"],
                name=voice.get("name") or voice["voice_id"],
                category=voice.get("category"),
            )
            for voice in data.get("voices", [])
            if voice.get("voice_id")
        ]

    async def list_agents(self, api_key: str) -> List[AgentSummary]:
        data = await self._request(
            "GET",
            f"{self.speech_base_url}/convai/agents",
            provider=SPEECH,
            headers=self._speech_headers(api_key),
        )
        agents = []
        for agent in data.get("agents", []):
            agent_id = agent.get("agent_id") or agent.get("id")
            if not agent_id:
                continue
            agents.append(
                AgentSummary(
                    agent_id=agent_id,
                    name=agent.get("name") or f"Agent {agent_id[:8]}",
                    description=agent.get("description"),
                )
            )
        return agents

    async def request_signed_url(self, api_key: str, agent_id: str) -> str:
        """Request a single-use signed URL for a real-time conversation."""
        data = await self._request(
            "GET",
            f"{self.speech_base_url}/convai/conversation/get_signed_url",
            provider=SPEECH,
            headers=self._speech_headers(api_key),
            params={"agent_id": agent_id},
        )
        signed_url = data.get("signed_url")
        if not signed_url:
            raise ProviderRequestError(
                "Speech provider returned a response without signed_url",
                code="INVALID_RESPONSE",
                provider=SPEECH,
            )
        return signed_url

    async def place_agent_call(
        self,
        api_key: str,
        *,
        agent_id: str,
        phone_number_id: str,
        to_number: str,
        dynamic_variables: Optional[Dict[str, Any]] = None,
    ) -> PlacedCall:
        """Place a call through the speech provider's native calling endpoint."""
        logger.info(
            f"[PROVIDER] Placing direct agent call with agent {mask_identifier(agent_id)}"
        )
        data = await self._request(
            "POST",
            f"{self.speech_base_url}/convai/twilio/outbound-call",
            provider=SPEECH,
            headers=self._speech_headers(api_key),
            json={
                "agent_id": agent_id,
                "agent_phone_number_id": phone_number_id,
                "to_number": to_number,
                "conversation_initiation_client_data": {
                    "dynamic_variables": dynamic_variables or {},
                },
            },
        )
        if data.get("success") is False:
            message = data.get("message") or "Speech provider refused the call"
            raise ProviderRequestError(
                message,
                code=classify_error(SPEECH, 200, message),
                provider=SPEECH,
            )

        call_sid = data.get("callSid") or data.get("call_sid")
        if not call_sid:
            raise ProviderRequestError(
                "Speech provider accepted the call without returning a call SID",
                code="MISSING_CALL_ID",
                provider=SPEECH,
            )
        return PlacedCall(call_id=call_sid, conversation_id=data.get("conversation_id"))
