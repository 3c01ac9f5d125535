"""Speech provider catalog and credential check endpoints."""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from outbound_voice.api.errors import to_http_exception
from outbound_voice.core.dependencies import get_caller_store, get_provider_client
from outbound_voice.core.errors import CredentialMissing, OrchestratorError
from outbound_voice.services.providers.client import ProviderClient
from outbound_voice.services.providers.models import AgentSummary, TelephonyCredentials, Voice
from outbound_voice.services.store.repository import CallerStore

router = APIRouter()
logger = logging.getLogger(__name__)


class VerifyCredentialsBody(BaseModel):
    account_sid: str
    auth_token: str = Field(repr=False)
    phone_number: str


class VerifyCredentialsResponse(BaseModel):
    valid: bool


async def _speech_api_key(store: CallerStore, user_id: str) -> str:
    profile = await store.get_caller_profile(user_id)
    api_key = (profile.elevenlabs_api_key or "").strip()
    if not api_key:
        raise CredentialMissing()
    return api_key


@router.get("/api/voices", response_model=List[Voice])
async def list_voices(
    user_id: str,
    store: CallerStore = Depends(get_caller_store),
    provider: ProviderClient = Depends(get_provider_client),
):
    """Voices available to the caller's speech provider account."""
    logger.info(f"[CATALOG] Voices requested - user: {user_id}")
    try:
        api_key = await _speech_api_key(store, user_id)
        voices = await provider.list_voices(api_key)
    except OrchestratorError as e:
        logger.warning(f"[CATALOG] Could not list voices: {e.code}: {e.message}")
        raise to_http_exception(e)
    logger.info(f"[CATALOG] Returning {len(voices)} voices")
    return voices


@router.get("/api/agents", response_model=List[AgentSummary])
async def list_agents(
    user_id: str,
    store: CallerStore = Depends(get_caller_store),
    provider: ProviderClient = Depends(get_provider_client),
):
    """Conversational agents configured in the caller's speech provider account."""
    logger.info(f"[CATALOG] Agents requested - user: {user_id}")
    try:
        api_key = await _speech_api_key(store, user_id)
        agents = await provider.list_agents(api_key)
    except OrchestratorError as e:
        logger.warning(f"[CATALOG] Could not list agents: {e.code}: {e.message}")
        raise to_http_exception(e)
    logger.info(f"[CATALOG] Returning {len(agents)} agents")
    return agents


@router.post("/api/credentials/verify", response_model=VerifyCredentialsResponse)
async def verify_credentials(
    body: VerifyCredentialsBody,
    provider: ProviderClient = Depends(get_provider_client),
):
    """Check telephony credentials against the provider before they are saved."""
    credentials = TelephonyCredentials(
        account_sid=body.account_sid.strip(),
        auth_token=body.auth_token.strip(),
        phone_number=body.phone_number.strip(),
    )
    try:
        valid = await provider.verify_telephony_credentials(credentials)
    except OrchestratorError as e:
        logger.warning(f"[CATALOG] Credential check failed: {e.code}: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"[CATALOG] Error verifying credentials: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error verifying credentials: {str(e)}")
    return VerifyCredentialsResponse(valid=valid)
