"""Read-only access to caller profiles, prospects and agent configs."""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from outbound_voice.core.errors import AgentConfigNotFound, ProfileNotFound, ProspectNotFound
from outbound_voice.db.models import AgentConfig, Profile, Prospect
from outbound_voice.services.store.models import AgentConfigRecord, CallerProfile, ProspectRecord


class CallerStore:
    """Store lookups for the call orchestrator. Performs no writes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_caller_profile(self, user_id: str) -> CallerProfile:
        """Get the caller's profile with provider credentials."""
        result = await self.db.execute(select(Profile).where(Profile.id == user_id))
        profile = result.scalar_one_or_none()
        if not profile:
            raise ProfileNotFound(
                "Profile setup incomplete. Visit your profile settings and verify your credentials."
            )
        return CallerProfile(
            user_id=profile.id,
            twilio_account_sid=profile.twilio_account_sid,
            twilio_auth_token=profile.twilio_auth_token,
            twilio_phone_number=profile.twilio_phone_number,
            elevenlabs_api_key=profile.elevenlabs_api_key,
            elevenlabs_phone_number_id=profile.elevenlabs_phone_number_id,
        )

    async def get_prospect(self, prospect_id: str) -> ProspectRecord:
        result = await self.db.execute(select(Prospect).where(Prospect.id == prospect_id))
        prospect = result.scalar_one_or_none()
        if not prospect:
            raise ProspectNotFound(
                f"Prospect not found. The prospect with ID {prospect_id} does not exist or has been deleted."
            )
        return ProspectRecord.model_validate(prospect)

    async def get_agent_config(self, agent_config_id: str) -> AgentConfigRecord:
        result = await self.db.execute(
            select(AgentConfig).where(AgentConfig.id == agent_config_id)
        )
        agent_config = result.scalar_one_or_none()
        if not agent_config:
            raise AgentConfigNotFound(f"Agent configuration {agent_config_id} was not found.")
        return AgentConfigRecord.model_validate(agent_config)
