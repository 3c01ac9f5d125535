"""Places calls on behalf of a stored caller."""
import logging
from typing import Optional

from outbound_voice.core.errors import AgentConfigNotFound, ProspectNotFound
from outbound_voice.services.calls.builder import CallOptions, CallRequestBuilder
from outbound_voice.services.calls.lifecycle import CallLifecycleManager
from outbound_voice.services.calls.models import CallHandle, DebugFlags
from outbound_voice.services.store.repository import CallerStore

logger = logging.getLogger(__name__)


class CallDispatcher:
    """Reads the caller's records, builds a CallRequest and submits it."""

    def __init__(
        self,
        store: CallerStore,
        manager: CallLifecycleManager,
        allow_development: Optional[bool] = None,
    ):
        self.store = store
        self.manager = manager
        self.allow_development = allow_development

    async def place(
        self,
        user_id: str,
        prospect_id: str,
        agent_config_id: Optional[str] = None,
        direct_agent_id: Optional[str] = None,
        direct_agent_phone_number_id: Optional[str] = None,
        voice_override: Optional[str] = None,
        development: bool = False,
        debug_flags: Optional[DebugFlags] = None,
    ) -> CallHandle:
        caller = await self.store.get_caller_profile(user_id)

        prospect = await self.store.get_prospect(prospect_id)
        if prospect.user_id != user_id:
            raise ProspectNotFound(
                f"Prospect not found. The prospect with ID {prospect_id} does not exist or has been deleted."
            )

        if agent_config_id:
            agent_config = await self.store.get_agent_config(agent_config_id)
            if agent_config.user_id != user_id:
                raise AgentConfigNotFound(f"Agent configuration {agent_config_id} was not found.")

        options = CallOptions(
            to_number=prospect.phone_number,
            prospect_name=prospect.full_name,
            agent_config_id=agent_config_id,
            direct_agent_id=direct_agent_id,
            direct_agent_phone_number_id=direct_agent_phone_number_id,
            voice_override=voice_override,
            development=development,
            debug_flags=debug_flags or DebugFlags(),
        )
        request = CallRequestBuilder(caller, allow_development=self.allow_development).build(
            prospect_id, options
        )
        logger.info(
            f"[CALL DISPATCH] Placing {request.execution_mode.value} call for user {user_id} "
            f"to prospect {prospect_id}"
        )
        return await self.manager.submit(request)
