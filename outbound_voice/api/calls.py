"""Outbound call API endpoints."""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from outbound_voice.api.errors import to_http_exception
from outbound_voice.core.dependencies import get_call_dispatcher, get_call_manager
from outbound_voice.core.errors import OrchestratorError, UnknownCall
from outbound_voice.services.calls.dispatch import CallDispatcher
from outbound_voice.services.calls.lifecycle import CallLifecycleManager
from outbound_voice.services.calls.models import CallHandle, DebugFlags, TerminationResult
from outbound_voice.services.calls.status import canonical_status, state_label

router = APIRouter()
logger = logging.getLogger(__name__)


class PlaceCallBody(BaseModel):
    """Call dialog selection."""
    user_id: str
    prospect_id: str
    agent_config_id: Optional[str] = None
    direct_agent_id: Optional[str] = None
    direct_agent_phone_number_id: Optional[str] = None
    voice_override: Optional[str] = None
    development: bool = False
    debug_flags: DebugFlags = Field(default_factory=DebugFlags)


class CallResponse(BaseModel):
    """Read-only view of a tracked call."""
    call_id: str
    prospect_id: str
    execution_mode: str
    state: str
    status: str
    label: str
    is_terminal: bool
    stuck_in_queue: bool = False
    conversation_id: Optional[str] = None
    failure_reason: Optional[str] = None
    warnings: List[str] = []
    created_at: datetime
    updated_at: datetime
    ended_at: Optional[datetime] = None


def _owned_handle(manager: CallLifecycleManager, call_id: str, user_id: str) -> CallHandle:
    """Tracked handle for ``call_id``, hidden from anyone but the caller who placed it."""
    handle = manager.get(call_id)
    if handle.request.user_id != user_id:
        raise UnknownCall(f"No call with id {call_id} is tracked")
    return handle


def _call_response(handle: CallHandle, stuck_in_queue: bool = False) -> CallResponse:
    return CallResponse(
        call_id=handle.provider_call_id,
        prospect_id=handle.request.prospect_id,
        execution_mode=handle.request.execution_mode.value,
        state=handle.state.value,
        status=canonical_status(handle.state),
        label=state_label(handle.state, handle.failure_reason, stuck_in_queue),
        is_terminal=handle.state.is_terminal,
        stuck_in_queue=stuck_in_queue,
        conversation_id=handle.conversation_id,
        failure_reason=handle.failure_reason,
        warnings=list(handle.request.warnings),
        created_at=handle.created_at,
        updated_at=handle.updated_at,
        ended_at=handle.ended_at,
    )


@router.post("/api/calls", response_model=CallResponse, status_code=201)
async def place_call(
    request: Request,
    body: PlaceCallBody,
    dispatcher: CallDispatcher = Depends(get_call_dispatcher),
):
    """Place an outbound call to a prospect."""
    logger.info(
        f"[CALLS] Place call requested - user: {body.user_id}, prospect: {body.prospect_id}, "
        f"Client: {request.client.host if request.client else 'unknown'}"
    )
    try:
        handle = await dispatcher.place(
            body.user_id,
            body.prospect_id,
            agent_config_id=body.agent_config_id,
            direct_agent_id=body.direct_agent_id,
            direct_agent_phone_number_id=body.direct_agent_phone_number_id,
            voice_override=body.voice_override,
            development=body.development,
            debug_flags=body.debug_flags,
        )
    except OrchestratorError as e:
        logger.warning(f"[CALLS] Call for prospect {body.prospect_id} not placed: {e.code}: {e.message}")
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"[CALLS] Error placing call: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error placing call: {str(e)}")

    logger.info(f"[CALLS] Call {handle.provider_call_id} placed for prospect {body.prospect_id}")
    return _call_response(handle)


@router.get("/api/calls/{call_id}", response_model=CallResponse)
async def get_call(
    call_id: str,
    user_id: str,
    manager: CallLifecycleManager = Depends(get_call_manager),
):
    """Current state of a tracked call."""
    try:
        handle = _owned_handle(manager, call_id, user_id).model_copy(deep=True)
    except OrchestratorError as e:
        raise to_http_exception(e)
    return _call_response(handle, manager.is_stuck_in_queue(handle))


@router.post("/api/calls/{call_id}/end", response_model=TerminationResult)
async def end_call(
    call_id: str,
    user_id: str,
    manager: CallLifecycleManager = Depends(get_call_manager),
):
    """End a tracked call.

    A failed termination is reported in the body with ``success: false`` and
    leaves the call state untouched so the user can try again.
    """
    logger.info(f"[CALLS] End requested for call {call_id}")
    try:
        handle = _owned_handle(manager, call_id, user_id)
    except OrchestratorError as e:
        raise to_http_exception(e)

    result = await manager.end(handle)
    if not result.success:
        logger.warning(f"[CALLS] Call {call_id} not ended: {result.error_code}: {result.message}")
    return result
