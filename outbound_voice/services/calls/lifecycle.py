"""Call lifecycle manager."""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from outbound_voice.core.config import settings
from outbound_voice.core.errors import (
    CallRejected,
    ProviderError,
    ProviderRequestError,
    ProviderTimeout,
    UnknownCall,
)
from outbound_voice.core.logging import mask_identifier
from outbound_voice.services.calls.models import (
    WATCH_TIMED_OUT,
    CallHandle,
    CallRequest,
    CallState,
    ExecutionMode,
    TerminationOutcome,
    TerminationResult,
    utcnow,
)
from outbound_voice.services.calls.reconciliation import StatusReconciliationLoop
from outbound_voice.services.calls.status import is_stuck_in_queue, map_provider_status
from outbound_voice.services.providers.client import ProviderClient
from outbound_voice.services.providers.models import PlacedCall

logger = logging.getLogger(__name__)

TransitionObserver = Callable[[CallHandle, CallState, CallState], None]

# Twilio accepts "canceled" only before the call is answered
_CANCELABLE_STATES = {CallState.QUEUED, CallState.RINGING}


class CallLifecycleManager:
    """Owns every CallHandle from provider acceptance to a terminal state.

    State changes come from two places only: the reconciliation loop watching
    the handle and ``end()``. Transitions never move backwards and nothing
    follows a terminal state.
    """

    def __init__(
        self,
        provider: ProviderClient,
        on_transition: Optional[TransitionObserver] = None,
        request_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        watch_timeout: Optional[float] = None,
        status_timeout: Optional[float] = None,
        retention: Optional[float] = None,
        stuck_queue_threshold: Optional[float] = None,
    ):
        self.provider = provider
        self.on_transition = on_transition
        self.request_timeout = (
            settings.provider_request_timeout_seconds if request_timeout is None else request_timeout
        )
        self.retention = settings.terminal_retention_seconds if retention is None else retention
        self.stuck_queue_threshold = (
            settings.stuck_queue_threshold_seconds
            if stuck_queue_threshold is None
            else stuck_queue_threshold
        )
        self.reconciliation = StatusReconciliationLoop(
            provider,
            on_status=self._apply_provider_status,
            on_expired=self._expire,
            poll_interval=poll_interval,
            watch_timeout=watch_timeout,
            status_timeout=status_timeout,
        )
        self._handles: Dict[str, CallHandle] = {}
        self._pending_ends: Dict[str, "asyncio.Future[TerminationResult]"] = {}
        self._terminations: Dict[str, TerminationResult] = {}
        self._evictions: Dict[str, asyncio.TimerHandle] = {}
        self._strategies: Dict[ExecutionMode, Callable[[CallRequest], Awaitable[PlacedCall]]] = {
            ExecutionMode.STANDARD: self._place_standard,
            ExecutionMode.DEVELOPMENT: self._place_development,
            ExecutionMode.DIRECT_AGENT: self._place_direct_agent,
        }

    # Submission

    async def submit(self, request: CallRequest) -> CallHandle:
        """Place the call and start watching it.

        Raises CallRejected when the provider refuses the call and
        ProviderTimeout when it does not answer in time. No handle exists
        in either case. Not safe to cancel: the provider may already have
        accepted the call.
        """
        logger.info(
            f"[CALL LIFECYCLE] Submitting {request.execution_mode.value} call for prospect "
            f"{request.prospect_id} (state: {CallState.SUBMITTING.value})"
        )
        strategy = self._strategies[request.execution_mode]

        try:
            placed = await asyncio.wait_for(strategy(request), timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            logger.error(
                f"[CALL LIFECYCLE] Call request for prospect {request.prospect_id} timed out "
                f"after {self.request_timeout:.0f}s"
            )
            raise ProviderTimeout(
                f"Call request timed out after {self.request_timeout:.0f} seconds"
            ) from e
        except ProviderRequestError as e:
            logger.warning(
                f"[CALL LIFECYCLE] Provider rejected call for prospect {request.prospect_id}: "
                f"{e.code}: {e.message}"
            )
            raise CallRejected(e.code, e.message) from e

        handle = CallHandle(
            provider_call_id=placed.call_id,
            request=request,
            state=CallState.QUEUED,
            conversation_id=placed.conversation_id,
        )
        self._handles[handle.provider_call_id] = handle
        logger.info(
            f"[CALL LIFECYCLE] Call {mask_identifier(handle.provider_call_id, 12)} accepted "
            f"for prospect {request.prospect_id} (state: {handle.state.value})"
        )
        self._notify(handle, CallState.SUBMITTING, handle.state)
        self.reconciliation.watch(handle)
        return handle

    async def _place_telephony(self, request: CallRequest, validate_signature: bool) -> PlacedCall:
        return await self.provider.place_call(
            request.credentials,
            request.to_number,
            prospect_id=request.prospect_id,
            agent_config_id=request.agent_config_id,
            voice_id=request.voice_override,
            validate_signature=validate_signature,
            verbose_protocol_trace=request.debug_flags.verbose_protocol_trace,
            echo_only=request.debug_flags.echo_only,
        )

    async def _place_standard(self, request: CallRequest) -> PlacedCall:
        return await self._place_telephony(request, validate_signature=True)

    async def _place_development(self, request: CallRequest) -> PlacedCall:
        return await self._place_telephony(request, validate_signature=False)

    async def _place_direct_agent(self, request: CallRequest) -> PlacedCall:
        dynamic_variables = {"user_name": request.prospect_name} if request.prospect_name else {}
        return await self.provider.place_agent_call(
            request.speech_api_key,
            agent_id=request.direct_agent_id,
            phone_number_id=request.direct_agent_phone_number_id,
            to_number=request.to_number,
            dynamic_variables=dynamic_variables,
        )

    # Termination

    async def end(self, handle: CallHandle) -> TerminationResult:
        """End a call. Idempotent.

        Concurrent callers share one termination request and receive the
        same result. A failed request leaves the state untouched so the
        caller may retry.
        """
        call_id = handle.provider_call_id
        pending = self._pending_ends.get(call_id)
        if pending is None:
            pending = asyncio.ensure_future(self._terminate(self._handles.get(call_id, handle)))
            self._pending_ends[call_id] = pending
            pending.add_done_callback(lambda future: self._clear_pending_end(call_id, future))
        return await asyncio.shield(pending)

    def _clear_pending_end(self, call_id: str, future: "asyncio.Future[TerminationResult]") -> None:
        if self._pending_ends.get(call_id) is future:
            del self._pending_ends[call_id]

    async def _terminate(self, handle: CallHandle) -> TerminationResult:
        call_id = handle.provider_call_id

        previous = self._terminations.get(call_id)
        if previous is not None:
            return previous

        if handle.state.is_terminal:
            result = TerminationResult(
                success=True,
                outcome=TerminationOutcome.ALREADY_TERMINAL,
                state=handle.state,
                message="Call has already ended",
            )
            if self._handles.get(call_id) is handle:
                self._terminations[call_id] = result
            return result

        hangup_status = "canceled" if handle.state in _CANCELABLE_STATES else "completed"
        logger.info(f"[CALL LIFECYCLE] Requesting termination of call {call_id} ({hangup_status})")
        try:
            await asyncio.wait_for(
                self.provider.end_call(handle.request.credentials, call_id, status=hangup_status),
                timeout=self.request_timeout,
            )
        except (asyncio.TimeoutError, ProviderTimeout):
            logger.error(f"[CALL LIFECYCLE] Termination of call {call_id} timed out")
            return TerminationResult(
                success=False,
                outcome=TerminationOutcome.FAILED,
                state=handle.state,
                error_code=ProviderTimeout.code,
                message=f"Termination request timed out after {self.request_timeout:.0f} seconds",
            )
        except ProviderError as e:
            logger.error(f"[CALL LIFECYCLE] Termination of call {call_id} failed: {e.code}: {e.message}")
            return TerminationResult(
                success=False,
                outcome=TerminationOutcome.FAILED,
                state=handle.state,
                error_code=e.code,
                message=e.message,
            )

        self.reconciliation.cancel(call_id)
        self._transition(handle, CallState.CANCELED)
        result = TerminationResult(
            success=True,
            outcome=TerminationOutcome.ENDED,
            state=handle.state,
            message="Call termination requested successfully",
        )
        self._terminations[call_id] = result
        return result

    # State

    def current_state(self, handle: CallHandle) -> CallState:
        owned = self._handles.get(handle.provider_call_id)
        return owned.state if owned else handle.state

    def get(self, call_id: str) -> CallHandle:
        handle = self._handles.get(call_id)
        if handle is None:
            raise UnknownCall(f"No call with id {call_id} is tracked")
        return handle

    def snapshot(self, call_id: str) -> CallHandle:
        """Read-only copy of a handle for the UI."""
        return self.get(call_id).model_copy(deep=True)

    def handles(self) -> List[CallHandle]:
        return [handle.model_copy(deep=True) for handle in self._handles.values()]

    def tracked_count(self) -> int:
        return len(self._handles)

    def is_stuck_in_queue(self, handle: CallHandle, now: Optional[datetime] = None) -> bool:
        return is_stuck_in_queue(handle.state, handle.created_at, self.stuck_queue_threshold, now)

    def detach(self, handle: CallHandle) -> None:
        """Stop tracking a handle and cancel its watch."""
        call_id = handle.provider_call_id
        self.reconciliation.cancel(call_id)
        eviction = self._evictions.pop(call_id, None)
        if eviction is not None:
            eviction.cancel()
        self._handles.pop(call_id, None)
        self._terminations.pop(call_id, None)
        logger.info(f"[CALL LIFECYCLE] Detached call {call_id}")

    async def shutdown(self) -> None:
        for eviction in self._evictions.values():
            eviction.cancel()
        self._evictions.clear()
        await self.reconciliation.cancel_all()

    def _schedule_eviction(self, handle: CallHandle) -> None:
        call_id = handle.provider_call_id
        if self._handles.get(call_id) is not handle or call_id in self._evictions:
            return
        loop = asyncio.get_running_loop()
        self._evictions[call_id] = loop.call_later(self.retention, self._evict, call_id, handle)

    def _evict(self, call_id: str, handle: CallHandle) -> None:
        self._evictions.pop(call_id, None)
        if self._handles.get(call_id) is not handle:
            return
        del self._handles[call_id]
        self._terminations.pop(call_id, None)
        logger.info(
            f"[CALL LIFECYCLE] Dropped call {call_id} ({handle.state.value}) after "
            f"{self.retention:.0f}s retention"
        )

    def _apply_provider_status(self, handle: CallHandle, raw_status: str) -> CallState:
        new_state = map_provider_status(raw_status, handle.state)
        self._transition(handle, new_state)
        return handle.state

    def _expire(self, handle: CallHandle) -> None:
        self._transition(handle, CallState.FAILED, failure_reason=WATCH_TIMED_OUT)

    def _transition(
        self, handle: CallHandle, new_state: CallState, failure_reason: Optional[str] = None
    ) -> bool:
        old_state = handle.state
        if old_state == new_state:
            return False
        if old_state.is_terminal:
            logger.debug(
                f"[CALL LIFECYCLE] Ignoring {new_state.value} for call {handle.provider_call_id}; "
                f"already {old_state.value}"
            )
            return False
        if new_state.rank < old_state.rank:
            logger.info(
                f"[CALL LIFECYCLE] Ignoring out-of-order {new_state.value} for call "
                f"{handle.provider_call_id} in state {old_state.value}"
            )
            return False

        now = utcnow()
        handle.state = new_state
        handle.updated_at = now
        if new_state.is_terminal:
            handle.ended_at = now
            handle.failure_reason = failure_reason

        logger.info(
            f"[CALL LIFECYCLE] Call {handle.provider_call_id}: {old_state.value} -> {new_state.value}"
        )
        self._notify(handle, old_state, new_state)
        if new_state.is_terminal:
            self._schedule_eviction(handle)
        return True

    def _notify(self, handle: CallHandle, old_state: CallState, new_state: CallState) -> None:
        if self.on_transition is None:
            return
        try:
            self.on_transition(handle, old_state, new_state)
        except Exception:
            logger.exception(
                f"[CALL LIFECYCLE] Transition observer failed for call {handle.provider_call_id}"
            )
