"""Unit tests for the call lifecycle manager."""
import asyncio
from datetime import timedelta
import pytest

from outbound_voice.core.errors import (
    CallRejected,
    ProviderNetworkError,
    ProviderRequestError,
    ProviderTimeout,
    UnknownCall,
)
from outbound_voice.services.calls.lifecycle import CallLifecycleManager
from outbound_voice.services.calls.models import (
    CallState,
    DebugFlags,
    ExecutionMode,
    TerminationOutcome,
)
from outbound_voice.services.providers.models import PlacedCall


async def wait_for_watch(manager, handle):
    """Wait for the handle's watch to stop, if it is still running."""
    watch = manager.reconciliation.get(handle.provider_call_id)
    if watch is not None:
        await asyncio.wait_for(watch.wait(), timeout=2.0)


async def wait_for_state(manager, handle, state):
    for _ in range(200):
        if manager.current_state(handle) == state:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"call never reached {state}")


class TestSubmitStrategies:
    """Exactly one provider endpoint per submit."""

    @pytest.mark.asyncio
    async def test_standard_call(self, call_manager, mock_provider, build_request):
        """Standard calls go through the telephony endpoint with signature validation."""
        request = build_request(agent_config_id="a1", voice_override="voice-b")
        assert request.execution_mode == ExecutionMode.STANDARD

        handle = await call_manager.submit(request)

        assert handle.state == CallState.QUEUED
        assert handle.provider_call_id == "CA-standard-1"
        mock_provider.place_call.assert_awaited_once()
        kwargs = mock_provider.place_call.await_args.kwargs
        assert kwargs["validate_signature"] is True
        assert kwargs["voice_id"] == "voice-b"
        assert kwargs["agent_config_id"] == "a1"
        mock_provider.place_agent_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_development_call_with_echo(self, call_manager, mock_provider, build_request):
        """Development calls bypass signature validation and carry the debug flags."""
        request = build_request(development=True, debug_flags=DebugFlags(echo_only=True))
        assert request.execution_mode == ExecutionMode.DEVELOPMENT

        await call_manager.submit(request)

        mock_provider.place_call.assert_awaited_once()
        kwargs = mock_provider.place_call.await_args.kwargs
        assert kwargs["validate_signature"] is False
        assert kwargs["echo_only"] is True
        mock_provider.place_agent_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_direct_agent_call(self, call_manager, mock_provider, build_request):
        """Direct agent calls use the speech provider's native endpoint only."""
        request = build_request(direct_agent_id="d1")

        handle = await call_manager.submit(request)

        mock_provider.place_agent_call.assert_awaited_once()
        kwargs = mock_provider.place_agent_call.await_args.kwargs
        assert kwargs["agent_id"] == "d1"
        assert kwargs["phone_number_id"] == "phnum_123"
        assert kwargs["dynamic_variables"] == {"user_name": "Dana Reyes"}
        mock_provider.place_call.assert_not_awaited()
        assert handle.provider_call_id == "CA-agent-1"
        assert handle.conversation_id == "conv_1"


class TestSubmitFailures:
    """Failed submits never create a handle."""

    @pytest.mark.asyncio
    async def test_provider_rejection(self, call_manager, mock_provider, build_request):
        mock_provider.place_call.side_effect = ProviderRequestError(
            "The number is unverified. Trial accounts cannot call unverified numbers",
            code="TRIAL_ACCOUNT_RESTRICTION",
            provider="twilio",
            status_code=400,
        )

        with pytest.raises(CallRejected) as exc_info:
            await call_manager.submit(build_request())

        assert exc_info.value.provider_error_code == "TRIAL_ACCOUNT_RESTRICTION"
        assert "Trial accounts" in exc_info.value.message
        assert call_manager.handles() == []

    @pytest.mark.asyncio
    async def test_missing_binding_rejection_from_speech_provider(
        self, call_manager, mock_provider, build_request
    ):
        mock_provider.place_agent_call.side_effect = ProviderRequestError(
            "agent_phone_number_id is not valid",
            code="MISSING_PHONE_NUMBER_BINDING",
            provider="elevenlabs",
            status_code=422,
        )

        with pytest.raises(CallRejected) as exc_info:
            await call_manager.submit(build_request(direct_agent_id="d1"))
        assert exc_info.value.to_dict()["provider_error_code"] == "MISSING_PHONE_NUMBER_BINDING"

    @pytest.mark.asyncio
    async def test_submit_timeout(self, mock_provider, build_request):
        async def stalled(*args, **kwargs):
            await asyncio.sleep(5)

        mock_provider.place_call.side_effect = stalled
        manager = CallLifecycleManager(mock_provider, request_timeout=0.05, poll_interval=0.01)

        with pytest.raises(ProviderTimeout):
            await manager.submit(build_request())
        assert manager.handles() == []

    @pytest.mark.asyncio
    async def test_network_failure_propagates(self, call_manager, mock_provider, build_request):
        mock_provider.place_call.side_effect = ProviderNetworkError("connection refused", provider="twilio")

        with pytest.raises(ProviderNetworkError):
            await call_manager.submit(build_request())
        assert call_manager.handles() == []


class TestReconciledLifecycle:
    """State driven by the reconciliation loop."""

    @pytest.mark.asyncio
    async def test_standard_call_runs_to_completion(
        self, call_manager, mock_provider, build_request, status_sequence
    ):
        """Queued, then ringing, in-progress and completed over three polls."""
        mock_provider.fetch_call_status.side_effect = status_sequence(
            "ringing", "in-progress", "completed"
        )

        handle = await call_manager.submit(build_request(agent_config_id="a1"))
        assert handle.state == CallState.QUEUED

        await wait_for_watch(call_manager, handle)

        assert call_manager.current_state(handle) == CallState.COMPLETED
        assert mock_provider.fetch_call_status.await_count == 3
        assert not call_manager.reconciliation.is_watching(handle.provider_call_id)
        assert handle.ended_at is not None

    @pytest.mark.asyncio
    async def test_states_never_go_backwards(
        self, mock_provider, build_request, status_sequence
    ):
        observed = []
        manager = CallLifecycleManager(
            mock_provider,
            on_transition=lambda handle, old, new: observed.append(new),
            poll_interval=0.01,
            watch_timeout=5.0,
        )
        mock_provider.fetch_call_status.side_effect = status_sequence(
            "ringing", "queued", "in-progress", "ringing", "completed", "in-progress"
        )

        handle = await manager.submit(build_request())
        await wait_for_watch(manager, handle)

        assert observed == [
            CallState.QUEUED,
            CallState.RINGING,
            CallState.IN_PROGRESS,
            CallState.COMPLETED,
        ]
        ranks = [state.rank for state in observed]
        assert ranks == sorted(ranks)
        assert mock_provider.fetch_call_status.await_count == 5

    @pytest.mark.asyncio
    async def test_transition_observer_errors_do_not_stop_tracking(
        self, mock_provider, build_request, status_sequence
    ):
        def broken_observer(handle, old, new):
            raise RuntimeError("observer failed")

        manager = CallLifecycleManager(mock_provider, on_transition=broken_observer, poll_interval=0.01)
        mock_provider.fetch_call_status.side_effect = status_sequence("ringing", "busy")

        handle = await manager.submit(build_request())
        await wait_for_watch(manager, handle)

        assert manager.current_state(handle) == CallState.BUSY


class TestEnd:
    """Termination through the telephony provider."""

    @pytest.mark.asyncio
    async def test_end_queued_call_cancels(self, call_manager, mock_provider, build_request):
        handle = await call_manager.submit(build_request())

        result = await call_manager.end(handle)

        assert result.success is True
        assert result.outcome == TerminationOutcome.ENDED
        assert result.state == CallState.CANCELED
        mock_provider.end_call.assert_awaited_once()
        assert mock_provider.end_call.await_args.kwargs["status"] == "canceled"
        assert call_manager.current_state(handle) == CallState.CANCELED
        assert not call_manager.reconciliation.is_watching(handle.provider_call_id)

    @pytest.mark.asyncio
    async def test_end_in_progress_call_completes(
        self, call_manager, mock_provider, build_request, status_sequence
    ):
        mock_provider.fetch_call_status.side_effect = status_sequence("in-progress")
        handle = await call_manager.submit(build_request())
        await wait_for_state(call_manager, handle, CallState.IN_PROGRESS)

        result = await call_manager.end(handle)

        assert result.success is True
        assert mock_provider.end_call.await_args.kwargs["status"] == "completed"
        assert call_manager.current_state(handle) == CallState.CANCELED

    @pytest.mark.asyncio
    async def test_end_is_idempotent_on_terminal_call(
        self, call_manager, mock_provider, build_request, status_sequence
    ):
        """Ending an already-finished call twice never contacts the provider."""
        mock_provider.fetch_call_status.side_effect = status_sequence("completed")
        handle = await call_manager.submit(build_request())
        await wait_for_watch(call_manager, handle)

        first = await call_manager.end(handle)
        second = await call_manager.end(handle)

        assert first.success and second.success
        assert first.outcome == TerminationOutcome.ALREADY_TERMINAL
        assert second == first
        mock_provider.end_call.assert_not_awaited()
        assert call_manager.current_state(handle) == CallState.COMPLETED

    @pytest.mark.asyncio
    async def test_concurrent_end_sends_one_request(self, call_manager, mock_provider, build_request):
        """Two callers ending at once share one provider request and one result."""
        async def slow_end(*args, **kwargs):
            await asyncio.sleep(0.05)

        mock_provider.end_call.side_effect = slow_end
        handle = await call_manager.submit(build_request())

        first, second = await asyncio.gather(call_manager.end(handle), call_manager.end(handle))

        assert mock_provider.end_call.await_count == 1
        assert first == second
        assert first.success is True
        assert first.outcome == TerminationOutcome.ENDED

    @pytest.mark.asyncio
    async def test_end_after_end_returns_stored_result(self, call_manager, mock_provider, build_request):
        handle = await call_manager.submit(build_request())

        first = await call_manager.end(handle)
        second = await call_manager.end(handle)

        assert second == first
        assert mock_provider.end_call.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_end_leaves_state_and_allows_retry(
        self, call_manager, mock_provider, build_request
    ):
        mock_provider.end_call.side_effect = ProviderRequestError(
            "Call is not in a state that can be modified",
            code="PROVIDER_ERROR",
            provider="twilio",
            status_code=400,
        )
        handle = await call_manager.submit(build_request())

        result = await call_manager.end(handle)

        assert result.success is False
        assert result.outcome == TerminationOutcome.FAILED
        assert result.error_code == "PROVIDER_ERROR"
        assert call_manager.current_state(handle) == CallState.QUEUED
        assert call_manager.reconciliation.is_watching(handle.provider_call_id)

        mock_provider.end_call.side_effect = None
        retry = await call_manager.end(handle)

        assert retry.success is True
        assert mock_provider.end_call.await_count == 2

    @pytest.mark.asyncio
    async def test_end_timeout(self, mock_provider, build_request):
        async def stalled(*args, **kwargs):
            await asyncio.sleep(5)

        mock_provider.end_call.side_effect = stalled
        manager = CallLifecycleManager(mock_provider, request_timeout=0.05, poll_interval=0.01)
        handle = await manager.submit(build_request())

        result = await manager.end(handle)

        assert result.success is False
        assert result.error_code == "PROVIDER_TIMEOUT"
        assert manager.current_state(handle) == CallState.QUEUED
        await manager.shutdown()


class TestHandleAccess:
    """Read-only access for the UI."""

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self, call_manager, build_request):
        handle = await call_manager.submit(build_request())

        snapshot = call_manager.snapshot(handle.provider_call_id)
        snapshot.state = CallState.COMPLETED

        assert call_manager.current_state(handle) == CallState.QUEUED
        assert call_manager.get(handle.provider_call_id) is handle

    @pytest.mark.asyncio
    async def test_unknown_call(self, call_manager):
        with pytest.raises(UnknownCall):
            call_manager.get("CA-missing")

    @pytest.mark.asyncio
    async def test_detach_cancels_watch(self, call_manager, build_request):
        handle = await call_manager.submit(build_request())
        watch = call_manager.reconciliation.get(handle.provider_call_id)

        call_manager.detach(handle)
        await watch.wait()

        assert watch.cancelled()
        assert call_manager.handles() == []
        assert handle.state == CallState.QUEUED


class TestRetention:
    """Terminal calls are dropped after the retention period."""

    @pytest.mark.asyncio
    async def test_terminal_calls_are_evicted(self, mock_provider, build_request, status_sequence):
        mock_provider.place_call.side_effect = [
            PlacedCall(call_id=f"CA-done-{i}", status="queued") for i in range(3)
        ]
        mock_provider.fetch_call_status.side_effect = status_sequence("completed")
        manager = CallLifecycleManager(mock_provider, poll_interval=0.01, retention=0.05)

        handles = [await manager.submit(build_request()) for _ in range(3)]
        for handle in handles:
            await wait_for_watch(manager, handle)
            assert handle.state == CallState.COMPLETED

        await asyncio.sleep(0.2)

        assert manager.tracked_count() == 0
        with pytest.raises(UnknownCall):
            manager.get(handles[0].provider_call_id)
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_ended_call_is_evicted_with_its_result(self, mock_provider, build_request):
        manager = CallLifecycleManager(mock_provider, poll_interval=60.0, retention=0.05)
        handle = await manager.submit(build_request())

        result = await manager.end(handle)
        assert result.outcome == TerminationOutcome.ENDED
        assert manager.tracked_count() == 1

        await asyncio.sleep(0.2)

        assert manager.tracked_count() == 0
        again = await manager.end(handle)
        assert again.outcome == TerminationOutcome.ALREADY_TERMINAL
        assert mock_provider.end_call.await_count == 1
        assert manager._terminations == {}
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_live_calls_are_kept(self, mock_provider, build_request):
        manager = CallLifecycleManager(mock_provider, poll_interval=0.01, retention=0.01)

        await manager.submit(build_request())
        await asyncio.sleep(0.1)

        assert manager.tracked_count() == 1
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_detach_cancels_pending_eviction(self, mock_provider, build_request, status_sequence):
        mock_provider.fetch_call_status.side_effect = status_sequence("busy")
        manager = CallLifecycleManager(mock_provider, poll_interval=0.01, retention=60.0)
        handle = await manager.submit(build_request())
        await wait_for_watch(manager, handle)

        manager.detach(handle)

        assert manager.tracked_count() == 0
        assert manager._evictions == {}
        await manager.shutdown()


class TestStuckInQueue:
    """Calls sitting in queued past the threshold are flagged."""

    @pytest.mark.asyncio
    async def test_queued_call_becomes_stuck(self, mock_provider, build_request):
        manager = CallLifecycleManager(mock_provider, poll_interval=60.0, stuck_queue_threshold=60.0)
        handle = await manager.submit(build_request())

        assert manager.is_stuck_in_queue(handle) is False
        assert manager.is_stuck_in_queue(handle, now=handle.created_at + timedelta(seconds=61)) is True
        await manager.shutdown()

    @pytest.mark.asyncio
    async def test_ringing_call_is_not_stuck(self, mock_provider, build_request, status_sequence):
        mock_provider.fetch_call_status.side_effect = status_sequence("ringing")
        manager = CallLifecycleManager(mock_provider, poll_interval=60.0, stuck_queue_threshold=60.0)
        handle = await manager.submit(build_request())
        await wait_for_state(manager, handle, CallState.RINGING)

        assert manager.is_stuck_in_queue(handle, now=handle.created_at + timedelta(minutes=5)) is False
        await manager.shutdown()
