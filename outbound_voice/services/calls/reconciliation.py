"""Background status polling for in-flight calls."""
import asyncio
import logging
from typing import Callable, Dict, List, Optional

from outbound_voice.core.config import settings
from outbound_voice.core.errors import ProviderError, WatchAlreadyActive
from outbound_voice.services.calls.models import CallHandle, CallState
from outbound_voice.services.providers.client import ProviderClient

logger = logging.getLogger(__name__)

StatusHandler = Callable[[CallHandle, str], CallState]
ExpiryHandler = Callable[[CallHandle], None]


class WatchTask:
    """Cancellable handle on a running status watch."""

    def __init__(self, call_id: str, task: "asyncio.Task[None]"):
        self.call_id = call_id
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    def cancelled(self) -> bool:
        return self._task.cancelled()

    async def wait(self) -> None:
        """Wait until the watch has stopped, whatever the reason."""
        await asyncio.wait({self._task})


class StatusReconciliationLoop:
    """Polls the telephony provider and feeds raw statuses to a handler.

    The first poll runs as soon as a watch is attached, then once per
    ``poll_interval``. A watch stops on the first terminal state, when
    cancelled, or when ``watch_timeout`` passes without a terminal state.
    """

    def __init__(
        self,
        provider: ProviderClient,
        on_status: StatusHandler,
        on_expired: ExpiryHandler,
        poll_interval: Optional[float] = None,
        watch_timeout: Optional[float] = None,
        status_timeout: Optional[float] = None,
    ):
        self.provider = provider
        self.on_status = on_status
        self.on_expired = on_expired
        self.poll_interval = (
            settings.status_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.watch_timeout = (
            settings.watch_timeout_seconds if watch_timeout is None else watch_timeout
        )
        self.status_timeout = (
            settings.status_request_timeout_seconds if status_timeout is None else status_timeout
        )
        self._watches: Dict[str, WatchTask] = {}

    def watch(self, handle: CallHandle) -> WatchTask:
        """Start polling for a handle. One active watch per handle."""
        call_id = handle.provider_call_id
        existing = self._watches.get(call_id)
        if existing and not existing.done():
            raise WatchAlreadyActive(f"Call {call_id} is already being watched")

        task = asyncio.create_task(self._run(handle), name=f"watch-{call_id}")
        watch = WatchTask(call_id, task)
        self._watches[call_id] = watch
        task.add_done_callback(lambda _task: self._forget(call_id, watch))
        logger.info(f"[RECONCILIATION] Watching call {call_id}")
        return watch

    def get(self, call_id: str) -> Optional[WatchTask]:
        return self._watches.get(call_id)

    def is_watching(self, call_id: str) -> bool:
        watch = self._watches.get(call_id)
        return watch is not None and not watch.done()

    def cancel(self, call_id: str) -> bool:
        """Stop polling a call. Already-observed state is kept."""
        watch = self._watches.get(call_id)
        if watch is None or watch.done():
            return False
        watch.cancel()
        logger.info(f"[RECONCILIATION] Watch cancelled for call {call_id}")
        return True

    async def cancel_all(self) -> None:
        watches: List[WatchTask] = list(self._watches.values())
        for watch in watches:
            watch.cancel()
        await asyncio.gather(*(watch.wait() for watch in watches))

    def _forget(self, call_id: str, watch: WatchTask) -> None:
        if self._watches.get(call_id) is watch:
            del self._watches[call_id]

    async def _run(self, handle: CallHandle) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.watch_timeout
        call_id = handle.provider_call_id
        polls = 0

        while True:
            polls += 1
            try:
                status = await asyncio.wait_for(
                    self.provider.fetch_call_status(handle.request.credentials, call_id),
                    timeout=self.status_timeout,
                )
            except (ProviderError, asyncio.TimeoutError) as e:
                # A failed poll never changes state; try again next tick
                logger.warning(
                    f"[RECONCILIATION] Poll {polls} failed for call {call_id}: "
                    f"{type(e).__name__}: {e}"
                )
            except Exception:
                logger.exception(
                    f"[RECONCILIATION] Poll {polls} for call {call_id} raised unexpectedly; "
                    f"retrying next tick"
                )
            else:
                state = self.on_status(handle, status.status)
                logger.debug(
                    f"[RECONCILIATION] Poll {polls} for call {call_id}: "
                    f"provider={status.status!r} state={state.value}"
                )
                if state.is_terminal:
                    logger.info(
                        f"[RECONCILIATION] Call {call_id} reached {state.value} after {polls} polls"
                    )
                    return

            if handle.state.is_terminal:
                return

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(
                    f"[RECONCILIATION] No terminal status for call {call_id} within "
                    f"{self.watch_timeout:.0f}s; giving up"
                )
                self.on_expired(handle)
                return

            await asyncio.sleep(min(self.poll_interval, remaining))
