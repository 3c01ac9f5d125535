"""Provider status vocabulary.

Provider status strings arrive with inconsistent casing and separators
("no-answer", "no_answer", "No Answer"), so every string is normalized before
lookup. Unknown strings never move a call: the caller keeps its current state.
"""
import logging
import re
from datetime import datetime
from typing import Dict, Optional

from outbound_voice.services.calls.models import WATCH_TIMED_OUT, CallState, utcnow

logger = logging.getLogger(__name__)

_SEPARATORS = re.compile(r"[\s_]+")

PROVIDER_STATUS_MAP: Dict[str, CallState] = {
    # Telephony provider call statuses
    "queued": CallState.QUEUED,
    "initiated": CallState.INITIATED,
    "ringing": CallState.RINGING,
    "in-progress": CallState.IN_PROGRESS,
    "answered": CallState.IN_PROGRESS,
    "completed": CallState.COMPLETED,
    "busy": CallState.BUSY,
    "failed": CallState.FAILED,
    "no-answer": CallState.NO_ANSWER,
    "canceled": CallState.CANCELED,
    "cancelled": CallState.CANCELED,
    # Speech provider conversation statuses
    "processing": CallState.IN_PROGRESS,
    "done": CallState.COMPLETED,
}

# Provider spelling for each state; SUBMITTING never comes from a provider
CANONICAL_STATUS: Dict[CallState, str] = {
    CallState.SUBMITTING: "submitting",
    CallState.QUEUED: "queued",
    CallState.INITIATED: "initiated",
    CallState.RINGING: "ringing",
    CallState.IN_PROGRESS: "in-progress",
    CallState.COMPLETED: "completed",
    CallState.BUSY: "busy",
    CallState.FAILED: "failed",
    CallState.NO_ANSWER: "no-answer",
    CallState.CANCELED: "canceled",
}

STATE_LABELS: Dict[CallState, str] = {
    CallState.SUBMITTING: "Call request is being submitted",
    CallState.QUEUED: "Call has been queued and will be initiated shortly",
    CallState.INITIATED: "Call has been initiated and is connecting",
    CallState.RINGING: "Phone is ringing",
    CallState.IN_PROGRESS: "Call is in progress",
    CallState.COMPLETED: "Call has completed successfully",
    CallState.BUSY: "Recipient was busy",
    CallState.FAILED: "Call failed to complete",
    CallState.NO_ANSWER: "Recipient did not answer",
    CallState.CANCELED: "Call was canceled",
}

WATCH_TIMEOUT_LABEL = "Could not confirm call outcome"
STUCK_IN_QUEUE_LABEL = "Call appears to be stuck in queue. You may need to try again."


def normalize_status(raw: Optional[str]) -> str:
    """Lower-case, trim and hyphenate a raw provider status."""
    if not raw:
        return ""
    return _SEPARATORS.sub("-", raw.strip().lower())


def lookup_status(raw: Optional[str]) -> Optional[CallState]:
    """Return the state for a known status string, or None."""
    return PROVIDER_STATUS_MAP.get(normalize_status(raw))


def map_provider_status(raw: Optional[str], current: CallState) -> CallState:
    """Map a raw provider status to a CallState.

    Total: unknown or empty strings return ``current`` unchanged.
    """
    state = lookup_status(raw)
    if state is None:
        logger.warning(
            f"[STATUS] Unrecognized provider status {raw!r}; keeping state {current.value}"
        )
        return current
    return state


def canonical_status(state: CallState) -> str:
    return CANONICAL_STATUS[state]


def state_label(
    state: CallState, failure_reason: Optional[str] = None, stuck_in_queue: bool = False
) -> str:
    """Human-readable description of a call state."""
    if state == CallState.FAILED and failure_reason == WATCH_TIMED_OUT:
        return WATCH_TIMEOUT_LABEL
    if state == CallState.QUEUED and stuck_in_queue:
        return STUCK_IN_QUEUE_LABEL
    return STATE_LABELS[state]


def is_stuck_in_queue(
    state: CallState, queued_since: datetime, threshold: float, now: Optional[datetime] = None
) -> bool:
    """True when a call has sat in ``queued`` for at least ``threshold`` seconds."""
    if state != CallState.QUEUED:
        return False
    now = now or utcnow()
    return (now - queued_since).total_seconds() >= threshold


def is_terminal(state: CallState) -> bool:
    return state.is_terminal
