"""Post-hoc metrics over a conversation transcript."""
from typing import Dict, List, Sequence

from outbound_voice.services.conversations.models import (
    ConversationMessage,
    MessageRole,
    SessionMetrics,
)


def compute_session_metrics(messages: Sequence[ConversationMessage]) -> SessionMetrics:
    """Compute metrics from message timestamps alone.

    A turn is a change of speaker between consecutive messages. The latency
    of a turn is the gap between the two messages and is credited to the
    role that answered. Roles with no answered turns get a mean latency of
    None.
    """
    ordered = sorted(messages, key=lambda m: m.timestamp)

    counts: Dict[MessageRole, int] = {role: 0 for role in MessageRole}
    lengths: Dict[MessageRole, int] = {role: 0 for role in MessageRole}
    latencies: Dict[MessageRole, List[float]] = {role: [] for role in MessageRole}
    turn_count = 0

    for i, message in enumerate(ordered):
        counts[message.role] += 1
        lengths[message.role] += len(message.text)
        if i == 0:
            continue
        previous = ordered[i - 1]
        if message.role != previous.role:
            turn_count += 1
            latencies[message.role].append(
                (message.timestamp - previous.timestamp).total_seconds()
            )

    total_duration = 0.0
    if len(ordered) >= 2:
        total_duration = (ordered[-1].timestamp - ordered[0].timestamp).total_seconds()

    return SessionMetrics(
        message_count=counts,
        mean_latency={
            role: (sum(values) / len(values) if values else None)
            for role, values in latencies.items()
        },
        mean_message_length={
            role: (lengths[role] / counts[role] if counts[role] else 0.0)
            for role in MessageRole
        },
        total_duration=total_duration,
        turn_count=turn_count,
    )
