"""Progress events emitted during a deliberation.

Sinks are passed explicitly to the components that emit. Delivery is
best-effort: a failing sink is logged and never interrupts the pipeline.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from committee.models import TokenUsage

logger = logging.getLogger(__name__)

MessageType = Literal["proposal", "evaluation", "comparison", "vote", "synthesis", "progress"]


@dataclass
class EventMetadata:
    timestamp: float = field(default_factory=time.time)
    token_usage: TokenUsage | None = None
    processing_time_ms: float | None = None
    round: int | None = None


@dataclass
class DeliberationEvent:
    phase: str
    message_type: MessageType
    content: str
    metadata: EventMetadata = field(default_factory=EventMetadata)
    data: dict[str, Any] = field(default_factory=dict)


class EventSink(Protocol):
    def emit(self, event: DeliberationEvent) -> None: ...


class NullSink:
    """Discards every event."""

    def emit(self, event: DeliberationEvent) -> None:
        return None


class CollectingSink:
    """Keeps events in memory, in emission order."""

    def __init__(self) -> None:
        self.events: list[DeliberationEvent] = []

    def emit(self, event: DeliberationEvent) -> None:
        self.events.append(event)

    def of_type(self, message_type: MessageType) -> list[DeliberationEvent]:
        return [e for e in self.events if e.message_type == message_type]


class LoggingSink:
    """Writes every event to the module logger at DEBUG."""

    def emit(self, event: DeliberationEvent) -> None:
        logger.debug("[%s/%s] %s", event.phase, event.message_type, event.content)


def emit_safely(
    sink: EventSink | None,
    phase: str,
    message_type: MessageType,
    content: str,
    *,
    token_usage: TokenUsage | None = None,
    processing_time_ms: float | None = None,
    round_number: int | None = None,
    **data: Any,
) -> None:
    """Build and emit an event. Never raises."""
    if sink is None:
        return
    event = DeliberationEvent(
        phase=phase,
        message_type=message_type,
        content=content,
        metadata=EventMetadata(
            token_usage=token_usage,
            processing_time_ms=processing_time_ms,
            round=round_number,
        ),
        data=data,
    )
    try:
        sink.emit(event)
    except Exception as exc:
        logger.warning("Event sink failed for %s/%s: %s", phase, message_type, exc)
