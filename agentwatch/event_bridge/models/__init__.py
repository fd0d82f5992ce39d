"""Data models for the event bridge."""

from agentwatch.event_bridge.models.enums import (
    STREAMING_PART_TYPES,
    ActivityPhase,
    EventType,
    PartType,
    SessionStatusType,
)
from agentwatch.event_bridge.models.events import (
    DecodedEvent,
    EventEnvelope,
    MultiplexedEnvelope,
)
from agentwatch.event_bridge.models.scope import ConnectionScope, DirectoryScope, GlobalScope

__all__ = [
    "STREAMING_PART_TYPES",
    # Enums
    "ActivityPhase",
    # Scope
    "ConnectionScope",
    # Events
    "DecodedEvent",
    "DirectoryScope",
    "EventEnvelope",
    "EventType",
    "GlobalScope",
    "MultiplexedEnvelope",
    "PartType",
    "SessionStatusType",
]
