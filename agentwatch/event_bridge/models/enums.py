"""Shared enumerations used across the event bridge."""

from __future__ import annotations

from enum import StrEnum

# -- Activity ----------------------------------------------------------------


class ActivityPhase(StrEnum):
    """UI-facing activity phase of one session.

    A session that has never been observed is implicitly ``IDLE``.
    """

    IDLE = "idle"
    BUSY = "busy"
    COOLDOWN = "cooldown"


# -- Events ------------------------------------------------------------------


class EventType(StrEnum):
    """Upstream event types the bridge reacts to.  Everything else is ignored."""

    # Session
    SESSION_STATUS = "session.status"
    SESSION_IDLE = "session.idle"

    # Message
    MESSAGE_UPDATED = "message.updated"
    MESSAGE_PART_UPDATED = "message.part.updated"

    # Interaction
    QUESTION_ASKED = "question.asked"


class SessionStatusType(StrEnum):
    """Values of ``properties.status.type`` on ``session.status``."""

    IDLE = "idle"
    BUSY = "busy"
    RETRY = "retry"


class PartType(StrEnum):
    """Assistant content-part types that indicate a turn is streaming."""

    STEP_START = "step-start"
    TEXT = "text"
    TOOL = "tool"
    REASONING = "reasoning"
    FILE = "file"
    PATCH = "patch"


STREAMING_PART_TYPES: frozenset[str] = frozenset(PartType)
