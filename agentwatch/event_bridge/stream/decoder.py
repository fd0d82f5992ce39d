"""Envelope decoder -- one SSE frame to one typed event.

The plain shape is always tried first; the multiplexed shape is only a
fallback.  A frame that matches neither raises ``EnvelopeDecodeError`` and
the caller discards it.
"""

from __future__ import annotations

from pydantic import ValidationError

from agentwatch.event_bridge.models.events import DecodedEvent, EventEnvelope, MultiplexedEnvelope


class EnvelopeDecodeError(ValueError):
    """Raised when a frame matches neither known envelope shape."""


def decode_envelope(raw: str) -> DecodedEvent:
    """Decode *raw* into an event plus the optional directory hint."""
    try:
        return DecodedEvent(event=EventEnvelope.model_validate_json(raw))
    except ValidationError:
        pass

    try:
        multiplexed = MultiplexedEnvelope.model_validate_json(raw)
    except ValidationError as exc:
        msg = f"Unrecognised event envelope ({exc.error_count()} validation errors)"
        raise EnvelopeDecodeError(msg) from exc

    return DecodedEvent(event=multiplexed.payload, directory=multiplexed.directory)
