"""Wire-format event models.

The upstream service sends each SSE frame as one of two JSON shapes::

    {"type": "...", "properties": {...}}
    {"directory": "/path", "payload": {"type": "...", "properties": {...}}}

The second shape is used when one stream multiplexes several working
directories.  ``properties`` is treated as an opaque document; dispatchers
pull the fields they need with the accessors below.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, field_validator

ASSISTANT_ROLE = "assistant"
FINISH_STOP = "stop"


class EventEnvelope(BaseModel):
    """Plain event: a type tag plus an opaque property bag."""

    type: str
    properties: dict[str, Any] = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def _null_properties(cls, value: Any) -> Any:
        return {} if value is None else value

    # -- Accessors -------------------------------------------------------------

    def str_property(self, key: str) -> str | None:
        return str_field(self.properties, key)

    def assistant_info(self) -> dict[str, Any] | None:
        """Return ``properties.info`` when it describes an assistant message."""
        info = self.properties.get("info")
        if not isinstance(info, dict):
            return None
        if info.get("role") != ASSISTANT_ROLE:
            return None
        return info


class MultiplexedEnvelope(BaseModel):
    """Directory-tagged wrapper around a plain event."""

    directory: str | None = None
    payload: EventEnvelope


@dataclass(frozen=True)
class DecodedEvent:
    """Result of decoding one frame.

    ``directory`` is only set when the frame arrived in the multiplexed shape.
    """

    event: EventEnvelope
    directory: str | None = None


def str_field(document: Any, key: str) -> str | None:
    """Return ``document[key]`` if *document* is a mapping and the value is a string."""
    if not isinstance(document, dict):
        return None
    value = document.get(key)
    return value if isinstance(value, str) else None


def has_finish_stop(info: dict[str, Any]) -> bool:
    return info.get("finish") == FINISH_STOP
