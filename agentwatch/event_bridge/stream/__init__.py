"""Upstream stream ingestion: connect, frame, decode."""

from agentwatch.event_bridge.stream.connector import (
    NoEndpointReachableError,
    StreamConnection,
    StreamConnector,
    StreamRejectedError,
)
from agentwatch.event_bridge.stream.decoder import EnvelopeDecodeError, decode_envelope
from agentwatch.event_bridge.stream.framer import SSEFramer

__all__ = [
    "EnvelopeDecodeError",
    "NoEndpointReachableError",
    "SSEFramer",
    "StreamConnection",
    "StreamConnector",
    "StreamRejectedError",
    "decode_envelope",
]
