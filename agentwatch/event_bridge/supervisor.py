"""Supervisor loop -- connect, frame, decode, dispatch; reconnect on failure.

One supervisor drives one pipeline.  The bridge runs two of them side by
side (notifications and activity); they share nothing but the HTTP client
and the shutdown signal.

Each cycle:

1. ``pipeline.before_connect()``
2. skip if the service port is not known yet
3. connect (endpoint fallback) and frame the body
4. decode each frame; undecodable frames are logged and dropped
5. hand each event to ``pipeline.handle_event()``

Whatever ends a cycle (end of stream, a stale scope, a transport error, no
reachable endpoint) is followed by the same fixed backoff.  Only the
shutdown signal ends the loop.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from agentwatch.event_bridge.models.scope import ConnectionScope, DirectoryScope
from agentwatch.event_bridge.notifications import resolve_project_directory
from agentwatch.event_bridge.stream.connector import StreamConnector
from agentwatch.event_bridge.stream.decoder import EnvelopeDecodeError, decode_envelope
from agentwatch.event_bridge.stream.framer import SSEFramer

if TYPE_CHECKING:
    import httpx

    from agentwatch.event_bridge.activity import ActivityTracker
    from agentwatch.event_bridge.collaborators import ServiceDiscovery, SettingsSource, ShutdownSignal
    from agentwatch.event_bridge.models.events import DecodedEvent
    from agentwatch.event_bridge.notifications import NotificationDispatcher

DEFAULT_BACKOFF_SECONDS = 2.0
DEFAULT_ACTIVITY_IDLE_TIMEOUT = 2.0


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


class EventPipeline(Protocol):
    """What a supervisor needs from the consumer of one stream."""

    name: str
    idle_timeout: float | None

    async def before_connect(self) -> None: ...

    async def resolve_directory(self) -> str | None:
        """Directory for the scoped-endpoint fallback, or ``None`` if unknown."""
        ...

    def is_stale(self, scope: ConnectionScope) -> bool:
        """Called on read idle; ``True`` ends the cycle so the loop reconnects."""
        ...

    async def handle_event(self, decoded: DecodedEvent) -> None: ...


class NotificationPipeline:
    """Feeds the notification dispatcher.  Reads block without a timeout."""

    name = "notify"
    idle_timeout: float | None = None

    def __init__(self, dispatcher: NotificationDispatcher, settings: SettingsSource | None = None) -> None:
        self.dispatcher = dispatcher
        self._settings = settings

    async def before_connect(self) -> None:
        return None

    async def resolve_directory(self) -> str | None:
        if self._settings is None:
            return None
        return await resolve_project_directory(self._settings)

    def is_stale(self, scope: ConnectionScope) -> bool:
        return False

    async def handle_event(self, decoded: DecodedEvent) -> None:
        await self.dispatcher.handle_event(decoded.event)


class ActivityPipeline:
    """Feeds the activity tracker and follows working-directory changes."""

    name = "activity"

    def __init__(
        self,
        tracker: ActivityTracker,
        discovery: ServiceDiscovery,
        *,
        idle_timeout: float = DEFAULT_ACTIVITY_IDLE_TIMEOUT,
    ) -> None:
        self.tracker = tracker
        self._discovery = discovery
        self.idle_timeout: float | None = idle_timeout

    async def before_connect(self) -> None:
        # Events may have been missed while disconnected (e.g. host sleep).
        await self.tracker.reset_all()

    async def resolve_directory(self) -> str | None:
        return self._discovery.working_directory() or None

    def is_stale(self, scope: ConnectionScope) -> bool:
        if not isinstance(scope, DirectoryScope):
            return False
        current = self._discovery.working_directory()
        if current == scope.path:
            return False
        logger.debug(
            "[activity] Working directory changed; reconnecting activity SSE (from {} to {})",
            scope.path,
            current,
        )
        return True

    async def handle_event(self, decoded: DecodedEvent) -> None:
        await self.tracker.handle_event(decoded.event)


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class StreamSupervisor:
    """Owns the reconnect loop for one pipeline."""

    def __init__(
        self,
        pipeline: EventPipeline,
        *,
        discovery: ServiceDiscovery,
        shutdown: ShutdownSignal,
        client: httpx.AsyncClient,
        host: str = "127.0.0.1",
        backoff: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self._pipeline = pipeline
        self._discovery = discovery
        self._shutdown = shutdown
        self._connector = StreamConnector(client, name=pipeline.name)
        self._host = host
        self._backoff = backoff
        self.cycles = 0
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def name(self) -> str:
        return self._pipeline.name

    # -- Loop ------------------------------------------------------------------

    async def run(self) -> None:
        """Run cycles until the shutdown signal fires."""
        logger.info("[{}] SSE listener started", self.name)
        while not self._shutdown.is_set():
            cycle = asyncio.create_task(self._cycle_then_backoff(), name=f"{self.name}:cycle")
            stop = asyncio.create_task(self._shutdown.wait(), name=f"{self.name}:shutdown")
            try:
                done, _ = await asyncio.wait({cycle, stop}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (cycle, stop):
                    if not task.done():
                        task.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await task
            if stop in done:
                break
        await self._drain_inflight()
        logger.info("[{}] Shutdown received, stopping SSE listener", self.name)

    async def _cycle_then_backoff(self) -> None:
        try:
            await self.run_once()
        except Exception as exc:
            logger.warning("[{}] SSE loop error: {!r}", self.name, exc)
        await asyncio.sleep(self._backoff)

    # -- Cycle -----------------------------------------------------------------

    async def run_once(self) -> None:
        """One connect-frame-decode-dispatch pass.  Returns when the stream ends."""
        self.cycles += 1
        await self._pipeline.before_connect()

        port = self._discovery.current_port()
        if port is None:
            logger.debug("[{}] Service port unavailable; will retry", self.name)
            return

        base_url = f"http://{self._host}:{port}{self._discovery.api_prefix()}"
        connection = await self._connector.connect(base_url, self._pipeline.resolve_directory)
        logger.info("[{}] Connected to {} (scope={})", self.name, connection.url, connection.scope.describe())

        try:
            framer = SSEFramer(
                connection.chunks(),
                idle_timeout=self._pipeline.idle_timeout,
                on_idle=lambda: self._pipeline.is_stale(connection.scope),
            )
            async with contextlib.aclosing(framer.frames()) as frames:
                async for raw in frames:
                    await self._dispatch(raw)
        finally:
            await connection.aclose()

        if framer.stale:
            logger.info("[{}] Stream scope is stale; reconnecting", self.name)
        else:
            logger.info("[{}] Stream ended", self.name)

    async def _dispatch(self, raw: str) -> None:
        try:
            decoded = decode_envelope(raw)
        except EnvelopeDecodeError as exc:
            logger.warning("[{}] Failed to parse SSE data: {}; raw={}", self.name, exc, raw)
            return
        # A frame that started dispatching finishes even if the loop is cancelled;
        # run() waits for such stragglers before it returns.
        task = asyncio.create_task(self._pipeline.handle_event(decoded), name=f"{self.name}:dispatch")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        await asyncio.shield(task)

    async def _drain_inflight(self) -> None:
        if not self._inflight:
            return
        pending = list(self._inflight)
        logger.debug("[{}] Waiting for {} in-flight dispatches", self.name, len(pending))
        for result in await asyncio.gather(*pending, return_exceptions=True):
            if isinstance(result, Exception):
                logger.warning("[{}] Dispatch failed during shutdown: {!r}", self.name, result)
