"""Event bridge -- wires collaborators, pipelines and supervisors together.

Hosts embed the bridge by passing their own collaborators; the CLI builds
one from ``WatchSettings`` with the standalone defaults.
"""

from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass, field

import httpx
from loguru import logger

from agentwatch.event_bridge.activity import ActivityTracker
from agentwatch.event_bridge.collaborators import (
    JsonLinesEmitter,
    JsonSettingsSource,
    NotificationSurface,
    NotifySendSurface,
    ServiceDiscovery,
    SettingsSource,
    ShutdownEvent,
    ShutdownSignal,
    StaticServiceDiscovery,
    UiEmitter,
    UnknownWindowState,
    WindowStateProbe,
)
from agentwatch.event_bridge.notifications import NotificationDispatcher
from agentwatch.event_bridge.settings import WatchSettings
from agentwatch.event_bridge.supervisor import ActivityPipeline, NotificationPipeline, StreamSupervisor


def keepalive_socket_options(idle: float) -> list[tuple[int, int, int]]:
    """Socket options enabling TCP keepalive, probing after *idle* seconds."""
    seconds = max(1, int(idle))
    options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    if hasattr(socket, "TCP_KEEPIDLE"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, seconds))
    elif hasattr(socket, "TCP_KEEPALIVE"):
        # macOS spells the idle option differently.
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPALIVE, seconds))
    if hasattr(socket, "TCP_KEEPINTVL"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, seconds))
    return options


def build_http_client(settings: WatchSettings) -> httpx.AsyncClient:
    timeout = httpx.Timeout(settings.connect_timeout, read=settings.stream_read_timeout)
    transport = httpx.AsyncHTTPTransport(socket_options=keepalive_socket_options(settings.tcp_keepalive))
    return httpx.AsyncClient(timeout=timeout, transport=transport, trust_env=False)


@dataclass
class BridgeCollaborators:
    """Everything the bridge needs from its host."""

    discovery: ServiceDiscovery
    emitter: UiEmitter
    surface: NotificationSurface
    window: WindowStateProbe = field(default_factory=UnknownWindowState)
    settings_source: SettingsSource | None = None
    shutdown: ShutdownSignal = field(default_factory=ShutdownEvent)

    @classmethod
    def from_settings(cls, settings: WatchSettings) -> BridgeCollaborators:
        return cls(
            discovery=StaticServiceDiscovery(
                settings.port,
                api_prefix=settings.api_prefix,
                working_directory=settings.working_directory,
            ),
            emitter=JsonLinesEmitter(),
            surface=NotifySendSurface(settings.notify_command),
            settings_source=JsonSettingsSource(settings.settings_file) if settings.settings_file else None,
        )


class EventBridge:
    """Runs the notification and activity supervisors until shutdown."""

    def __init__(
        self,
        settings: WatchSettings,
        collaborators: BridgeCollaborators,
        *,
        client: httpx.AsyncClient | None = None,
        notifications: bool = True,
        activity: bool = True,
    ) -> None:
        self._settings = settings
        self.collaborators = collaborators
        self._client = client or build_http_client(settings)
        self._owns_client = client is None

        self.dispatcher = NotificationDispatcher(
            collaborators.surface,
            collaborators.window,
            sound=settings.notification_sound,
        )
        self.tracker = ActivityTracker(
            collaborators.emitter,
            cooldown=settings.cooldown_seconds,
            event_name=settings.activity_event_name,
        )

        self.supervisors: list[StreamSupervisor] = []
        if notifications:
            self.supervisors.append(
                self._supervisor(NotificationPipeline(self.dispatcher, collaborators.settings_source))
            )
        if activity:
            self.supervisors.append(
                self._supervisor(
                    ActivityPipeline(
                        self.tracker,
                        collaborators.discovery,
                        idle_timeout=settings.activity_idle_timeout,
                    )
                )
            )

    def _supervisor(self, pipeline: NotificationPipeline | ActivityPipeline) -> StreamSupervisor:
        return StreamSupervisor(
            pipeline,
            discovery=self.collaborators.discovery,
            shutdown=self.collaborators.shutdown,
            client=self._client,
            host=self._settings.host,
            backoff=self._settings.reconnect_backoff,
        )

    async def run(self) -> None:
        if not self.supervisors:
            logger.warning("Both pipelines disabled; nothing to do")
            return

        logger.info("Event bridge starting ({})", ", ".join(s.name for s in self.supervisors))
        try:
            await asyncio.gather(*(s.run() for s in self.supervisors))
        finally:
            await self.tracker.aclose()
            if self._owns_client:
                await self._client.aclose()
            logger.info("Event bridge stopped")
