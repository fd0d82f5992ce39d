"""Interfaces to the host application, plus standalone defaults.

The bridge never talks to a GUI toolkit, a notification daemon or a settings
file directly.  Each concern is a small async-friendly protocol; the host
passes in whatever implementation it has.  The defaults in this module let
the bridge run as a plain daemon:

- ``StaticServiceDiscovery``: port / prefix / directory from configuration
- ``JsonSettingsSource``: host settings document read from a JSON file
- ``JsonLinesEmitter``: UI events written as JSON lines to stdout
- ``NotifySendSurface``: notifications shown via ``notify-send``
- ``UnknownWindowState``: no window to inspect, so notifications always fire
- ``ShutdownEvent``: an ``asyncio.Event`` every supervisor can wait on
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import IO, Any, Protocol, runtime_checkable

from anyio import to_thread
from loguru import logger

# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Notification:
    title: str
    body: str
    sound: str | None = None


@dataclass(frozen=True)
class WindowState:
    """Foreground state of the host's main window."""

    focused: bool
    minimized: bool

    @property
    def in_foreground(self) -> bool:
        return self.focused and not self.minimized


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ServiceDiscovery(Protocol):
    """Where the local agent service currently listens."""

    def current_port(self) -> int | None:
        """Port of the running service, or ``None`` before it has started."""
        ...

    def api_prefix(self) -> str:
        """Path prefix prepended to every API route (may be empty)."""
        ...

    def working_directory(self) -> str:
        """Working directory the host is currently showing."""
        ...


@runtime_checkable
class SettingsSource(Protocol):
    async def load(self) -> dict[str, Any]:
        """Load the host settings document.  May raise on I/O or parse errors."""
        ...


@runtime_checkable
class UiEmitter(Protocol):
    def emit(self, event: str, payload: dict[str, Any]) -> None:
        """Fire-and-forget publish of a named event to the interface layer."""
        ...


@runtime_checkable
class NotificationSurface(Protocol):
    async def show(self, notification: Notification) -> None:
        """Display a system notification.  Callers ignore failures."""
        ...


@runtime_checkable
class WindowStateProbe(Protocol):
    def foreground_state(self) -> WindowState | None:
        """Current main-window state, or ``None`` when it cannot be determined."""
        ...


@runtime_checkable
class ShutdownSignal(Protocol):
    async def wait(self) -> None:
        """Return once shutdown was requested.  Every waiter is released."""
        ...

    def is_set(self) -> bool: ...


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class StaticServiceDiscovery:
    """Discovery backed by fixed values.

    The port may start out unknown and be filled in later with ``set_port``
    once the host has launched the service.
    """

    def __init__(
        self,
        port: int | None = None,
        *,
        api_prefix: str = "",
        working_directory: str | None = None,
    ) -> None:
        self._port = port
        self._api_prefix = api_prefix
        self._working_directory = working_directory

    def set_port(self, port: int | None) -> None:
        self._port = port

    def set_working_directory(self, directory: str) -> None:
        self._working_directory = directory

    def current_port(self) -> int | None:
        return self._port

    def api_prefix(self) -> str:
        return self._api_prefix

    def working_directory(self) -> str:
        return self._working_directory or os.getcwd()


class JsonSettingsSource:
    """Reads the host settings document from a JSON file.

    Uses ``anyio.to_thread.run_sync`` so the event loop never blocks on disk.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    async def load(self) -> dict[str, Any]:
        raw = await to_thread.run_sync(partial(self._path.read_text, encoding="utf-8"))
        document = json.loads(raw)
        if not isinstance(document, dict):
            msg = f"Settings file {self._path} does not contain a JSON object"
            raise ValueError(msg)
        return document


class JsonLinesEmitter:
    """Writes each emission as ``{"event": ..., "payload": ...}`` on one line."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self._stream = stream

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        stream = self._stream or sys.stdout
        stream.write(json.dumps({"event": event, "payload": payload}) + "\n")
        stream.flush()


class NotifySendSurface:
    """Shows notifications with ``notify-send`` (libnotify)."""

    def __init__(self, command: str = "notify-send", *, app_name: str = "agentwatch", timeout: float = 10.0) -> None:
        self._command = command
        self._app_name = app_name
        self._timeout = timeout

    def build_command(self, notification: Notification) -> list[str]:
        cmd = [self._command, "--app-name", self._app_name]
        if notification.sound:
            cmd.extend(["--hint", f"string:sound-name:{notification.sound}"])
        cmd.extend([notification.title, notification.body])
        return cmd

    async def show(self, notification: Notification) -> None:
        proc = await asyncio.create_subprocess_exec(
            *self.build_command(notification),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        finally:
            # Timed out or cancelled: the child must not outlive the call.
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
        if proc.returncode != 0:
            msg = f"{self._command} exited with {proc.returncode}: {stderr.decode(errors='replace').strip()}"
            raise RuntimeError(msg)
        logger.debug("Notification sent: {}", notification.title)


class UnknownWindowState:
    """Probe for hosts without a window: state is never known."""

    def foreground_state(self) -> WindowState | None:
        return None


class ShutdownEvent:
    """Broadcast shutdown signal backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def trigger(self) -> None:
        if not self._event.is_set():
            logger.info("Shutdown requested")
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
