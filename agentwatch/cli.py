from __future__ import annotations

from typing import TYPE_CHECKING, BinaryIO

import click

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from agentwatch.event_bridge.settings import WatchSettings


@click.group()
def main() -> None:
    """agentwatch - Desktop notifications and session activity from an agent event stream."""


@main.command()
@click.option("--port", default=None, type=int, help="Agent service port (default: from AGENTWATCH_PORT).")
@click.option("--api-prefix", default=None, help="API path prefix (default: from AGENTWATCH_API_PREFIX).")
@click.option("--directory", default=None, help="Working directory for the scoped stream fallback.")
@click.option("--settings-file", default=None, help="Host settings JSON used to resolve the project directory.")
@click.option("--no-notifications", is_flag=True, default=False, help="Disable desktop notifications.")
@click.option("--no-activity", is_flag=True, default=False, help="Disable session activity tracking.")
@click.option("--log-level", default=None, help="Log level (default: from AGENTWATCH_LOG_LEVEL or INFO).")
@click.option("--log-json", is_flag=True, default=False, help="Write logs as JSON lines on stderr.")
def watch(
    port: int | None,
    api_prefix: str | None,
    directory: str | None,
    settings_file: str | None,
    no_notifications: bool,
    no_activity: bool,
    log_level: str | None,
    log_json: bool,
) -> None:
    """Follow the agent event stream until interrupted."""
    import asyncio

    from agentwatch.event_bridge.log import setup_logging
    from agentwatch.event_bridge.settings import get_settings

    overrides = {
        "port": port,
        "api_prefix": api_prefix,
        "working_directory": directory,
        "settings_file": settings_file,
        "log_level": log_level,
        "log_json": log_json or None,
    }
    settings = get_settings().model_copy(update={k: v for k, v in overrides.items() if v is not None})
    setup_logging(settings.log_level, serialize=settings.log_json)

    asyncio.run(_watch(settings, notifications=not no_notifications, activity=not no_activity))


async def _watch(settings: WatchSettings, *, notifications: bool, activity: bool) -> None:
    import asyncio
    import signal

    from agentwatch.event_bridge.bridge import BridgeCollaborators, EventBridge
    from agentwatch.event_bridge.collaborators import ShutdownEvent

    shutdown = ShutdownEvent()
    collaborators = BridgeCollaborators.from_settings(settings)
    collaborators.shutdown = shutdown

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.trigger)

    bridge = EventBridge(settings, collaborators, notifications=notifications, activity=activity)
    await bridge.run()


@main.command()
@click.argument("source", type=click.File("rb"), default="-")
def decode(source: BinaryIO) -> None:
    """Decode SSE frames from SOURCE (default: stdin) and print them as JSON lines."""
    import asyncio

    asyncio.run(_decode(source))


async def _decode(source: BinaryIO) -> None:
    import json

    from agentwatch.event_bridge.stream.decoder import EnvelopeDecodeError, decode_envelope
    from agentwatch.event_bridge.stream.framer import SSEFramer

    async def chunks() -> AsyncIterator[bytes]:
        while chunk := source.read(8192):
            yield chunk

    async for raw in SSEFramer(chunks()).frames():
        try:
            decoded = decode_envelope(raw)
        except EnvelopeDecodeError as exc:
            click.echo(f"skipped frame: {exc}", err=True)
            continue
        line = {"directory": decoded.directory, **decoded.event.model_dump()}
        click.echo(json.dumps(line))


if __name__ == "__main__":
    main()
