"""Tests for the supervisor loop and its two pipelines.

The upstream service is an ``httpx.MockTransport``; each test drives either
a single ``run_once`` cycle or the full ``run`` loop with a tiny backoff.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from unittest.mock import AsyncMock

import httpx

from agentwatch.event_bridge.activity import ActivityTracker
from agentwatch.event_bridge.collaborators import ShutdownEvent, StaticServiceDiscovery
from agentwatch.event_bridge.models.enums import ActivityPhase
from agentwatch.event_bridge.models.events import DecodedEvent
from agentwatch.event_bridge.models.scope import DirectoryScope, GlobalScope
from agentwatch.event_bridge.notifications import NotificationDispatcher
from agentwatch.event_bridge.supervisor import ActivityPipeline, NotificationPipeline, StreamSupervisor

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _frame(document: dict) -> bytes:
    return b"data: " + json.dumps(document).encode() + b"\n\n"


FINISHED = {
    "type": "message.updated",
    "properties": {"info": {"id": "msg_1", "role": "assistant", "finish": "stop", "sessionID": "s1"}},
}
QUESTION = {
    "directory": "/work",
    "payload": {"type": "question.asked", "properties": {"sessionID": "s1", "id": "q1"}},
}


class RecordingPipeline:
    name = "test"
    idle_timeout: float | None = None

    def __init__(self) -> None:
        self.events: list[DecodedEvent] = []
        self.connects = 0

    async def before_connect(self) -> None:
        self.connects += 1

    async def resolve_directory(self) -> str | None:
        return None

    def is_stale(self, scope) -> bool:
        return False

    async def handle_event(self, decoded: DecodedEvent) -> None:
        self.events.append(decoded)


def _serve(body: bytes, seen: list[httpx.Request] | None = None) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path == "/global/event":
            return httpx.Response(200, content=body)
        return httpx.Response(404)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _supervisor(pipeline, client, discovery=None, shutdown=None, backoff: float = 0.01) -> StreamSupervisor:
    return StreamSupervisor(
        pipeline,
        discovery=discovery or StaticServiceDiscovery(4096),
        shutdown=shutdown or ShutdownEvent(),
        client=client,
        backoff=backoff,
    )


# ---------------------------------------------------------------------------
# Single cycle
# ---------------------------------------------------------------------------


async def test_run_once_dispatches_both_shapes() -> None:
    pipeline = RecordingPipeline()
    seen: list[httpx.Request] = []
    async with _serve(_frame(FINISHED) + _frame(QUESTION), seen) as client:
        await _supervisor(pipeline, client).run_once()

    assert [d.event.type for d in pipeline.events] == ["message.updated", "question.asked"]
    assert pipeline.events[0].directory is None
    assert pipeline.events[1].directory == "/work"
    assert pipeline.connects == 1
    assert str(seen[0].url) == "http://127.0.0.1:4096/global/event"


async def test_run_once_uses_api_prefix() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        await _supervisor(RecordingPipeline(), client, StaticServiceDiscovery(5000, api_prefix="/api")).run_once()

    assert str(seen[0].url) == "http://127.0.0.1:5000/api/global/event"


async def test_undecodable_frame_is_skipped() -> None:
    pipeline = RecordingPipeline()
    body = b"data: not json\n\n" + _frame({"something": "else"}) + _frame(FINISHED)
    async with _serve(body) as client:
        await _supervisor(pipeline, client).run_once()

    assert [d.event.type for d in pipeline.events] == ["message.updated"]


async def test_unknown_port_skips_cycle() -> None:
    pipeline = RecordingPipeline()
    seen: list[httpx.Request] = []
    async with _serve(b"", seen) as client:
        supervisor = _supervisor(pipeline, client, StaticServiceDiscovery(None))
        await supervisor.run_once()

    assert seen == []
    assert pipeline.connects == 1
    assert supervisor.cycles == 1


async def test_notification_pipeline_end_to_end(surface, window) -> None:
    dispatcher = NotificationDispatcher(surface, window)
    body = _frame(FINISHED) + _frame(FINISHED) + _frame(QUESTION)
    async with _serve(body) as client:
        await _supervisor(NotificationPipeline(dispatcher), client).run_once()

    assert [n.title for n in surface.shown] == ["Agent agent is ready", "Input needed"]


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


async def test_shutdown_ends_loop() -> None:
    shutdown = ShutdownEvent()
    async with _serve(b"") as client:
        supervisor = _supervisor(RecordingPipeline(), client, StaticServiceDiscovery(None), shutdown)
        task = asyncio.create_task(supervisor.run())
        await asyncio.sleep(0.05)
        shutdown.trigger()
        await asyncio.wait_for(task, timeout=1)

    assert supervisor.cycles >= 2


async def test_shutdown_interrupts_backoff() -> None:
    shutdown = ShutdownEvent()
    async with _serve(b"") as client:
        supervisor = _supervisor(RecordingPipeline(), client, shutdown=shutdown, backoff=60)
        task = asyncio.create_task(supervisor.run())
        await asyncio.sleep(0.05)
        shutdown.trigger()
        await asyncio.wait_for(task, timeout=1)

    assert supervisor.cycles == 1


async def test_already_shut_down_runs_nothing() -> None:
    shutdown = ShutdownEvent()
    shutdown.trigger()
    async with _serve(b"") as client:
        supervisor = _supervisor(RecordingPipeline(), client, shutdown=shutdown)
        await supervisor.run()

    assert supervisor.cycles == 0


async def test_failed_cycles_are_retried() -> None:
    shutdown = ShutdownEvent()

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        supervisor = _supervisor(RecordingPipeline(), client, shutdown=shutdown)
        task = asyncio.create_task(supervisor.run())
        await asyncio.sleep(0.08)
        shutdown.trigger()
        await asyncio.wait_for(task, timeout=1)

    assert supervisor.cycles >= 2


class SlowPipeline(RecordingPipeline):
    def __init__(self, *, fail: bool = False) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.fail = fail

    async def handle_event(self, decoded: DecodedEvent) -> None:
        self.started.set()
        await asyncio.sleep(0.1)
        if self.fail:
            msg = "handler blew up"
            raise RuntimeError(msg)
        self.events.append(decoded)


async def test_shutdown_waits_for_in_flight_dispatch() -> None:
    shutdown = ShutdownEvent()
    pipeline = SlowPipeline()

    async with _serve(_frame(FINISHED)) as client:
        supervisor = _supervisor(pipeline, client, shutdown=shutdown, backoff=60)
        task = asyncio.create_task(supervisor.run())
        await asyncio.wait_for(pipeline.started.wait(), timeout=1)
        shutdown.trigger()
        await asyncio.wait_for(task, timeout=1)

    assert [d.event.type for d in pipeline.events] == ["message.updated"]
    assert supervisor._inflight == set()


async def test_failed_in_flight_dispatch_is_collected_on_shutdown() -> None:
    shutdown = ShutdownEvent()
    pipeline = SlowPipeline(fail=True)

    async with _serve(_frame(FINISHED)) as client:
        supervisor = _supervisor(pipeline, client, shutdown=shutdown, backoff=60)
        task = asyncio.create_task(supervisor.run())
        await asyncio.wait_for(pipeline.started.wait(), timeout=1)
        shutdown.trigger()
        await asyncio.wait_for(task, timeout=1)

    assert pipeline.events == []
    assert supervisor._inflight == set()


async def test_pipeline_error_does_not_kill_loop() -> None:
    shutdown = ShutdownEvent()
    pipeline = RecordingPipeline()
    pipeline.before_connect = AsyncMock(side_effect=RuntimeError("boom"))

    async with _serve(b"") as client:
        supervisor = _supervisor(pipeline, client, shutdown=shutdown)
        task = asyncio.create_task(supervisor.run())
        await asyncio.sleep(0.05)
        shutdown.trigger()
        await asyncio.wait_for(task, timeout=1)

    assert pipeline.before_connect.await_count >= 2


# ---------------------------------------------------------------------------
# Activity pipeline
# ---------------------------------------------------------------------------


async def test_activity_reset_before_each_connect(emitter) -> None:
    tracker = ActivityTracker(emitter)
    await tracker.set_phase("s1", ActivityPhase.BUSY)
    pipeline = ActivityPipeline(tracker, StaticServiceDiscovery(None))

    async with _serve(b"") as client:
        await _supervisor(pipeline, client, StaticServiceDiscovery(None)).run_once()

    assert tracker.phase("s1") is ActivityPhase.IDLE
    assert emitter.phases == [("s1", "busy"), ("s1", "idle")]


async def test_activity_reconnects_when_directory_changes(emitter) -> None:
    discovery = StaticServiceDiscovery(4096, working_directory="/a")
    tracker = ActivityTracker(emitter)
    requests: list[httpx.Request] = []
    hold = asyncio.Event()

    async def body() -> AsyncIterator[bytes]:
        yield _frame({"type": "session.status", "properties": {"sessionID": "s1", "status": {"type": "busy"}}})
        await hold.wait()

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "directory" not in request.url.params:
            return httpx.Response(404)
        # The host switches projects while this stream is open.
        discovery.set_working_directory("/b")
        return httpx.Response(200, content=body())

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        pipeline = ActivityPipeline(tracker, discovery, idle_timeout=0.01)
        await asyncio.wait_for(_supervisor(pipeline, client, discovery).run_once(), timeout=1)

    assert requests[-1].url.params["directory"] == "/a"
    assert tracker.phase("s1") is ActivityPhase.BUSY


def test_activity_staleness_rules(emitter) -> None:
    discovery = StaticServiceDiscovery(4096, working_directory="/a")
    pipeline = ActivityPipeline(ActivityTracker(emitter), discovery)

    assert pipeline.is_stale(GlobalScope()) is False
    assert pipeline.is_stale(DirectoryScope("/a")) is False
    assert pipeline.is_stale(DirectoryScope("/elsewhere")) is True


async def test_activity_directory_from_discovery(emitter) -> None:
    pipeline = ActivityPipeline(ActivityTracker(emitter), StaticServiceDiscovery(working_directory="/proj"))
    assert await pipeline.resolve_directory() == "/proj"


# ---------------------------------------------------------------------------
# Notification pipeline
# ---------------------------------------------------------------------------


async def test_notification_directory_from_settings(surface, window) -> None:
    settings = AsyncMock()
    settings.load.return_value = {"lastDirectory": "/from/settings"}
    pipeline = NotificationPipeline(NotificationDispatcher(surface, window), settings)

    assert pipeline.idle_timeout is None
    assert pipeline.is_stale(DirectoryScope("/anything")) is False
    assert await pipeline.resolve_directory() == "/from/settings"


async def test_notification_without_settings_has_no_directory(surface, window) -> None:
    pipeline = NotificationPipeline(NotificationDispatcher(surface, window))
    assert await pipeline.resolve_directory() is None
