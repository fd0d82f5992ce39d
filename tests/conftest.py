"""Shared test fixtures.

Everything runs in-process: the upstream service is replaced by
``httpx.MockTransport`` and the host collaborators by recording fakes.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any

import pytest

from agentwatch.event_bridge.collaborators import Notification, WindowState
from agentwatch.event_bridge.settings import _get_settings_cached


# ---------------------------------------------------------------------------
# Settings isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _clean_settings_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Drop AGENTWATCH_* variables so tests never see the developer's env."""
    for key in list(os.environ):
        if key.startswith("AGENTWATCH_"):
            monkeypatch.delenv(key)
    _get_settings_cached.cache_clear()
    yield
    _get_settings_cached.cache_clear()


@pytest.fixture
def set_env(monkeypatch: pytest.MonkeyPatch):
    """Set an AGENTWATCH_* variable for one test (restored afterwards)."""

    def _set(key: str, value: str) -> None:
        monkeypatch.setenv(key, value)
        _get_settings_cached.cache_clear()

    return _set


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class RecordingEmitter:
    def __init__(self) -> None:
        self.emitted: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.emitted.append((event, payload))

    @property
    def phases(self) -> list[tuple[str, str]]:
        return [(payload["sessionId"], payload["phase"]) for _, payload in self.emitted]


class RecordingSurface:
    def __init__(self, *, fail: bool = False) -> None:
        self.shown: list[Notification] = []
        self.fail = fail

    async def show(self, notification: Notification) -> None:
        self.shown.append(notification)
        if self.fail:
            msg = "notification daemon unavailable"
            raise RuntimeError(msg)


class FakeWindow:
    def __init__(self, state: WindowState | None = None) -> None:
        self.state = state

    def foreground_state(self) -> WindowState | None:
        return self.state


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def surface() -> RecordingSurface:
    return RecordingSurface()


@pytest.fixture
def window() -> FakeWindow:
    return FakeWindow()
