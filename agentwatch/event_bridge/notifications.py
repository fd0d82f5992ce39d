"""Notification dedup and gate.

Two event kinds produce a desktop notification:

- **Turn finished** (``message.updated`` for an assistant message with
  ``finish == "stop"``), deduplicated by message id.
- **Input requested** (``question.asked``), deduplicated by
  ``sessionID:questionID``.

Each key is acted on at most once per process.  The claim (test-and-insert)
is atomic, so two concurrent deliveries of the same event cannot both pass.
A claimed occurrence is then gated on the host window: when the user is
already looking at the app, nothing is shown.
"""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING, Any

from loguru import logger

from agentwatch.event_bridge.collaborators import Notification
from agentwatch.event_bridge.labels import format_mode, format_model_id
from agentwatch.event_bridge.models.enums import EventType
from agentwatch.event_bridge.models.events import has_finish_stop, str_field

if TYPE_CHECKING:
    from agentwatch.event_bridge.collaborators import NotificationSurface, SettingsSource, WindowStateProbe
    from agentwatch.event_bridge.models.events import EventEnvelope

INPUT_NEEDED_TITLE = "Input needed"
INPUT_NEEDED_BODY = "Agent is waiting for your response"


class DedupSet:
    """Grow-only set of keys with an atomic first-seen claim."""

    def __init__(self) -> None:
        self._keys: set[str] = set()
        self._lock = asyncio.Lock()

    async def claim(self, key: str) -> bool:
        """Insert *key*; ``True`` only for the first caller to do so."""
        async with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class NotificationDispatcher:
    """Turns decoded events into at-most-once, focus-gated notifications."""

    def __init__(
        self,
        surface: NotificationSurface,
        window: WindowStateProbe,
        *,
        sound: str | None = "Glass",
    ) -> None:
        self._surface = surface
        self._window = window
        self._sound = sound
        self.notified_messages = DedupSet()
        self.notified_questions = DedupSet()

    async def handle_event(self, event: EventEnvelope) -> None:
        if event.type == EventType.MESSAGE_UPDATED:
            await self._handle_message_updated(event)
        elif event.type == EventType.QUESTION_ASKED:
            await self._handle_question_asked(event)

    # -- Handlers --------------------------------------------------------------

    async def _handle_message_updated(self, event: EventEnvelope) -> None:
        info = event.assistant_info()
        if info is None or not has_finish_stop(info):
            return

        message_id = str_field(info, "id")
        if message_id is None:
            return

        if not await self.notified_messages.claim(message_id):
            return

        title = f"{format_mode(str_field(info, 'mode'))} agent is ready"
        body = f"{format_model_id(str_field(info, 'modelID'))} completed the task"
        await self._notify(title, body)

    async def _handle_question_asked(self, event: EventEnvelope) -> None:
        session_id = event.str_property("sessionID")
        question_id = event.str_property("id")
        if session_id is None or question_id is None:
            return

        if not await self.notified_questions.claim(f"{session_id}:{question_id}"):
            return

        await self._notify(INPUT_NEEDED_TITLE, INPUT_NEEDED_BODY)

    # -- Gate ------------------------------------------------------------------

    def should_notify(self) -> bool:
        """Fire unless the main window is focused and not minimized."""
        state = self._window.foreground_state()
        if state is None:
            return True
        return not state.in_foreground

    async def _notify(self, title: str, body: str) -> None:
        if not self.should_notify():
            logger.debug("[notify] Window in foreground; suppressed '{}'", title)
            return

        try:
            await self._surface.show(Notification(title=title, body=body, sound=self._sound))
        except Exception:
            logger.opt(exception=True).debug("[notify] Notification surface failed for '{}'", title)


# ---------------------------------------------------------------------------
# Project directory (scoped-stream fallback)
# ---------------------------------------------------------------------------


async def resolve_project_directory(settings: SettingsSource) -> str | None:
    """Resolve a working directory from the host settings document.

    Preference: the active project's path, then ``lastDirectory``.  A load
    failure resolves to ``None``; the caller treats that as "no directory".
    """
    try:
        document = await settings.load()
    except Exception as exc:
        logger.debug("[notify] Could not load settings: {}", exc)
        return None

    path = _active_project_path(document) or str_field(document, "lastDirectory")
    return os.path.expanduser(path) if path else None


def _active_project_path(document: dict[str, Any]) -> str | None:
    active_id = str_field(document, "activeProjectId")
    projects = document.get("projects")
    if active_id is None or not isinstance(projects, list):
        return None
    for entry in projects:
        if str_field(entry, "id") == active_id:
            return str_field(entry, "path")
    return None
