"""Session activity tracker -- debounced idle / busy / cooldown phases.

Upstream sends several overlapping signals for the same turn (status
updates, streaming parts, message completion).  The tracker folds them into
one phase per session and broadcasts only actual changes::

    idle --(busy signal)--> busy --(finish: stop)--> cooldown --(2s)--> idle
                             ^                          |
                             +-----(busy signal)--------+

The cooldown absorbs the gap between one assistant step finishing and the
next one starting, so the UI does not flicker busy/idle/busy.

State is ephemeral and lives in two maps guarded by one ``asyncio.Lock``:
the phase per session and the pending cooldown task per session.  The lock
is never held while emitting to the UI.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from agentwatch.event_bridge.models.enums import STREAMING_PART_TYPES, ActivityPhase, EventType, SessionStatusType
from agentwatch.event_bridge.models.events import has_finish_stop, str_field

if TYPE_CHECKING:
    from agentwatch.event_bridge.collaborators import UiEmitter
    from agentwatch.event_bridge.models.events import EventEnvelope

DEFAULT_EVENT_NAME = "agentwatch:session-activity"
DEFAULT_COOLDOWN_SECONDS = 2.0

_BUSY_STATUSES = frozenset({SessionStatusType.BUSY, SessionStatusType.RETRY})


class ActivityTracker:
    """Per-session phase state machine with a cancelable cooldown timer.

    Invariants:

    - a session missing from the map reads as ``IDLE``; its first signal
      records it and is broadcast, even when that signal is idle;
    - setting the recorded phase again is a no-op (no timer change, no emit);
    - leaving ``COOLDOWN`` cancels that session's timer;
    - at most one cooldown timer exists per session.
    """

    def __init__(
        self,
        emitter: UiEmitter,
        *,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        event_name: str = DEFAULT_EVENT_NAME,
    ) -> None:
        self._emitter = emitter
        self._cooldown = cooldown
        self._event_name = event_name
        self._phases: dict[str, ActivityPhase] = {}
        self._cooldowns: dict[str, asyncio.Task[None]] = {}
        self._lock = asyncio.Lock()

    # -- Query -----------------------------------------------------------------

    def phase(self, session_id: str) -> ActivityPhase:
        return self._phases.get(session_id, ActivityPhase.IDLE)

    def snapshot(self) -> dict[str, ActivityPhase]:
        return dict(self._phases)

    def has_pending_cooldown(self, session_id: str) -> bool:
        return session_id in self._cooldowns

    # -- Event dispatch --------------------------------------------------------

    async def handle_event(self, event: EventEnvelope) -> None:
        match event.type:
            case EventType.SESSION_STATUS:
                session_id = event.str_property("sessionID")
                status_type = str_field(event.properties.get("status"), "type")
                if session_id is None or status_type is None:
                    return
                phase = ActivityPhase.BUSY if status_type in _BUSY_STATUSES else ActivityPhase.IDLE
                await self.set_phase(session_id, phase)

            case EventType.SESSION_IDLE:
                session_id = event.str_property("sessionID")
                if session_id is not None:
                    await self.set_phase(session_id, ActivityPhase.IDLE)

            case EventType.MESSAGE_UPDATED:
                info = event.assistant_info()
                if info is None or not has_finish_stop(info):
                    return
                session_id = str_field(info, "sessionID")
                if session_id is not None:
                    await self.enter_cooldown_if_busy(session_id)

            case EventType.MESSAGE_PART_UPDATED:
                info = event.assistant_info()
                session_id = str_field(info, "sessionID") if info is not None else None
                if info is None or session_id is None:
                    return
                # Some sources never send session.status; streaming parts imply busy.
                part_type = str_field(event.properties.get("part"), "type")
                if part_type in STREAMING_PART_TYPES:
                    await self.set_phase(session_id, ActivityPhase.BUSY)
                if has_finish_stop(info):
                    await self.enter_cooldown_if_busy(session_id)

    # -- Transitions -----------------------------------------------------------

    async def set_phase(self, session_id: str, phase: ActivityPhase) -> bool:
        """Move *session_id* to *phase*.  Returns ``True`` if the phase changed."""
        async with self._lock:
            changed = self._transition_locked(session_id, phase)
        if changed:
            self._emit(session_id, phase)
        return changed

    async def enter_cooldown_if_busy(self, session_id: str) -> bool:
        """Start the cooldown for a busy session; otherwise do nothing.

        A session that already settled (idle or cooldown) is left alone so a
        late ``finish`` cannot resurrect a timer for it.
        """
        async with self._lock:
            if self.phase(session_id) is not ActivityPhase.BUSY:
                return False
            self._transition_locked(session_id, ActivityPhase.COOLDOWN)
            self._arm_cooldown_locked(session_id)
        self._emit(session_id, ActivityPhase.COOLDOWN)
        return True

    async def reset_all(self) -> int:
        """Cancel every timer and force all sessions to idle.

        Called before each reconnect: events may have been lost while the
        stream was down, so no session can be trusted to still be busy.
        Returns the number of sessions re-broadcast as idle.
        """
        async with self._lock:
            for task in self._cooldowns.values():
                task.cancel()
            self._cooldowns.clear()

            settled = [sid for sid, phase in self._phases.items() if phase is not ActivityPhase.IDLE]
            for sid in self._phases:
                self._phases[sid] = ActivityPhase.IDLE

        for sid in settled:
            self._emit(sid, ActivityPhase.IDLE)
        if settled:
            logger.debug("[activity] Reset {} sessions to idle", len(settled))
        return len(settled)

    async def aclose(self) -> None:
        """Cancel outstanding cooldown timers (shutdown)."""
        async with self._lock:
            tasks = list(self._cooldowns.values())
            self._cooldowns.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # -- Internals (lock held) -------------------------------------------------

    def _transition_locked(self, session_id: str, phase: ActivityPhase) -> bool:
        # An untracked session is recorded (and announced) on its first signal.
        if self._phases.get(session_id) is phase:
            return False

        self._phases[session_id] = phase
        if phase is not ActivityPhase.COOLDOWN:
            task = self._cooldowns.pop(session_id, None)
            if task is not None:
                task.cancel()
        return True

    def _arm_cooldown_locked(self, session_id: str) -> None:
        previous = self._cooldowns.pop(session_id, None)
        if previous is not None:
            previous.cancel()
        self._cooldowns[session_id] = asyncio.create_task(
            self._expire_cooldown(session_id),
            name=f"cooldown:{session_id}",
        )

    async def _expire_cooldown(self, session_id: str) -> None:
        await asyncio.sleep(self._cooldown)
        async with self._lock:
            # Only the live timer may settle the session.
            if self._cooldowns.get(session_id) is not asyncio.current_task():
                return
            del self._cooldowns[session_id]
            if self.phase(session_id) is not ActivityPhase.COOLDOWN:
                return
            self._transition_locked(session_id, ActivityPhase.IDLE)
        self._emit(session_id, ActivityPhase.IDLE)

    def _emit(self, session_id: str, phase: ActivityPhase) -> None:
        logger.debug("[activity] {} -> {}", session_id, phase)
        try:
            self._emitter.emit(self._event_name, {"sessionId": session_id, "phase": phase.value})
        except Exception:
            logger.opt(exception=True).debug("[activity] UI emit failed for {}", session_id)
