"""SSE line framer -- reassembles ``data:`` lines into frames.

Only the ``data`` field matters to the bridge; ``event:``, ``id:``, ``retry:``
and ``:`` comment lines are skipped.  A blank line terminates a frame and the
accumulated data lines are joined with ``\\n``.

With an idle timeout, a read that stays silent for that long is not an
error.  The framer asks ``on_idle`` whether the connection has gone stale and
otherwise keeps waiting on the *same* pending read, so no bytes are lost.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"


class SSEFramer:
    """Turn an async iterator of byte chunks into SSE frame payloads.

    Parameters
    ----------
    chunks:
        Raw response body chunks, in arrival order.
    idle_timeout:
        Seconds a single read may stay silent before ``on_idle`` is consulted.
        ``None`` waits indefinitely.
    on_idle:
        Staleness check.  Returning ``True`` stops framing cleanly.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        *,
        idle_timeout: float | None = None,
        on_idle: Callable[[], bool] | None = None,
    ) -> None:
        self._chunks = chunks
        self._idle_timeout = idle_timeout
        self._on_idle = on_idle
        self._stale = False

    @property
    def stale(self) -> bool:
        """True once framing stopped because ``on_idle`` reported staleness."""
        return self._stale

    # -- Frames ----------------------------------------------------------------

    async def frames(self) -> AsyncIterator[str]:
        data_lines: list[str] = []
        async for line in self._lines():
            if not line:
                if data_lines:
                    yield "\n".join(data_lines)
                    data_lines.clear()
                continue

            if line.startswith(DATA_PREFIX):
                value = line[len(DATA_PREFIX) :]
                data_lines.append(value[1:] if value.startswith(" ") else value)

        if data_lines:
            logger.debug("Stream ended with %d unterminated data lines; dropped", len(data_lines))

    # -- Lines -----------------------------------------------------------------

    async def _lines(self) -> AsyncIterator[str]:
        buffer = bytearray()
        while True:
            chunk = await self._next_chunk()
            if chunk is None:
                break
            buffer.extend(chunk)
            while (newline := buffer.find(b"\n")) != -1:
                raw = bytes(buffer[:newline])
                del buffer[: newline + 1]
                line = _decode_line(raw)
                if line is not None:
                    yield line

        # Trailing line without a newline at end of stream.
        if buffer and not self._stale:
            line = _decode_line(bytes(buffer))
            if line is not None:
                yield line

    async def _next_chunk(self) -> bytes | None:
        """Return the next chunk, or ``None`` at end of stream / on staleness."""
        if self._idle_timeout is None:
            return await _read(self._chunks)

        pending = asyncio.create_task(_read(self._chunks))
        try:
            while True:
                done, _ = await asyncio.wait({pending}, timeout=self._idle_timeout)
                if done:
                    return pending.result()
                if self._on_idle is not None and self._on_idle():
                    self._stale = True
                    return None
        finally:
            if not pending.done():
                pending.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pending


async def _read(chunks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await anext(chunks)
    except StopAsyncIteration:
        return None


def _decode_line(raw: bytes) -> str | None:
    """Strip the line terminator and decode; ``None`` for invalid UTF-8."""
    try:
        return raw.rstrip(b"\r\n").decode("utf-8")
    except UnicodeDecodeError as exc:
        logger.warning("Non-UTF8 SSE line discarded: %s", exc)
        return None
