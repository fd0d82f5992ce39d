"""Stream connector -- pick the first reachable event endpoint.

Candidates are tried in a fixed order:

1. ``{base}/global/event`` -- scope-free stream (current servers)
2. ``{base}/event`` -- legacy unscoped stream
3. ``{base}/event?directory=<path>`` -- directory-scoped stream

The working directory for (3) is resolved lazily, only after (1) and (2)
failed.  The caller gets the open response together with the scope it is
bound to, so it can decide when a scoped connection has gone stale.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx

from agentwatch.event_bridge.models.scope import ConnectionScope, DirectoryScope, GlobalScope

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "accept": "text/event-stream",
    # Compressed bodies arrive in blocks and defeat incremental framing.
    "accept-encoding": "identity",
}

class NoEndpointReachableError(ConnectionError):
    """Raised when none of the candidate stream endpoints accepted the connection."""


class StreamRejectedError(ConnectionError):
    """Raised when an endpoint answers with a non-success status."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"SSE connect failed with status {status_code}: {url}")
        self.url = url
        self.status_code = status_code


@dataclass
class StreamConnection:
    """An open streaming response and the scope it was opened with."""

    response: httpx.Response
    scope: ConnectionScope
    url: str

    def chunks(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes()

    async def aclose(self) -> None:
        await self.response.aclose()


class StreamConnector:
    """Opens the upstream SSE stream with endpoint fallback.

    The ``httpx.AsyncClient`` is owned by the caller and shared across
    reconnects.  ``name`` only tags log lines (``notify`` / ``activity``).
    """

    def __init__(self, client: httpx.AsyncClient, *, name: str = "stream") -> None:
        self._client = client
        self._name = name

    async def connect(
        self,
        base_url: str,
        resolve_directory: Callable[[], Awaitable[str | None]],
    ) -> StreamConnection:
        base = base_url.rstrip("/")
        global_url = f"{base}/global/event"
        event_url = f"{base}/event"

        for url in (global_url, event_url):
            try:
                response = await self._open(url)
            except (httpx.HTTPError, StreamRejectedError) as exc:
                logger.debug("[%s] SSE endpoint unavailable: %s (%s); falling back", self._name, url, exc)
                continue
            logger.debug("[%s] Using SSE endpoint: %s", self._name, url)
            return StreamConnection(response=response, scope=GlobalScope(), url=url)

        directory = await resolve_directory()
        if not directory:
            msg = "No project directory available for SSE fallback"
            raise NoEndpointReachableError(msg)

        directory_url = str(httpx.URL(event_url).copy_add_param("directory", directory))
        try:
            response = await self._open(directory_url)
        except (httpx.HTTPError, StreamRejectedError) as exc:
            msg = f"No SSE endpoint reachable under {base}"
            raise NoEndpointReachableError(msg) from exc

        logger.debug("[%s] Using directory-scoped SSE endpoint: %s", self._name, directory_url)
        return StreamConnection(response=response, scope=DirectoryScope(directory), url=directory_url)

    async def _open(self, url: str) -> httpx.Response:
        """Send a streaming GET; the body is left unread for the framer."""
        logger.debug("[%s] Connecting SSE: %s", self._name, url)
        request = self._client.build_request("GET", url, headers=SSE_HEADERS)
        response = await self._client.send(request, stream=True)

        logger.debug("[%s] SSE response status=%d headers=%s", self._name, response.status_code, response.headers)
        if not response.is_success:
            await response.aclose()
            raise StreamRejectedError(url, response.status_code)
        return response
