"""Bridge configuration loaded from AGENTWATCH_* environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class WatchSettings(BaseSettings):
    """Event bridge settings.

    All fields are read from environment variables with the ``AGENTWATCH_``
    prefix.  For example, ``AGENTWATCH_PORT=4096`` maps to ``port``.
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False
    """Emit one JSON object per log record instead of coloured text."""

    # -- Upstream service ------------------------------------------------------
    host: str = "127.0.0.1"
    port: int | None = None
    """Port of the local agent service.  Unset means "not started yet"."""

    api_prefix: str = ""
    """Path prefix of the service API, e.g. ``/api``."""

    working_directory: str | None = None
    """Directory for the activity stream's scoped fallback.  Defaults to CWD."""

    settings_file: str | None = None
    """Host settings JSON (``activeProjectId`` / ``projects`` / ``lastDirectory``).

    Only consulted by the notification stream when it has to fall back to a
    directory-scoped endpoint.
    """

    # -- Timing ----------------------------------------------------------------
    reconnect_backoff: float = 2.0
    """Seconds to wait between connection cycles."""

    activity_idle_timeout: float = 2.0
    """Silence after which the activity stream re-checks its directory scope."""

    cooldown_seconds: float = 2.0
    """Grace period between an assistant turn finishing and the session going idle."""

    connect_timeout: float = 10.0

    stream_read_timeout: float = 24 * 60 * 60.0
    """Longest silence a single stream read tolerates (quiet periods between turns can be long)."""

    tcp_keepalive: float = 30.0
    """Idle seconds before TCP keepalive checks start, so a dead peer is noticed."""

    # -- Outputs ---------------------------------------------------------------
    activity_event_name: str = "agentwatch:session-activity"
    notification_sound: str | None = "Glass"
    notify_command: str = "notify-send"


def get_settings() -> WatchSettings:
    """Return a cached settings instance.

    Call ``_get_settings_cached.cache_clear()`` in tests to force a re-read
    after overriding env vars.
    """
    return _get_settings_cached()


@lru_cache(maxsize=1)
def _get_settings_cached() -> WatchSettings:
    return WatchSettings()
