"""Command-line entry point."""

from __future__ import annotations

import json

from click.testing import CliRunner

from agentwatch.cli import main


def test_help_lists_commands() -> None:
    result = CliRunner().invoke(main, ["--help"])

    assert result.exit_code == 0
    assert "watch" in result.output
    assert "decode" in result.output


def test_decode_prints_both_shapes() -> None:
    stream = (
        b'data: {"type":"session.idle","properties":{"sessionID":"s1"}}\n\n'
        b'data: {"directory":"/work","payload":{"type":"question.asked"}}\n\n'
    )
    result = CliRunner().invoke(main, ["decode"], input=stream)

    assert result.exit_code == 0
    lines = [json.loads(line) for line in result.stdout.splitlines()]
    assert lines == [
        {"directory": None, "type": "session.idle", "properties": {"sessionID": "s1"}},
        {"directory": "/work", "type": "question.asked", "properties": {}},
    ]


def test_decode_reports_skipped_frames(tmp_path) -> None:
    source = tmp_path / "capture.sse"
    source.write_bytes(b"data: not json\n\ndata: {\"type\":\"x\"}\n\n")

    result = CliRunner().invoke(main, ["decode", str(source)])

    assert result.exit_code == 0
    assert [json.loads(line)["type"] for line in result.stdout.splitlines()] == ["x"]
    assert "skipped frame" in result.stderr


def test_watch_applies_overrides(monkeypatch) -> None:
    import agentwatch.cli as cli
    import agentwatch.event_bridge.log as log

    calls: dict = {}

    def fake_setup_logging(level: str, *, serialize: bool = False) -> None:
        calls["logging"] = (level, serialize)

    async def fake_watch(settings, *, notifications: bool, activity: bool) -> None:
        calls["watch"] = (settings, notifications, activity)

    monkeypatch.setattr(log, "setup_logging", fake_setup_logging)
    monkeypatch.setattr(cli, "_watch", fake_watch)

    result = CliRunner().invoke(
        main, ["watch", "--port", "4096", "--log-level", "debug", "--log-json", "--no-activity"]
    )

    assert result.exit_code == 0, result.output
    assert calls["logging"] == ("debug", True)
    settings, notifications, activity = calls["watch"]
    assert settings.port == 4096
    assert (notifications, activity) == (True, False)


def test_watch_defaults_to_text_logs(monkeypatch) -> None:
    import agentwatch.cli as cli
    import agentwatch.event_bridge.log as log

    calls: dict = {}

    def fake_setup_logging(level: str, *, serialize: bool = False) -> None:
        calls["logging"] = (level, serialize)

    async def fake_watch(settings, *, notifications: bool, activity: bool) -> None:
        return None

    monkeypatch.setattr(log, "setup_logging", fake_setup_logging)
    monkeypatch.setattr(cli, "_watch", fake_watch)

    result = CliRunner().invoke(main, ["watch"])

    assert result.exit_code == 0, result.output
    assert calls["logging"] == ("INFO", False)
