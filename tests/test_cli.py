from __future__ import annotations

from typing import Any, Dict

import pytest

from requirements_interview import cli
from requirements_interview.config import AppSettings, Intensity, InterviewScope


@pytest.fixture(autouse=True)
def fixed_settings(monkeypatch: pytest.MonkeyPatch, settings: AppSettings) -> AppSettings:
    monkeypatch.setattr(cli.AppSettings, "load", classmethod(lambda cls: settings))
    return settings


def test_sessions_command_is_dispatched(capsys: pytest.CaptureFixture[str]) -> None:
    cli.run_cli(["sessions", "list"])

    assert "No sessions found." in capsys.readouterr().out


def test_interview_command_passes_options(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: Dict[str, Any] = {}

    async def fake_console(settings, scope, initial_input, **kwargs):
        seen.update(scope=scope, initial_input=initial_input, **kwargs)

    monkeypatch.setattr(cli, "run_console_interview", fake_console)

    cli.run_cli(["interview", "--scope", "task", "--intensity", "deep-dive", "Fix", "login"])

    assert seen["scope"] is InterviewScope.TASK
    assert seen["initial_input"] == "Fix login"
    assert seen["intensity"] is Intensity.DEEP_DIVE
    assert seen["session_id"] is None


def test_resume_skips_initial_prompt(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: Dict[str, Any] = {}

    async def fake_console(settings, scope, initial_input, **kwargs):
        seen.update(scope=scope, initial_input=initial_input, **kwargs)

    monkeypatch.setattr(cli, "run_console_interview", fake_console)

    cli.run_cli(["--resume", "abc123"])

    assert seen["session_id"] == "abc123"
    assert seen["initial_input"] is None
    assert seen["scope"] is InterviewScope.NEW_FEATURE


def test_serve_uses_bridge_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: Dict[str, Any] = {}
    monkeypatch.setattr(cli, "run_bridge_server", lambda settings, **kwargs: seen.update(kwargs))

    cli.run_cli(["serve", "--port", "9999"])

    assert seen["port"] == 9999
    assert seen["host"] is None
    assert seen["log_level"] == "info"


def test_invalid_settings_exit(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(cls):
        raise RuntimeError("INTERVIEW_RETRY_LIMIT must be an integer")

    monkeypatch.setattr(cli.AppSettings, "load", classmethod(broken))

    with pytest.raises(SystemExit):
        cli.run_cli(["sessions", "list"])
