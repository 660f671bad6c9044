from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import CallbackRecorder, make_settings
from requirements_interview.config import AssistantSettings, InterviewScope
from requirements_interview.interview_service import InterviewService
from requirements_interview.process_driver import (
    AssistantLaunchError,
    AssistantProcessDriver,
    AssistantTurn,
    TurnEvents,
    TurnRequest,
)
from requirements_interview.prompts import RESPONSE_SCHEMA

FAKE_ASSISTANT = """
import json
import os
import sys
import time

prompt = sys.stdin.read()
args = sys.argv[1:]
if "SLEEP" in prompt:
    time.sleep(30)
if "FAIL" in prompt:
    sys.stderr.write("something went wrong\\n")
    sys.exit(3)
record = {
    "type": "questions",
    "questions": [
        {"id": "q1", "text": "You said: " + prompt.strip(), "questionType": "text"}
    ],
}
envelope = {
    "type": "result",
    "is_error": False,
    "structured_output": record,
    "resumed": "--resume" in args,
    "ide_port": os.environ.get("CLAUDE_CODE_SSE_PORT"),
    "cwd": os.getcwd(),
}
sys.stdout.write("Starting up\\n")
sys.stdout.write(json.dumps(envelope) + "\\n")
"""


@pytest.fixture
def fake_assistant(tmp_path: Path) -> Path:
    script = tmp_path / "fake-assistant"
    script.write_text(f"#!{sys.executable}\n{FAKE_ASSISTANT}", encoding="utf-8")
    script.chmod(0o755)
    return script


class Collector:
    def __init__(self) -> None:
        self.stdout: List[str] = []
        self.stderr: List[str] = []
        self.exits: List[Optional[int]] = []

    def events(self) -> TurnEvents:
        return TurnEvents(
            on_output=self.stdout.append,
            on_diagnostic=self.stderr.append,
            on_exit=self.exits.append,
        )

    def envelope(self) -> dict:
        lines = "".join(self.stdout).splitlines()
        return json.loads(lines[-1])


def request(payload: str, *, resume: bool = False) -> TurnRequest:
    return TurnRequest(
        payload=payload,
        system_prompt="You are an analyst.",
        schema={"type": "object"},
        assistant_session_id="3f0c2a5e-0000-4000-8000-000000000000",
        resume=resume,
    )


def test_fresh_turn_command(tmp_path: Path) -> None:
    driver = AssistantProcessDriver(AssistantSettings(binary="claude", workspace_root=tmp_path))

    command = driver.build_command(
        TurnRequest(
            payload="hi",
            system_prompt="SYSTEM",
            schema=RESPONSE_SCHEMA,
            assistant_session_id="abc",
        )
    )

    assert command == [
        "claude",
        "-p",
        "--session-id",
        "abc",
        "--output-format",
        "json",
        "--json-schema",
        json.dumps(RESPONSE_SCHEMA, separators=(",", ":")),
        "--strict-mcp-config",
        "--tools",
        "",
        "--system-prompt",
        "SYSTEM",
        "-",
    ]


def test_resume_turn_command_skips_system_prompt(tmp_path: Path) -> None:
    driver = AssistantProcessDriver(
        AssistantSettings(
            binary="claude",
            extra_args=["--model", "sonnet"],
            workspace_root=tmp_path,
        )
    )

    command = driver.build_command(request("hi", resume=True))

    assert command[2:4] == ["--resume", "3f0c2a5e-0000-4000-8000-000000000000"]
    assert "--system-prompt" not in command
    assert command[-3:] == ["--model", "sonnet", "-"]


def test_env_strips_ide_variables(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CLAUDE_CODE_SSE_PORT", "4242")
    monkeypatch.setenv("ENABLE_IDE_INTEGRATION", "true")
    monkeypatch.setenv("KEEP_ME", "1")
    driver = AssistantProcessDriver(AssistantSettings(binary="claude", workspace_root=tmp_path))

    env = driver.build_env()

    assert "CLAUDE_CODE_SSE_PORT" not in env
    assert "ENABLE_IDE_INTEGRATION" not in env
    assert env["KEEP_ME"] == "1"


async def test_turn_round_trip(
    fake_assistant: Path,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("CLAUDE_CODE_SSE_PORT", "4242")
    driver = AssistantProcessDriver(
        AssistantSettings(binary=str(fake_assistant), workspace_root=tmp_path)
    )
    collector = Collector()

    turn = await driver.launch(request("hello there"), collector.events())
    code = await turn.wait()

    assert code == 0
    assert collector.exits == [0]
    envelope = collector.envelope()
    assert envelope["structured_output"]["questions"][0]["text"] == "You said: hello there"
    assert envelope["resumed"] is False
    assert envelope["ide_port"] is None
    assert Path(envelope["cwd"]).resolve() == tmp_path.resolve()


async def test_resume_flag_reaches_process(fake_assistant: Path, tmp_path: Path) -> None:
    driver = AssistantProcessDriver(
        AssistantSettings(binary=str(fake_assistant), workspace_root=tmp_path)
    )
    collector = Collector()

    turn = await driver.launch(request("again", resume=True), collector.events())
    await turn.wait()

    assert collector.envelope()["resumed"] is True


async def test_non_zero_exit_and_stderr(fake_assistant: Path, tmp_path: Path) -> None:
    driver = AssistantProcessDriver(
        AssistantSettings(binary=str(fake_assistant), workspace_root=tmp_path)
    )
    collector = Collector()

    turn = await driver.launch(request("FAIL"), collector.events())
    code = await turn.wait()

    assert code == 3
    assert collector.exits == [3]
    assert "".join(collector.stderr) == "something went wrong\n"


async def test_killed_turn_delivers_nothing(fake_assistant: Path, tmp_path: Path) -> None:
    driver = AssistantProcessDriver(
        AssistantSettings(binary=str(fake_assistant), workspace_root=tmp_path)
    )
    collector = Collector()

    turn = await driver.launch(request("SLEEP"), collector.events())
    assert turn.running
    turn.kill()
    turn.kill()
    await asyncio.wait_for(turn.wait(), timeout=10)

    assert turn.killed
    assert not turn.running
    assert collector.exits == []
    assert collector.stdout == []


async def test_missing_binary_raises_launch_error(tmp_path: Path) -> None:
    driver = AssistantProcessDriver(
        AssistantSettings(binary=str(tmp_path / "no-such-cli"), workspace_root=tmp_path)
    )

    with pytest.raises(AssistantLaunchError):
        await driver.launch(request("hello"), Collector().events())


async def test_undeliverable_message_kills_the_turn() -> None:
    process = MagicMock()
    process.stdin = None
    process.stdout = None
    process.stderr = None
    process.returncode = None
    process.wait = AsyncMock(return_value=-9)
    collector = Collector()
    turn = AssistantTurn(process, collector.events())

    with pytest.raises(AssistantLaunchError):
        await turn.start("hello")
    await turn.wait()

    assert turn.killed
    process.kill.assert_called_once_with()
    assert collector.exits == []


async def test_service_with_real_subprocess(fake_assistant: Path, tmp_path: Path) -> None:
    settings = make_settings(tmp_path, binary=str(fake_assistant))
    service = InterviewService(settings)
    recorder = CallbackRecorder()
    asked = asyncio.Event()
    callbacks = recorder.callbacks()
    callbacks.on_question = lambda question: (recorder.questions.append(question), asked.set())

    await service.start(InterviewScope.TASK, "Fix login button", callbacks)
    await asyncio.wait_for(asked.wait(), timeout=10)

    assert recorder.questions[0].text.startswith("You said: I want to define a task clearly.")
    assert recorder.questions[0].text.endswith("## My Request\nFix login button")
    service.cancel()
