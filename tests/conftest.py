from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Deque, List, Optional, Tuple

import pytest

from requirements_interview.config import (
    AppSettings,
    AssistantSettings,
    Intensity,
    InterviewScope,
)
from requirements_interview.interview_service import InterviewCallbacks, InterviewService
from requirements_interview.models import InterviewMessage, InterviewProposal, InterviewQuestion
from requirements_interview.process_driver import (
    AssistantLaunchError,
    TurnEvents,
    TurnRequest,
)
from requirements_interview.session_store import SessionRepository


class FakeTurn:
    """Stands in for a running assistant process.

    Events are forwarded even after ``kill()`` so tests can prove the
    service itself ignores output from superseded turns.
    """

    def __init__(self, request: TurnRequest, events: TurnEvents) -> None:
        self.request = request
        self.events = events
        self.killed = False
        self.exited = False

    @property
    def running(self) -> bool:
        return not self.killed and not self.exited

    def kill(self) -> None:
        self.killed = True

    def emit(self, *records: Any) -> None:
        for record in records:
            text = record if isinstance(record, str) else json.dumps(record) + "\n"
            self.events.on_output(text)

    def stderr(self, text: str) -> None:
        self.events.on_diagnostic(text)

    def exit(self, code: Optional[int] = 0) -> None:
        self.exited = True
        self.events.on_exit(code)


ScriptedReply = Tuple[List[Any], Optional[int], Optional[str]]


class FakeDriver:
    """Records launches; optionally replays scripted replies synchronously."""

    def __init__(self) -> None:
        self.turns: List[FakeTurn] = []
        self.script: Deque[ScriptedReply] = deque()
        self.fail_with: Optional[str] = None

    def queue_reply(
        self,
        *records: Any,
        exit_code: Optional[int] = 0,
        stderr: Optional[str] = None,
    ) -> None:
        self.script.append((list(records), exit_code, stderr))

    @property
    def requests(self) -> List[TurnRequest]:
        return [turn.request for turn in self.turns]

    @property
    def last(self) -> FakeTurn:
        return self.turns[-1]

    async def launch(self, request: TurnRequest, events: TurnEvents) -> FakeTurn:
        if self.fail_with is not None:
            raise AssistantLaunchError(self.fail_with)
        turn = FakeTurn(request, events)
        self.turns.append(turn)
        if self.script:
            records, exit_code, stderr = self.script.popleft()
            if stderr:
                turn.stderr(stderr)
            if records:
                turn.emit(*records)
            if exit_code is not None:
                turn.exit(exit_code)
        return turn


@dataclass
class CallbackRecorder:
    messages: List[InterviewMessage] = field(default_factory=list)
    questions: List[InterviewQuestion] = field(default_factory=list)
    proposals: List[InterviewProposal] = field(default_factory=list)
    completions: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    thinking: int = 0

    def _thinking(self) -> None:
        self.thinking += 1

    def callbacks(self) -> InterviewCallbacks:
        return InterviewCallbacks(
            on_message=self.messages.append,
            on_question=self.questions.append,
            on_thinking=self._thinking,
            on_proposal=self.proposals.append,
            on_complete=self.completions.append,
            on_error=self.errors.append,
        )


def make_settings(tmp_path: Path, **assistant_overrides: Any) -> AppSettings:
    assistant_options: dict[str, Any] = {
        "binary": "claude",
        "workspace_root": tmp_path,
        "retry_delay": 0,
    }
    assistant_options.update(assistant_overrides)
    return AppSettings(
        assistant=AssistantSettings(**assistant_options),
        default_scope=InterviewScope.NEW_FEATURE,
        intensity=Intensity.BALANCED,
        data_dir=tmp_path / "data",
        redis_url=None,
        bridge_host="127.0.0.1",
        bridge_port=8765,
        log_level="INFO",
    )


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return make_settings(tmp_path)


@pytest.fixture
def repository(settings: AppSettings) -> SessionRepository:
    return SessionRepository(settings.data_dir)


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def recorder() -> CallbackRecorder:
    return CallbackRecorder()


@pytest.fixture
def service(
    settings: AppSettings,
    repository: SessionRepository,
    fake_driver: FakeDriver,
) -> InterviewService:
    return InterviewService(settings, repository=repository, driver=fake_driver)
