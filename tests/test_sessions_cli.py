from __future__ import annotations

import pytest

from requirements_interview.config import AppSettings, InterviewScope
from requirements_interview.models import (
    InterviewMessage,
    InterviewProposal,
    MessageRole,
    ProposedTask,
    SessionStatus,
)
from requirements_interview.session_store import SessionRepository
from requirements_interview.sessions_cli import run_sessions_cli


def test_list_filters_by_scope_and_activity(
    settings: AppSettings,
    repository: SessionRepository,
    capsys: pytest.CaptureFixture[str],
) -> None:
    task = repository.create(InterviewScope.TASK, "Fix login")
    project = repository.create(InterviewScope.PROJECT, "Recipe app")
    repository.update(project.id, status=SessionStatus.COMPLETE)

    run_sessions_cli(settings, ["list", "--scope", "task"], repository=repository)
    by_scope = capsys.readouterr().out
    run_sessions_cli(settings, ["list", "--active"], repository=repository)
    active = capsys.readouterr().out

    assert task.id in by_scope and project.id not in by_scope
    assert task.id in active and project.id not in active
    assert "| task | drafting |" in by_scope


def test_list_without_sessions(settings: AppSettings, capsys: pytest.CaptureFixture[str]) -> None:
    run_sessions_cli(settings, ["list"])

    assert capsys.readouterr().out.strip() == "No sessions found."


def test_show_prints_transcript_and_proposal(
    settings: AppSettings,
    repository: SessionRepository,
    capsys: pytest.CaptureFixture[str],
) -> None:
    record = repository.create(InterviewScope.TASK, "Fix login")
    repository.update(
        record.id,
        conversation=[
            InterviewMessage(role=MessageRole.USER, content="Fix login"),
            InterviewMessage(role=MessageRole.ASSISTANT, content="Which browser?"),
        ],
        proposed_output=InterviewProposal(
            tasks=[ProposedTask(title="Fix button", description="Safari only")]
        ),
    )

    run_sessions_cli(settings, ["show", record.id], repository=repository)
    output = capsys.readouterr().out

    assert f"Session ID: {record.id}" in output
    assert "Assistant:\nWhich browser?" in output
    assert " - Fix button: Safari only" in output


def test_delete(
    settings: AppSettings,
    repository: SessionRepository,
    capsys: pytest.CaptureFixture[str],
) -> None:
    record = repository.create(InterviewScope.TASK, "Fix login")

    run_sessions_cli(settings, ["delete", record.id], repository=repository)
    run_sessions_cli(settings, ["show", record.id], repository=repository)

    output = capsys.readouterr().out
    assert f"Deleted session {record.id}." in output
    assert f"Session '{record.id}' not found." in output


def test_subcommand_is_required(settings: AppSettings) -> None:
    with pytest.raises(SystemExit):
        run_sessions_cli(settings, [])
