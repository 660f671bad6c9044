"""Terminal front-end for running an interview without the HTTP bridge."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import AppSettings, Intensity, InterviewScope
from .interview_service import AssistantDriver, InterviewCallbacks, InterviewService
from .models import InterviewProposal, InterviewQuestion, MessageRole

logger = logging.getLogger(__name__)

TERMINATION_TOKENS = {"exit", "quit", "cancel", "stop"}
IDLE_POLL_SECONDS = 0.5

InputFunc = Callable[[str], str]
ConsoleEvent = Tuple[str, Any]


def _queue_callbacks(inbox: "asyncio.Queue[ConsoleEvent]") -> InterviewCallbacks:
    return InterviewCallbacks(
        on_message=lambda message: inbox.put_nowait(("message", message)),
        on_question=lambda question: inbox.put_nowait(("question", question)),
        on_thinking=lambda: inbox.put_nowait(("thinking", None)),
        on_proposal=lambda proposal: inbox.put_nowait(("proposal", proposal)),
        on_complete=lambda path: inbox.put_nowait(("complete", path)),
        on_error=lambda message: inbox.put_nowait(("error", message)),
    )


async def _ask(input_func: InputFunc, prompt: str) -> str:
    # input() blocks, so it runs off the loop to keep the assistant pumping.
    answer = await asyncio.to_thread(input_func, prompt)
    return answer.strip()


def _is_termination(text: str) -> bool:
    return text.lower() in TERMINATION_TOKENS


def _print_proposal(proposal: InterviewProposal) -> None:
    print()  # noqa: T201 - CLI UX newline
    print("Proposed requirements:\n")  # noqa: T201
    if proposal.requirement_doc:
        print(proposal.requirement_doc)  # noqa: T201
    if proposal.features:
        print("\nFeatures:")  # noqa: T201
        for index, feature in enumerate(proposal.features):
            print(f"  [{index}] {feature.title}: {feature.description}")  # noqa: T201
    if proposal.tasks:
        print("\nTasks:")  # noqa: T201
        for task in proposal.tasks:
            suffix = ""
            if task.feature_index is not None:
                suffix = f" (feature {task.feature_index})"
            print(f"  - {task.title}{suffix}: {task.description}")  # noqa: T201
    if proposal.requirement_path:
        print(f"\nRequirement file: {proposal.requirement_path}")  # noqa: T201
    if proposal.proposed_design_md:
        print("\nProposed design.md update included.")  # noqa: T201
    print()  # noqa: T201


def _resolve_choice(question: InterviewQuestion, answer: str) -> str:
    if question.options and answer.isdigit():
        index = int(answer) - 1
        if 0 <= index < len(question.options):
            return question.options[index]
    return answer


async def _ask_questions(
    questions: List[InterviewQuestion],
    input_func: InputFunc,
) -> Optional[Dict[str, str]]:
    answers: Dict[str, str] = {}
    for question in questions:
        print()  # noqa: T201
        print(f"Assistant: {question.text}")  # noqa: T201
        if question.options:
            for index, option in enumerate(question.options, start=1):
                print(f"  {index}. {option}")  # noqa: T201
        answer = await _ask(input_func, "You: ")
        if _is_termination(answer):
            return None
        answers[question.id] = _resolve_choice(question, answer)
    return answers


async def run_console_interview(
    settings: AppSettings,
    scope: InterviewScope,
    initial_input: str | None,
    *,
    session_id: str | None = None,
    intensity: Intensity | None = None,
    driver: AssistantDriver | None = None,
    input_func: InputFunc = input,
) -> Optional[InterviewProposal]:
    """Run an interview in the terminal; return the accepted proposal."""

    inbox: asyncio.Queue[ConsoleEvent] = asyncio.Queue()
    callbacks = _queue_callbacks(inbox)
    service = InterviewService(settings, driver=driver)

    if session_id:
        if not await service.resume(session_id, callbacks):
            print(f"Session '{session_id}' cannot be resumed.")  # noqa: T201
            return None
        print(f"Resuming session {session_id}")  # noqa: T201
    else:
        started = await service.start(
            scope,
            initial_input,
            callbacks,
            intensity=intensity,
        )
        if started is None:
            while not inbox.empty():
                kind, data = inbox.get_nowait()
                if kind == "error":
                    print(f"Error: {data}")  # noqa: T201
            return None
        print(f"Session {started} started ({scope.value})")  # noqa: T201

    replaying = session_id is not None
    questions: List[InterviewQuestion] = []
    proposal: Optional[InterviewProposal] = None
    failed = False

    try:
        while True:
            if inbox.empty():
                if questions:
                    batch, questions = questions, []
                    answers = await _ask_questions(batch, input_func)
                    if answers is None:
                        service.cancel()
                        print("Interview cancelled.")  # noqa: T201
                        return None
                    if len(answers) == 1:
                        question_id, answer = next(iter(answers.items()))
                        await service.answer_question(question_id, answer)
                    else:
                        await service.answer_questions(answers)
                    continue
                if proposal is not None:
                    current, proposal = proposal, None
                    _print_proposal(current)
                    choice = (await _ask(input_func, "[a]ccept, [r]evise or [c]ancel? ")).lower()
                    if choice.startswith("a"):
                        service.complete()
                        print("Requirements accepted.")  # noqa: T201
                        return current
                    if choice.startswith("r"):
                        feedback = await _ask(input_func, "What should change? ")
                        await service.reject_proposal(feedback)
                        continue
                    service.cancel()
                    print("Interview cancelled.")  # noqa: T201
                    return None
                if failed and not service.is_active:
                    failed = False
                    reply = await _ask(input_func, "Reply to continue or type 'cancel': ")
                    if _is_termination(reply):
                        service.cancel()
                        print("Interview cancelled.")  # noqa: T201
                        return None
                    await service.send_message(reply)
                    continue

            try:
                kind, data = await asyncio.wait_for(inbox.get(), IDLE_POLL_SECONDS)
            except asyncio.TimeoutError:
                if not service.is_active and service.pending_retry is None:
                    # The turn ended without asking or proposing anything.
                    failed = True
                continue

            if kind != "message":
                replaying = False

            if kind == "message":
                if replaying:
                    speaker = "You" if data.role is MessageRole.USER else "Assistant"
                    print(f"{speaker}: {data.content}")  # noqa: T201
            elif kind == "thinking":
                print("Assistant is thinking...")  # noqa: T201
            elif kind == "question":
                questions.append(data)
            elif kind == "proposal":
                questions = []
                proposal = data
            elif kind == "error":
                print(f"Error: {data}")  # noqa: T201
                failed = True
            elif kind == "complete":
                logger.debug("Session completed with requirement path %r", data)
    finally:
        service.stop()
