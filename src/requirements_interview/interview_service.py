"""Session lifecycle for requirements interviews driven by an assistant CLI.

``InterviewService`` owns one interview at a time. Each user input becomes
one *turn*: the message is appended to the transcript and persisted, a
fresh assistant subprocess is spawned and fed that single message, and the
subprocess output is parsed and routed to the caller's callbacks until the
process exits. Only the current turn may deliver events; output from a
killed or superseded process is ignored.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from functools import partial
from typing import (
    Any,
    Callable,
    Deque,
    List,
    Mapping,
    Optional,
    Protocol,
)
from uuid import uuid4

from .config import AppSettings, Intensity, InterviewScope
from .models import (
    InterviewContext,
    InterviewMessage,
    InterviewProposal,
    InterviewQuestion,
    MessageRole,
    ProposedTask,
    SessionRecord,
    SessionStatus,
)
from .process_driver import (
    AssistantLaunchError,
    AssistantProcessDriver,
    TurnEvents,
    TurnRequest,
)
from .prompts import (
    FORMAT_REMINDER,
    RESPONSE_SCHEMA,
    REVISION_PREFIX,
    build_opening_message,
    build_resume_message,
    build_system_prompt,
)
from .responses import (
    Anomalous,
    AssistantFailure,
    AssistantResponse,
    Ignored,
    PartialRequirement,
    ProposalRecord,
    QuestionBatch,
    QuestionRecord,
    TurnComplete,
    classify,
    is_valid,
)
from .retry import RetryController
from .session_store import SessionRepository
from .stream_parser import EnvelopeError, ParseEvent, StreamParser

logger = logging.getLogger(__name__)

TERMS_ERROR = (
    "The assistant CLI requires you to accept updated terms. Please run "
    '"claude" in your terminal first.'
)


class TurnHandle(Protocol):
    """What the engine needs from a running turn."""

    @property
    def running(self) -> bool: ...

    def kill(self) -> None: ...


class AssistantDriver(Protocol):
    async def launch(self, request: TurnRequest, events: TurnEvents) -> TurnHandle: ...


@dataclass(slots=True)
class InterviewCallbacks:
    """Caller hooks; any of them may be omitted."""

    on_message: Optional[Callable[[InterviewMessage], None]] = None
    on_question: Optional[Callable[[InterviewQuestion], None]] = None
    on_thinking: Optional[Callable[[], None]] = None
    on_proposal: Optional[Callable[[InterviewProposal], None]] = None
    on_complete: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[str], None]] = None


class _TurnToken:
    """Identity of one turn; events carrying another token are stale."""

    __slots__ = ()


class InterviewService:
    """Drives one interview session against the external assistant."""

    def __init__(
        self,
        settings: AppSettings,
        *,
        repository: SessionRepository | None = None,
        driver: AssistantDriver | None = None,
    ) -> None:
        self._settings = settings
        self._repo = repository or SessionRepository(
            settings.data_dir,
            settings.redis_url,
        )
        self._driver: AssistantDriver = driver or AssistantProcessDriver(
            settings.assistant
        )
        self._parser = StreamParser()
        self._retry = RetryController(limit=settings.assistant.retry_limit)
        self._callbacks = InterviewCallbacks()
        self._session: Optional[SessionRecord] = None
        self._scope = settings.default_scope
        self._intensity = settings.intensity
        self._messages: List[InterviewMessage] = []
        self._pending_questions: Deque[InterviewQuestion] = deque()
        self._accumulated: List[PartialRequirement] = []
        self._proposal: Optional[InterviewProposal] = None
        self._assistant_session_id: Optional[str] = None
        self._turn: Optional[TurnHandle] = None
        self._turn_token: Optional[_TurnToken] = None
        self._turn_error_reported = False
        self._turn_has_questions = False
        self._retry_task: Optional[asyncio.Task[None]] = None
        self._timeout_handle: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> Optional[str]:
        return self._session.id if self._session else None

    @property
    def scope(self) -> Optional[InterviewScope]:
        return self._session.scope if self._session else None

    @property
    def messages(self) -> List[InterviewMessage]:
        return list(self._messages)

    @property
    def pending_questions(self) -> List[InterviewQuestion]:
        return list(self._pending_questions)

    @property
    def current_proposal(self) -> Optional[InterviewProposal]:
        return self._proposal

    @property
    def is_active(self) -> bool:
        """True while an assistant turn is running."""

        return self._turn is not None and self._turn.running

    @property
    def pending_retry(self) -> Optional[asyncio.Task[None]]:
        if self._retry_task is None or self._retry_task.done():
            return None
        return self._retry_task

    @property
    def repository(self) -> SessionRepository:
        return self._repo

    def active_sessions(self) -> List[SessionRecord]:
        return self._repo.list_active()

    async def start(
        self,
        scope: InterviewScope,
        initial_input: str | None,
        callbacks: InterviewCallbacks | None = None,
        *,
        context: InterviewContext | None = None,
        intensity: Intensity | None = None,
    ) -> Optional[str]:
        """Begin a new interview, preempting any active one.

        Returns the new session id, or ``None`` when the session could not
        be created (the reason goes to ``on_error``).
        """

        self.stop()
        self._callbacks = callbacks or InterviewCallbacks()
        try:
            self._session = self._repo.create(scope, initial_input)
        except OSError as exc:
            logger.exception("Unable to create interview session")
            self._emit_error(f"Unable to create interview session: {exc}")
            self._callbacks = InterviewCallbacks()
            return None
        self._scope = scope
        self._intensity = intensity or self._settings.intensity
        self._assistant_session_id = str(uuid4())
        opening = build_opening_message(scope, initial_input, context)
        self._append_user_message(opening)
        await self._run_turn(opening, resume=False)
        return self._session.id if self._session else None

    async def resume(
        self,
        session_id: str,
        callbacks: InterviewCallbacks | None = None,
    ) -> bool:
        """Reattach to a stored session and bring the assistant back up to date."""

        record = self._repo.get(session_id)
        if record is None or not record.status.is_resumable:
            logger.info("Session %s cannot be resumed", session_id)
            return False
        self.stop()
        self._callbacks = callbacks or InterviewCallbacks()
        self._session = record
        self._scope = record.scope
        self._intensity = self._settings.intensity
        self._messages = list(record.conversation)
        self._proposal = record.proposed_output
        # The assistant's own session cannot be reattached across processes,
        # so a new one is started and fed the whole transcript.
        self._assistant_session_id = str(uuid4())
        for message in self._messages:
            self._emit("on_message", message)
        if self._proposal is not None:
            self._emit("on_proposal", self._proposal)
        if self._messages:
            payload = build_resume_message(self._messages)
        else:
            payload = build_opening_message(record.scope, record.raw_input)
            self._append_user_message(payload)
        await self._run_turn(payload, resume=False)
        return True

    async def answer_question(self, question_id: str, answer: str) -> None:
        """Send the answer to one pending question as the next turn."""

        if not self._require_session():
            return
        self._drop_pending(question_id)
        await self._continue_conversation(answer)

    async def answer_questions(self, answers: Mapping[str, str]) -> None:
        """Answer several pending questions in a single turn."""

        if not self._require_session():
            return
        known = {question.id: question for question in self._pending_questions}
        blocks: List[str] = []
        for question_id, answer in answers.items():
            question = known.get(question_id)
            if question is not None:
                blocks.append(f"{question.text}\n{answer}")
            else:
                blocks.append(answer)
            self._drop_pending(question_id)
        if not blocks:
            return
        await self._continue_conversation("\n\n".join(blocks))

    async def reject_proposal(self, feedback: str) -> None:
        """Ask the assistant to revise its proposal."""

        if not self._require_session():
            return
        self._persist(status=SessionStatus.CLARIFYING)
        await self._continue_conversation(f"{REVISION_PREFIX}{feedback}")

    async def send_message(self, content: str) -> None:
        """Send free-form user input, e.g. after an error ended a turn."""

        if not self._require_session():
            return
        await self._continue_conversation(content)

    def cancel(self) -> None:
        """Mark the session cancelled and tear everything down. Idempotent."""

        if self._session is not None:
            self._persist(status=SessionStatus.CANCELLED)
            logger.info("Cancelled session %s", self._session.id)
        self.stop()

    def complete(self) -> None:
        """Mark the session complete once the caller accepted the proposal."""

        if self._session is None:
            return
        requirement_path = self._proposal.requirement_path if self._proposal else ""
        self._persist(status=SessionStatus.COMPLETE)
        logger.info("Completed session %s", self._session.id)
        self._emit("on_complete", requirement_path)
        self.stop()

    def stop(self) -> None:
        """Kill any running turn and forget the in-memory session state."""

        self._kill_turn()
        self._cancel_retry()
        self._session = None
        self._callbacks = InterviewCallbacks()
        self._messages = []
        self._pending_questions.clear()
        self._accumulated = []
        self._proposal = None
        self._assistant_session_id = None
        self._parser.reset()
        self._retry.reset()

    # ------------------------------------------------------------------
    # Turn management
    # ------------------------------------------------------------------

    async def _continue_conversation(self, content: str) -> None:
        self._cancel_retry()
        self._append_user_message(content)
        self._kill_turn()
        await self._run_turn(content, resume=True)

    async def _run_turn(self, payload: str, *, resume: bool) -> None:
        if self._session is None or self._assistant_session_id is None:
            return
        self._kill_turn()
        self._parser.reset()
        self._accumulated = []
        self._retry.clear_turn()
        self._turn_error_reported = False
        self._turn_has_questions = False
        token = _TurnToken()
        self._turn_token = token
        request = TurnRequest(
            payload=payload,
            system_prompt=build_system_prompt(self._scope, self._intensity),
            schema=RESPONSE_SCHEMA,
            assistant_session_id=self._assistant_session_id,
            resume=resume,
        )
        events = TurnEvents(
            on_output=partial(self._handle_output, token),
            on_diagnostic=partial(self._handle_diagnostic, token),
            on_exit=partial(self._handle_exit, token),
        )
        try:
            turn = await self._driver.launch(request, events)
        except AssistantLaunchError as exc:
            if self._turn_token is token:
                self._turn_token = None
            logger.error("Assistant turn failed to start: %s", exc)
            self._emit_error(str(exc))
            return
        if self._turn_token is not token:
            # Cancelled, superseded or already finished while launching.
            turn.kill()
            return
        self._turn = turn
        self._emit("on_thinking")
        self._arm_timeout(token)

    def _kill_turn(self) -> None:
        self._disarm_timeout()
        if self._turn is not None:
            self._turn.kill()
        self._turn = None
        self._turn_token = None

    def _finish_turn(self) -> None:
        self._disarm_timeout()
        self._turn = None
        self._turn_token = None

    def _arm_timeout(self, token: _TurnToken) -> None:
        timeout = self._settings.assistant.turn_timeout
        if timeout is None:
            return
        loop = asyncio.get_running_loop()
        self._timeout_handle = loop.call_later(
            timeout,
            self._handle_timeout,
            token,
        )

    def _disarm_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _handle_timeout(self, token: _TurnToken) -> None:
        self._timeout_handle = None
        if token is not self._turn_token:
            return
        timeout = self._settings.assistant.turn_timeout
        logger.warning("Assistant turn exceeded %ss; killing it", timeout)
        self._kill_turn()
        self._retry.clear_turn()
        self._emit_error(
            f"The assistant did not answer within {timeout:g} seconds."
        )

    # ------------------------------------------------------------------
    # Turn events
    # ------------------------------------------------------------------

    def _handle_output(self, token: _TurnToken, chunk: str) -> None:
        if token is not self._turn_token:
            return
        logger.debug("stdout chunk: %s", chunk[:200])
        for event in self._parser.feed(chunk):
            self._route(event)
            if token is not self._turn_token:
                return

    def _handle_diagnostic(self, token: _TurnToken, text: str) -> None:
        if token is not self._turn_token:
            return
        logger.debug("assistant stderr: %s", text.strip())
        if "[ACTION REQUIRED]" in text and "Terms" in text:
            logger.warning("Assistant CLI is waiting for terms acceptance")
            self._kill_turn()
            self._retry.clear_turn()
            self._emit_error(TERMS_ERROR)

    def _handle_exit(self, token: _TurnToken, code: Optional[int]) -> None:
        if token is not self._turn_token:
            return
        for event in self._parser.flush():
            self._route(event)
        if token is not self._turn_token:
            return
        self._finish_turn()
        if self._turn_error_reported:
            self._retry.clear_turn()
            return
        if self._retry.consume():
            self._schedule_retry()
            return
        if self._retry.exhausted:
            reason = self._retry.reason or "unexpected output"
            self._retry.clear_turn()
            self._emit_error(
                "The assistant kept replying in an unexpected format "
                f"({reason}). Answer again to retry or cancel the interview."
            )
            return
        if code != 0:
            self._emit_error(f"Interview process exited with code {code}")

    def _schedule_retry(self) -> None:
        logger.info(
            "Retrying with format reminder, attempt %s of %s",
            self._retry.attempts,
            self._retry.limit,
        )
        loop = asyncio.get_running_loop()
        self._retry_task = loop.create_task(self._retry_after_delay())

    async def _retry_after_delay(self) -> None:
        await asyncio.sleep(self._settings.assistant.retry_delay)
        self._retry_task = None
        if self._session is None:
            return
        self._append_user_message(FORMAT_REMINDER)
        await self._run_turn(FORMAT_REMINDER, resume=True)

    def _cancel_retry(self) -> None:
        task = self._retry_task
        self._retry_task = None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _route(self, event: ParseEvent) -> None:
        if isinstance(event, EnvelopeError):
            logger.error("Assistant CLI error: %s", event.message)
            self._kill_turn()
            self._retry.clear_turn()
            self._turn_error_reported = True
            self._emit_error(event.message)
            return
        response = classify(event.payload)
        if is_valid(response):
            self._retry.record_valid()
        self._dispatch(response)

    def _dispatch(self, response: AssistantResponse) -> None:
        if isinstance(response, QuestionRecord):
            self._accept_questions([response.question])
        elif isinstance(response, QuestionBatch):
            self._accept_questions(response.questions)
        elif isinstance(response, ProposalRecord):
            self._accumulated = []
            self._publish_proposal(response.proposal)
        elif isinstance(response, PartialRequirement):
            self._accumulated.append(response)
            logger.debug("Accumulated requirement: %s", response.title)
        elif isinstance(response, TurnComplete):
            if self._accumulated:
                proposal = InterviewProposal(
                    tasks=[
                        ProposedTask(title=item.title, description=item.description)
                        for item in self._accumulated
                    ],
                )
                self._accumulated = []
                self._publish_proposal(proposal)
        elif isinstance(response, AssistantFailure):
            self._turn_error_reported = True
            self._emit_error(response.message)
        elif isinstance(response, Anomalous):
            logger.info("Unexpected assistant output (%s); will retry", response.reason)
            self._retry.flag(response.reason)
        elif isinstance(response, Ignored):
            logger.debug("Ignoring assistant record: %s", response.reason)

    def _accept_questions(self, questions: List[InterviewQuestion]) -> None:
        if not self._turn_has_questions:
            self._pending_questions.clear()
            self._turn_has_questions = True
        self._append_assistant_message(
            "\n\n".join(question.text for question in questions)
        )
        if self._session is not None and self._session.status is not SessionStatus.CLARIFYING:
            self._persist(status=SessionStatus.CLARIFYING)
        for question in questions:
            self._pending_questions.append(question)
            self._emit("on_question", question)

    def _publish_proposal(self, proposal: InterviewProposal) -> None:
        self._proposal = proposal
        self._persist(proposed_output=proposal, status=SessionStatus.REVIEWING)
        self._emit("on_proposal", proposal)

    # ------------------------------------------------------------------
    # Transcript and persistence
    # ------------------------------------------------------------------

    def _append_user_message(self, content: str) -> None:
        message = InterviewMessage(role=MessageRole.USER, content=content)
        self._messages.append(message)
        self._persist(conversation=self._messages)
        self._emit("on_message", message)

    def _append_assistant_message(self, content: str) -> None:
        if self._messages:
            last = self._messages[-1]
            if last.role is MessageRole.ASSISTANT and last.content == content:
                logger.debug("Skipping duplicate assistant message")
                return
        message = InterviewMessage(role=MessageRole.ASSISTANT, content=content)
        self._messages.append(message)
        self._persist(conversation=self._messages)
        self._emit("on_message", message)

    def _persist(self, **fields: Any) -> None:
        if self._session is None:
            return
        try:
            updated = self._repo.update(self._session.id, **fields)
        except OSError as exc:
            logger.exception("Unable to persist session %s", self._session.id)
            self._emit_error(f"Unable to save interview session: {exc}")
            return
        if updated is not None:
            self._session = updated

    def _drop_pending(self, question_id: str) -> None:
        for question in list(self._pending_questions):
            if question.id == question_id:
                self._pending_questions.remove(question)
                return

    def _require_session(self) -> bool:
        if self._session is None:
            self._emit_error("No interview is active.")
            return False
        return True

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _emit_error(self, message: str) -> None:
        self._emit("on_error", message)

    def _emit(self, name: str, *args: Any) -> None:
        handler = getattr(self._callbacks, name)
        if handler is None:
            return
        try:
            handler(*args)
        except Exception:  # noqa: BLE001 # pylint: disable=broad-except
            logger.exception("Interview callback %s failed", name)
