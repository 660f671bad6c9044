"""FastAPI service that exposes the interview engine over loopback HTTP."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from starlette.responses import StreamingResponse

from .config import AppSettings, Intensity, InterviewScope
from .interview_service import AssistantDriver, InterviewCallbacks, InterviewService
from .models import (
    FeatureSummary,
    InterviewContext,
    InterviewMessage,
    InterviewProposal,
    InterviewQuestion,
    RequirementSummary,
)
from .session_store import SessionRepository

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FeatureSummaryPayload(_CamelModel):
    title: str
    description: Optional[str] = None


class RequirementSummaryPayload(_CamelModel):
    path: str
    title: str
    summary: str = ""


class ContextPayload(_CamelModel):
    project_title: Optional[str] = Field(default=None, alias="projectTitle")
    project_description: Optional[str] = Field(default=None, alias="projectDescription")
    existing_features: List[FeatureSummaryPayload] = Field(
        default_factory=list, alias="existingFeatures"
    )
    existing_requirements: List[RequirementSummaryPayload] = Field(
        default_factory=list, alias="existingRequirements"
    )
    current_design_md: Optional[str] = Field(default=None, alias="currentDesignMd")

    def to_context(self) -> InterviewContext:
        return InterviewContext(
            project_title=self.project_title,
            project_description=self.project_description,
            existing_features=[
                FeatureSummary(title=item.title, description=item.description)
                for item in self.existing_features
            ],
            existing_requirements=[
                RequirementSummary(path=item.path, title=item.title, summary=item.summary)
                for item in self.existing_requirements
            ],
            current_design_md=self.current_design_md,
        )


class StartRequest(_CamelModel):
    scope: Optional[str] = None
    initial_input: Optional[str] = Field(default=None, alias="initialInput")
    intensity: Optional[str] = None
    context: Optional[ContextPayload] = None


class AnswerRequest(_CamelModel):
    question_id: Optional[str] = Field(default=None, alias="questionId")
    answer: Optional[str] = None
    answers: Optional[Dict[str, str]] = None


class RejectRequest(_CamelModel):
    feedback: str


class MessageRequest(_CamelModel):
    content: str


class EventHub:
    """Fans engine callbacks out to every connected SSE subscriber."""

    def __init__(self) -> None:
        self._subscribers: Set[asyncio.Queue[Dict[str, Any]]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[Dict[str, Any]]:
        queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[Dict[str, Any]]) -> None:
        self._subscribers.discard(queue)

    def publish(self, event: Dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    def callbacks(self) -> InterviewCallbacks:
        def on_message(message: InterviewMessage) -> None:
            self.publish({"type": "message", **message.to_dict()})

        def on_question(question: InterviewQuestion) -> None:
            self.publish({"type": "question", "question": question.to_dict()})

        def on_thinking() -> None:
            self.publish({"type": "thinking"})

        def on_proposal(proposal: InterviewProposal) -> None:
            self.publish({"type": "proposal", "proposal": proposal.to_dict()})

        def on_complete(requirement_path: str) -> None:
            self.publish({"type": "complete", "requirementPath": requirement_path})

        def on_error(message: str) -> None:
            self.publish({"type": "error", "message": message})

        return InterviewCallbacks(
            on_message=on_message,
            on_question=on_question,
            on_thinking=on_thinking,
            on_proposal=on_proposal,
            on_complete=on_complete,
            on_error=on_error,
        )


def _snapshot(service: InterviewService) -> Dict[str, Any]:
    proposal = service.current_proposal
    return {
        "sessionId": service.session_id,
        "active": service.is_active,
        "messages": [message.to_dict() for message in service.messages],
        "pendingQuestions": [question.to_dict() for question in service.pending_questions],
        "proposal": proposal.to_dict() if proposal else None,
    }


def create_app(
    settings: AppSettings,
    *,
    driver: AssistantDriver | None = None,
    repository: SessionRepository | None = None,
    allow_origins: Sequence[str] | None = None,
) -> FastAPI:
    """Create the bridge app around a single interview engine."""

    repo = repository or SessionRepository(settings.data_dir, settings.redis_url)
    service = InterviewService(settings, repository=repo, driver=driver)
    hub = EventHub()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        service.stop()

    app = FastAPI(title="Requirements Interview Bridge", lifespan=lifespan)

    origins = list(allow_origins) if allow_origins else ["*"]
    allow_credentials = origins != ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.interview_service = service
    app.state.event_hub = hub

    def _require_session() -> None:
        if service.session_id is None:
            raise HTTPException(status_code=409, detail="No interview is active.")

    @app.post("/interviews")
    async def start_interview(payload: StartRequest) -> Dict[str, Any]:
        try:
            scope = InterviewScope.from_string(payload.scope, default=settings.default_scope)
            intensity = Intensity.from_string(payload.intensity, default=settings.intensity)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        context = payload.context.to_context() if payload.context else None
        session_id = await service.start(
            scope,
            payload.initial_input,
            hub.callbacks(),
            context=context,
            intensity=intensity,
        )
        if session_id is None:
            raise HTTPException(status_code=500, detail="Unable to create interview session.")
        return {"sessionId": session_id}

    @app.post("/interviews/{session_id}/resume")
    async def resume_interview(session_id: str) -> Dict[str, Any]:
        resumed = await service.resume(session_id, hub.callbacks())
        if not resumed:
            raise HTTPException(
                status_code=404,
                detail=f"Session {session_id} cannot be resumed.",
            )
        return {"sessionId": session_id}

    @app.get("/interviews/current")
    async def current_interview() -> Dict[str, Any]:
        return _snapshot(service)

    @app.post("/interviews/answers")
    async def answer(payload: AnswerRequest) -> Dict[str, Any]:
        _require_session()
        if payload.answers:
            await service.answer_questions(payload.answers)
        elif payload.question_id is not None and payload.answer is not None:
            await service.answer_question(payload.question_id, payload.answer)
        else:
            raise HTTPException(
                status_code=422,
                detail="Provide either questionId and answer, or answers.",
            )
        return {"status": "ok"}

    @app.post("/interviews/reject")
    async def reject(payload: RejectRequest) -> Dict[str, Any]:
        _require_session()
        await service.reject_proposal(payload.feedback)
        return {"status": "ok"}

    @app.post("/interviews/message")
    async def message(payload: MessageRequest) -> Dict[str, Any]:
        _require_session()
        await service.send_message(payload.content)
        return {"status": "ok"}

    @app.post("/interviews/cancel")
    async def cancel() -> Dict[str, Any]:
        service.cancel()
        return {"status": "cancelled"}

    @app.post("/interviews/complete")
    async def complete() -> Dict[str, Any]:
        _require_session()
        service.complete()
        return {"status": "complete"}

    @app.get("/interviews/events")
    async def events() -> StreamingResponse:
        queue = hub.subscribe()

        async def event_stream() -> AsyncIterator[bytes]:
            try:
                while True:
                    try:
                        event = await asyncio.wait_for(queue.get(), KEEPALIVE_SECONDS)
                    except asyncio.TimeoutError:
                        yield b": keepalive\n\n"
                        continue
                    payload = json.dumps(event, ensure_ascii=False)
                    yield f"data: {payload}\n\n".encode("utf-8")
            finally:
                hub.unsubscribe(queue)

        headers = {"Cache-Control": "no-cache"}
        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=headers)

    @app.get("/sessions")
    async def list_sessions(active: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        records = repo.list_active() if active else repo.list_all(limit=limit)
        if active and limit is not None:
            records = records[:limit]
        return [
            {
                "id": record.id,
                "scope": record.scope.value,
                "status": record.status.value,
                "rawInput": record.raw_input,
                "createdAt": record.created_at,
                "updatedAt": record.updated_at,
            }
            for record in records
        ]

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: str) -> Dict[str, Any]:
        record = repo.get(session_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Unknown session {session_id}.")
        return record.to_dict()

    @app.delete("/sessions/{session_id}")
    async def delete_session(session_id: str) -> Dict[str, Any]:
        if repo.get(session_id) is None:
            raise HTTPException(status_code=404, detail=f"Unknown session {session_id}.")
        if service.session_id == session_id:
            service.stop()
        repo.delete(session_id)
        return {"status": "deleted"}

    @app.get("/health")
    async def health() -> dict[str, str]:  # pragma: no cover - simple health probe
        return {"status": "ok"}

    return app


def run_bridge_server(
    settings: AppSettings,
    *,
    host: str | None = None,
    port: int | None = None,
    allow_origins: Sequence[str] | None = None,
    log_level: str = "info",
) -> None:
    """Start the bridge with uvicorn."""

    app = create_app(settings, allow_origins=allow_origins)
    bind_host = host or settings.bridge_host
    bind_port = port or settings.bridge_port
    logger.info("Serving interview bridge on http://%s:%s", bind_host, bind_port)
    with suppress(KeyboardInterrupt):
        uvicorn.run(
            app,
            host=bind_host,
            port=bind_port,
            log_level=log_level,
        )
