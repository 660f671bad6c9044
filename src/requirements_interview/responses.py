"""Classification of parsed assistant records into tagged variants."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Union, cast

from .models import InterviewProposal, InterviewQuestion

TOOL_HINT_FIELDS = ("tool", "tool_name", "tool_use", "function", "function_call")


@dataclass(frozen=True, slots=True)
class QuestionRecord:
    question: InterviewQuestion


@dataclass(frozen=True, slots=True)
class QuestionBatch:
    questions: List[InterviewQuestion]


@dataclass(frozen=True, slots=True)
class ProposalRecord:
    proposal: InterviewProposal


@dataclass(frozen=True, slots=True)
class PartialRequirement:
    title: str
    description: str


@dataclass(frozen=True, slots=True)
class TurnComplete:
    pass


@dataclass(frozen=True, slots=True)
class AssistantFailure:
    message: str


@dataclass(frozen=True, slots=True)
class Anomalous:
    """Valid JSON in a shape the interview cannot use; worth a retry."""

    reason: str


@dataclass(frozen=True, slots=True)
class Ignored:
    reason: str


AssistantResponse = Union[
    QuestionRecord,
    QuestionBatch,
    ProposalRecord,
    PartialRequirement,
    TurnComplete,
    AssistantFailure,
    Anomalous,
    Ignored,
]

VALID_RESPONSES = (
    QuestionRecord,
    QuestionBatch,
    ProposalRecord,
    PartialRequirement,
    TurnComplete,
)


def is_valid(response: AssistantResponse) -> bool:
    """Whether the response advances the interview (and resets retries)."""

    return isinstance(response, VALID_RESPONSES)


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if value is None:
        return ""
    return str(value).strip()


def _looks_like_tool_call(record: Dict[str, Any]) -> bool:
    if any(record.get(name) for name in TOOL_HINT_FIELDS):
        return True
    return "name" in record and "input" in record


def classify(record: Dict[str, Any]) -> AssistantResponse:
    """Map one unwrapped record onto exactly one response variant."""

    kind = record.get("type")
    if kind == "question":
        question = InterviewQuestion.from_payload(record, fallback_id="q1")
        if not question.text:
            return Anomalous(reason="question without text")
        return QuestionRecord(question=question)
    if kind == "questions":
        raw_questions = record.get("questions")
        questions: List[InterviewQuestion] = []
        if isinstance(raw_questions, list):
            for index, entry in enumerate(cast(List[Any], raw_questions), start=1):
                if not isinstance(entry, dict):
                    continue
                question = InterviewQuestion.from_payload(
                    cast(Dict[str, Any], entry),
                    fallback_id=f"q{index}",
                )
                if question.text:
                    questions.append(question)
        if not questions:
            return Anomalous(reason="questions record without any questions")
        return QuestionBatch(questions=questions)
    if kind == "proposal":
        return ProposalRecord(proposal=InterviewProposal.from_payload(record))
    if kind == "requirement":
        title = _text(record.get("title"))
        if not title:
            return Ignored(reason="requirement without title")
        return PartialRequirement(
            title=title,
            description=_text(record.get("description")),
        )
    if kind == "complete":
        return TurnComplete()
    if kind == "error":
        error_obj = record.get("error")
        message = ""
        if isinstance(error_obj, dict):
            message = _text(cast(Dict[str, Any], error_obj).get("message"))
        message = message or _text(record.get("message")) or "Unknown error"
        return AssistantFailure(message=message)
    if kind is None:
        if _looks_like_tool_call(record):
            return Anomalous(reason="untyped record that looks like a tool call")
        return Ignored(reason="record without type")
    return Anomalous(reason=f"unexpected record type {kind!r}")
