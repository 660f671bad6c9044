"""Data model shared by the interview engine, the store and front-ends."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, cast

from .config import InterviewScope


class SessionStatus(str, Enum):
    """Persisted lifecycle status of an interview session."""

    DRAFTING = "drafting"
    CLARIFYING = "clarifying"
    REVIEWING = "reviewing"
    COMPLETE = "complete"
    CANCELLED = "cancelled"

    @property
    def is_resumable(self) -> bool:
        return self is not SessionStatus.COMPLETE


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


def _clean_string(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if value is None:
        return ""
    return str(value).strip()


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(slots=True)
class InterviewMessage:
    """One transcript entry."""

    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, payload: Any) -> Optional["InterviewMessage"]:
        if not isinstance(payload, dict):
            return None
        entry = cast(Dict[str, Any], payload)
        try:
            role = MessageRole(str(entry.get("role", "")))
        except ValueError:
            return None
        content = entry.get("content")
        if not isinstance(content, str):
            return None
        return cls(role=role, content=content)


@dataclass(slots=True)
class InterviewQuestion:
    """A clarifying question awaiting the product owner's answer."""

    id: str
    text: str
    type: str = "text"
    options: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "type": self.type,
        }
        if self.options is not None:
            payload["options"] = list(self.options)
        return payload

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        *,
        fallback_id: str,
    ) -> "InterviewQuestion":
        question_type = "choice" if payload.get("questionType") == "choice" else "text"
        options_raw = payload.get("options")
        options: Optional[List[str]] = None
        if isinstance(options_raw, list):
            options = [
                _clean_string(option)
                for option in cast(List[Any], options_raw)
                if _clean_string(option)
            ]
        return cls(
            id=_clean_string(payload.get("id")) or fallback_id,
            text=_clean_string(payload.get("text")),
            type=question_type,
            options=options,
        )


@dataclass(slots=True)
class ProposedFeature:
    title: str
    description: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "description": self.description}


@dataclass(slots=True)
class ProposedTask:
    title: str
    description: str = ""
    feature_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "title": self.title,
            "description": self.description,
        }
        if self.feature_index is not None:
            payload["featureIndex"] = self.feature_index
        return payload


def _empty_features() -> List[ProposedFeature]:
    return []


def _empty_tasks() -> List[ProposedTask]:
    return []


@dataclass(slots=True)
class InterviewProposal:
    """Candidate requirement document, features and tasks for approval."""

    requirement_doc: str = ""
    requirement_path: str = ""
    features: List[ProposedFeature] = field(default_factory=_empty_features)
    tasks: List[ProposedTask] = field(default_factory=_empty_tasks)
    proposed_design_md: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "requirementDoc": self.requirement_doc,
            "requirementPath": self.requirement_path,
            "features": [feature.to_dict() for feature in self.features],
            "tasks": [task.to_dict() for task in self.tasks],
        }
        if self.proposed_design_md:
            payload["proposedDesignMd"] = self.proposed_design_md
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "InterviewProposal":
        """Build the canonical proposal, defaulting absent fields to empty."""

        features: List[ProposedFeature] = []
        features_raw = payload.get("features")
        if isinstance(features_raw, list):
            for entry in cast(List[Any], features_raw):
                if not isinstance(entry, dict):
                    continue
                entry_dict = cast(Dict[str, Any], entry)
                features.append(
                    ProposedFeature(
                        title=_clean_string(entry_dict.get("title")),
                        description=_clean_string(entry_dict.get("description")),
                    )
                )
        tasks: List[ProposedTask] = []
        tasks_raw = payload.get("tasks")
        if isinstance(tasks_raw, list):
            for entry in cast(List[Any], tasks_raw):
                if not isinstance(entry, dict):
                    continue
                entry_dict = cast(Dict[str, Any], entry)
                index_raw = entry_dict.get("featureIndex")
                feature_index: Optional[int] = None
                if isinstance(index_raw, (int, float)) and not isinstance(
                    index_raw, bool
                ):
                    feature_index = int(index_raw)
                tasks.append(
                    ProposedTask(
                        title=_clean_string(entry_dict.get("title")),
                        description=_clean_string(entry_dict.get("description")),
                        feature_index=feature_index,
                    )
                )
        design_md = payload.get("proposedDesignMd")
        return cls(
            requirement_doc=_clean_string(payload.get("requirementDoc")),
            requirement_path=_clean_string(payload.get("requirementPath")),
            features=features,
            tasks=tasks,
            proposed_design_md=design_md if isinstance(design_md, str) and design_md else None,
        )


@dataclass(slots=True)
class FeatureSummary:
    title: str
    description: Optional[str] = None


@dataclass(slots=True)
class RequirementSummary:
    path: str
    title: str
    summary: str


@dataclass(slots=True)
class InterviewContext:
    """What the assistant should know about the existing app."""

    project_title: Optional[str] = None
    project_description: Optional[str] = None
    existing_features: List[FeatureSummary] = field(default_factory=list)
    existing_requirements: List[RequirementSummary] = field(default_factory=list)
    # An empty string means design.md does not exist yet; None means unknown.
    current_design_md: Optional[str] = None


@dataclass(slots=True)
class SessionRecord:
    """Durable record of one interview."""

    id: str
    scope: InterviewScope
    raw_input: Optional[str]
    status: SessionStatus
    conversation: List[InterviewMessage]
    proposed_output: Optional[InterviewProposal]
    created_at: str
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "scope": self.scope.value,
            "raw_input": self.raw_input,
            "status": self.status.value,
            "conversation": [message.to_dict() for message in self.conversation],
            "proposed_output": (
                self.proposed_output.to_dict()
                if self.proposed_output is not None
                else None
            ),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SessionRecord":
        """Rebuild a record, skipping transcript entries that fail to parse."""

        conversation: List[InterviewMessage] = []
        conversation_raw = payload.get("conversation")
        if isinstance(conversation_raw, list):
            for entry in cast(List[Any], conversation_raw):
                message = InterviewMessage.from_dict(entry)
                if message is not None:
                    conversation.append(message)
        proposal_raw = payload.get("proposed_output")
        proposal: Optional[InterviewProposal] = None
        if isinstance(proposal_raw, dict):
            proposal = InterviewProposal.from_payload(
                cast(Dict[str, Any], proposal_raw)
            )
        raw_input = payload.get("raw_input")
        return cls(
            id=str(payload["id"]),
            scope=InterviewScope.from_string(str(payload.get("scope", ""))),
            raw_input=raw_input if isinstance(raw_input, str) else None,
            status=SessionStatus(str(payload.get("status"))),
            conversation=conversation,
            proposed_output=proposal,
            created_at=str(payload.get("created_at", "")),
            updated_at=str(payload.get("updated_at", "")),
        )
