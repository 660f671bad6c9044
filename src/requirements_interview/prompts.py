"""Prompt scaffolding and response schema for the requirements interview."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from .config import Intensity, InterviewScope
from .models import InterviewContext, InterviewMessage, MessageRole


@dataclass(slots=True)
class ScopePromptPack:
    """Prompt templates bound to an interview scope."""

    system: str
    intro: str


RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "type": {"type": "string", "enum": ["questions", "proposal"]},
        "questions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "text": {"type": "string"},
                    "questionType": {"type": "string", "enum": ["choice", "text"]},
                    "options": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["id", "text", "questionType"],
            },
        },
        "requirementDoc": {"type": "string"},
        "requirementPath": {"type": "string"},
        "features": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                },
                "required": ["title", "description"],
            },
        },
        "tasks": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "featureIndex": {"type": "number"},
                },
                "required": ["title", "description"],
            },
        },
        "proposedDesignMd": {"type": "string"},
    },
    "required": ["type"],
}

FORMAT_REMINDER = (
    "Please respond with ONLY a JSON object in the exact format specified. "
    "Do not use tools or skills. Output only {\"type\":\"questions\",...} "
    "or {\"type\":\"proposal\",...}"
)

REVISION_PREFIX = "Please revise the proposal: "

JSON_FORMAT_RULES = """
You must respond with JSON matching the schema provided.

For questions (ask 2-4 at a time):
{"type":"questions","questions":[{"id":"q1","text":"Question?","questionType":"choice","options":["A","B"]}]}

For a proposal (once you have enough information):
{"type":"proposal","requirementDoc":"# Title...","requirementPath":"docs/requirements/name.md","features":[{"title":"Feature Name","description":"..."}],"tasks":[{"title":"Task","description":"...","featureIndex":0}],"proposedDesignMd":"# Design Guide\\n..."}

Rules:
- Ask 2-4 questions per round and prefer questionType "choice" with options.
- Move to a proposal as soon as the requirements are understood.
- For task scope: empty features, a single task without featureIndex, empty requirementDoc and requirementPath.

Tasks and features:
- When features exist every task MUST carry a featureIndex (0-based index into features).
- Every feature needs at least one task.

design.md:
- docs/requirements/design.md holds VISUAL and UI patterns only (colors, typography, spacing, confirmation behaviour, empty and loading states).
- Feature behaviour belongs in the feature's requirementDoc.
- If visual decisions were made, put the COMPLETE new design.md in "proposedDesignMd"; it replaces the file.
- Do not create standalone design tasks.
""".strip()

_ACKNOWLEDGE_INPUT = """
ACKNOWLEDGE USER INPUT:
- Never re-ask about details the user already gave (colors, behaviour, implementation).
- If the user gave enough detail, skip questions and go straight to a proposal.
""".strip()

PROMPT_LIBRARY: Mapping[InterviewScope, ScopePromptPack] = {
    InterviewScope.PROJECT: ScopePromptPack(
        system="\n\n".join(
            [
                """
You are a requirements analyst helping a product owner define a project plan.

CONSOLIDATE FEATURES:
- Prefer fewer, larger features. Closely related functionality (for example login, logout and password reset) belongs in ONE feature so it can be built with full context.
                """.strip(),
                _ACKNOWLEDGE_INPUT,
                """
APPROACH:
- Acknowledge what the user specified, then ask only about genuinely missing information.
- Prefer multiple-choice questions; 2-4 questions is usually enough.

PROPOSAL REQUIREMENTS:
- ALWAYS include a non-empty requirementDoc in markdown describing the project.
- ALWAYS include a requirementPath such as "docs/requirements/project-name.md".
                """.strip(),
                JSON_FORMAT_RULES,
            ]
        ),
        intro="I want to define requirements and a plan for my project.",
    ),
    InterviewScope.NEW_FEATURE: ScopePromptPack(
        system="\n\n".join(
            [
                """
You are a requirements analyst helping define a new feature for an EXISTING app.

SINGLE FEATURE ONLY:
- Create exactly ONE feature in the proposal and attach every task to it (featureIndex 0).
- The user message describes the existing app; read it carefully.
                """.strip(),
                _ACKNOWLEDGE_INPUT,
                """
APPROACH:
- Acknowledge what the user specified, then ask only about genuinely missing information.
- Prefer multiple-choice questions; 1-3 questions is usually enough for a feature.

PROPOSAL REQUIREMENTS:
- ALWAYS include a non-empty requirementDoc in markdown describing the feature.
- ALWAYS include a requirementPath such as "docs/requirements/feature-name.md".
                """.strip(),
                JSON_FORMAT_RULES,
            ]
        ),
        intro="I want to add a new feature to my existing app.",
    ),
    InterviewScope.TASK: ScopePromptPack(
        system="\n\n".join(
            [
                """
You are a task analyst helping define a clear, actionable task. Most task descriptions are clear enough to propose immediately.
                """.strip(),
                _ACKNOWLEDGE_INPUT,
                """
APPROACH:
- If the task names a specific action and target ("Fix login button", "Add dark mode toggle"), propose without questions.
- Ask only when ambiguity would block implementation ("Improve performance", "Add auth"), and then at most 1-2 questions in a single round.
- Put implementation details in the task description, not in separate design tasks.
                """.strip(),
                JSON_FORMAT_RULES,
                "For task scope: empty features array, a single task in tasks, "
                "empty requirementDoc and requirementPath.",
            ]
        ),
        intro="I want to define a task clearly.",
    ),
}

INTENSITY_PROMPTS: Mapping[Intensity, str] = {
    Intensity.MINIMAL: """
INTENSITY MODE: MINIMAL

Only ask clarifying questions when the requirements are too ambiguous to proceed, critical information is missing, or statements contradict each other.
Do not ask about edge cases or nice-to-haves. When in doubt, make reasonable assumptions and propose.
    """.strip(),
    Intensity.BALANCED: "",
    Intensity.DEEP_DIVE: """
INTENSITY MODE: DEEP DIVE

Make sure the requirements are comprehensive before any implementation begins:
1. Explore the user's intent and goals.
2. Ask about edge cases and error scenarios.
3. Raise considerations the user may have missed and suggest alternatives.
4. Make sure acceptance criteria are clearly defined.

Cover error handling, boundary conditions, accessibility, performance and integration with existing features. Several rounds of questions are fine; do not rush to a proposal.
    """.strip(),
}


def build_system_prompt(
    scope: InterviewScope,
    intensity: Intensity = Intensity.BALANCED,
) -> str:
    """Combine the scope prompt with the intensity addition, if any."""

    base = PROMPT_LIBRARY[scope].system
    addition = INTENSITY_PROMPTS[intensity]
    if addition:
        return f"{base}\n\n{addition}"
    return base


def build_context_section(context: Optional[InterviewContext]) -> Optional[str]:
    """Render what is known about the existing app as markdown sections."""

    if context is None:
        return None
    sections: List[str] = []
    if context.project_title or context.project_description:
        lines = ["## Existing App"]
        if context.project_title:
            lines.append(f"Project: {context.project_title}")
        if context.project_description:
            lines.append(f"Description: {context.project_description}")
        sections.append("\n".join(lines))
    if context.existing_features:
        lines = ["## Existing Features"]
        for feature in context.existing_features:
            if feature.description:
                lines.append(f"- {feature.title}: {feature.description}")
            else:
                lines.append(f"- {feature.title}")
        sections.append("\n".join(lines))
    if context.existing_requirements:
        lines = [
            "## Existing Requirements",
            "These requirement files exist in the project. Use the summaries "
            "to understand context:",
        ]
        for requirement in context.existing_requirements:
            lines.append(
                f"- **{requirement.title}** ({requirement.path}): "
                f"{requirement.summary}"
            )
        sections.append("\n".join(lines))
    if context.current_design_md is not None:
        if context.current_design_md.strip():
            sections.append(
                "## Current design.md (docs/requirements/design.md)\n"
                f"```markdown\n{context.current_design_md}\n```\n\n"
                "NOTE: If you propose visual/UI changes, include the COMPLETE "
                'file content in "proposedDesignMd"; it replaces the existing '
                "file."
            )
        else:
            sections.append(
                "## design.md (docs/requirements/design.md)\n"
                "The design guide is currently empty or missing.\n\n"
                "NOTE: If you propose visual/UI changes, create a design guide "
                'by including its full content in "proposedDesignMd".'
            )
    if not sections:
        return None
    return "\n\n".join(sections)


def build_opening_message(
    scope: InterviewScope,
    initial_input: Optional[str],
    context: Optional[InterviewContext] = None,
) -> str:
    """Compose the first user turn of a new interview."""

    parts = [PROMPT_LIBRARY[scope].intro]
    context_section = build_context_section(context)
    if context_section:
        parts.append(context_section)
    if initial_input and initial_input.strip():
        parts.append(f"## My Request\n{initial_input.strip()}")
    return "\n\n".join(parts)


def build_resume_message(messages: List[InterviewMessage]) -> str:
    """Flatten a stored transcript into one continuation request."""

    history = "\n\n".join(
        f"{'User' if message.role is MessageRole.USER else 'Assistant'}: "
        f"{message.content}"
        for message in messages
    )
    return f"Continue this conversation:\n\n{history}\n\nPlease continue.\n"
