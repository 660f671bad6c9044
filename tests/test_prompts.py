from __future__ import annotations

from requirements_interview.config import Intensity, InterviewScope
from requirements_interview.models import (
    FeatureSummary,
    InterviewContext,
    InterviewMessage,
    MessageRole,
    RequirementSummary,
)
from requirements_interview.prompts import (
    PROMPT_LIBRARY,
    RESPONSE_SCHEMA,
    build_context_section,
    build_opening_message,
    build_resume_message,
    build_system_prompt,
)


def test_every_scope_has_a_prompt_pack() -> None:
    assert set(PROMPT_LIBRARY) == set(InterviewScope)
    for pack in PROMPT_LIBRARY.values():
        assert '"type":"questions"' in pack.system
        assert pack.intro


def test_balanced_intensity_adds_nothing() -> None:
    base = PROMPT_LIBRARY[InterviewScope.TASK].system

    assert build_system_prompt(InterviewScope.TASK) == base
    assert build_system_prompt(InterviewScope.TASK, Intensity.MINIMAL).startswith(base + "\n\n")


def test_schema_requires_type() -> None:
    assert RESPONSE_SCHEMA["required"] == ["type"]
    assert RESPONSE_SCHEMA["properties"]["type"]["enum"] == ["questions", "proposal"]


def test_opening_message_without_context() -> None:
    message = build_opening_message(InterviewScope.PROJECT, "  Recipe sharing app  ")

    assert message == (
        "I want to define requirements and a plan for my project.\n\n"
        "## My Request\nRecipe sharing app"
    )


def test_opening_message_without_request_is_just_the_intro() -> None:
    assert build_opening_message(InterviewScope.TASK, None) == "I want to define a task clearly."


def test_context_section_lists_known_project_details() -> None:
    context = InterviewContext(
        project_title="Cookbook",
        project_description="Share recipes",
        existing_features=[
            FeatureSummary(title="Login", description="Email sign-in"),
            FeatureSummary(title="Search"),
        ],
        existing_requirements=[
            RequirementSummary(path="docs/requirements/login.md", title="Login", summary="Auth flow"),
        ],
        current_design_md="# Design\nPrimary color: teal",
    )

    section = build_context_section(context)

    assert section is not None
    assert "## Existing App\nProject: Cookbook\nDescription: Share recipes" in section
    assert "- Login: Email sign-in\n- Search" in section
    assert "- **Login** (docs/requirements/login.md): Auth flow" in section
    assert "```markdown\n# Design\nPrimary color: teal\n```" in section


def test_empty_design_guide_is_announced() -> None:
    section = build_context_section(InterviewContext(current_design_md=""))

    assert section is not None
    assert "currently empty or missing" in section


def test_empty_context_renders_nothing() -> None:
    assert build_context_section(None) is None
    assert build_context_section(InterviewContext()) is None


def test_context_goes_between_intro_and_request() -> None:
    context = InterviewContext(project_title="Cookbook")

    message = build_opening_message(InterviewScope.NEW_FEATURE, "Dark mode", context)

    intro, existing, request = message.split("\n\n")
    assert intro == PROMPT_LIBRARY[InterviewScope.NEW_FEATURE].intro
    assert existing == "## Existing App\nProject: Cookbook"
    assert request == "## My Request\nDark mode"


def test_resume_message_flattens_transcript() -> None:
    messages = [
        InterviewMessage(role=MessageRole.USER, content="Add dark mode"),
        InterviewMessage(role=MessageRole.ASSISTANT, content="Which screens?"),
        InterviewMessage(role=MessageRole.USER, content="All of them"),
    ]

    assert build_resume_message(messages) == (
        "Continue this conversation:\n\n"
        "User: Add dark mode\n\n"
        "Assistant: Which screens?\n\n"
        "User: All of them\n\n"
        "Please continue.\n"
    )
