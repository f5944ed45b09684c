"""Prompts and outgoing messages for the interview conversation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from ..models import StructuredQuestion
from ..templates import render_template
from .response_parser import KIND_COMPLETE, KIND_PRD, KIND_QUESTION, format_marker
from .state import InterviewState

# How much of the accumulated assistant notes is replayed on resume
RESUME_CONTEXT_CHARS = 4000

PRD_REQUEST = (
    "The interview is complete. Write the PRD now, based on everything discussed. "
    "Reply with a single PRD block and nothing else."
)

_QUESTION_EXAMPLE = {
    "header": "Scope",
    "question": "Which login methods should be supported?",
    "options": [
        {"label": "Email + password", "description": "Classic credentials"},
        {"label": "OAuth", "description": "Google and GitHub sign-in"},
    ],
    "multiSelect": True,
}
_COMPLETE_EXAMPLE = {"summary": "One-paragraph summary of what was agreed"}
_PRD_EXAMPLE = {
    "slug": "user-authentication",
    "prd": {
        "overview": "What the feature is and why it matters",
        "userStories": [
            {
                "title": "Sign in with email",
                "description": "As a user I want to ...",
                "acceptanceCriteria": ["Given ... when ... then ..."],
            }
        ],
        "technicalNotes": "Constraints, dependencies, open risks",
    },
}


@dataclass(frozen=True)
class PromptConfig:
    feature: str
    first_principles: bool = False
    context_content: Optional[str] = None
    project_summary: Optional[str] = None


def generate_system_prompt(config: PromptConfig) -> str:
    """Render the system prompt. Same input, same output."""
    return render_template(
        "system_prompt",
        feature=config.feature,
        first_principles=config.first_principles,
        project_summary=(config.project_summary or "").strip(),
        context_content=(config.context_content or "").strip(),
        question_example=format_marker(KIND_QUESTION, _QUESTION_EXAMPLE),
        complete_example=format_marker(KIND_COMPLETE, _COMPLETE_EXAMPLE),
        prd_example=format_marker(KIND_PRD, _PRD_EXAMPLE),
    ).strip()


def generate_resume_prompt(state: InterviewState) -> str:
    """Priming message for a resumed session: notes tail plus answered questions."""
    return render_template(
        "resume_prompt",
        feature=state.feature,
        phase=state.phase.value,
        ai_context=state.ai_context.strip(),
        context_limit=RESUME_CONTEXT_CHARS,
        history=state.history,
    ).strip()


def format_answer(answer: str, question: Optional[StructuredQuestion] = None) -> str:
    """Message sent to the assistant for one user answer."""
    answer = answer.strip()
    if question is None:
        return answer
    return f"Answer to \"{question.question}\":\n{answer}"


def format_choice_answer(selected: List[str], other: str = "") -> str:
    """Join the labels a user picked (plus any free-text "other") into one answer."""
    parts = list(selected)
    if other.strip():
        parts.append(f"Other: {other.strip()}")
    return ", ".join(parts) if parts else "(no selection)"
