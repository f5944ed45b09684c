"""Pydantic models for the structured payloads exchanged with the AI provider.

The provider embeds these as JSON inside marker blocks (see
``prdsmith.interview.response_parser``). Field names follow the camelCase
wire format; Python code uses the snake_case attribute names.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for camelCase wire payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2, by_alias=True)


class QuestionOption(WireModel):
    label: str = Field(min_length=1)
    description: str = ""


class StructuredQuestion(WireModel):
    """A question the assistant wants the user to answer.

    An empty ``options`` list means the answer is free text. Otherwise at
    least two options are required.
    """

    header: str = ""
    question: str = Field(min_length=1)
    options: List[QuestionOption] = Field(default_factory=list)
    multi_select: bool = False

    @field_validator("options")
    @classmethod
    def _at_least_two_options(cls, value: List[QuestionOption]) -> List[QuestionOption]:
        if len(value) == 1:
            raise ValueError("a choice question needs at least 2 options")
        return value

    @property
    def is_free_text(self) -> bool:
        return not self.options


class UserStory(WireModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    acceptance_criteria: List[str] = Field(default_factory=list)

    @field_validator("acceptance_criteria")
    @classmethod
    def _criteria_not_blank(cls, value: List[str]) -> List[str]:
        if any(not item.strip() for item in value):
            raise ValueError("acceptance criteria must be non-empty strings")
        return value


class PRDDraft(WireModel):
    """Structured requirements document produced at the end of an interview."""

    overview: str = Field(min_length=1)
    user_stories: List[UserStory] = Field(default_factory=list)
    technical_notes: str = ""

    @classmethod
    def from_json(cls, data: str) -> "PRDDraft":
        return cls.model_validate_json(data)


class CompletionPayload(WireModel):
    """Body of a ``prd`` marker: an optional slug plus the PRD itself."""

    slug: Optional[str] = None
    prd: PRDDraft
