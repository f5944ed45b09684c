"""Resumable interview state and its on-disk checkpoint.

The state is written to ``<base>/prdsmith/state.yaml`` after every turn so a
crashed or interrupted interview can continue where it stopped. Documents
written by a different format version are rejected rather than migrated.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictStr,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .errors import ErrorCategory, InterviewError

logger = logging.getLogger(__name__)

STATE_VERSION = 1
STATE_DIRNAME = "prdsmith"
STATE_FILENAME = "state.yaml"
STATE_HEADER = (
    "# prdsmith interview state.\n"
    "# Managed automatically; do not edit. Delete this file to start over.\n"
)


class Phase(str, Enum):
    """Persisted interview phase. Phases only ever move forward."""

    EXPLORING = "exploring"
    QUESTIONING = "questioning"
    GENERATING = "generating"

    @property
    def order(self) -> int:
        return _PHASE_ORDER.index(self)

    @property
    def next_phase(self) -> Optional["Phase"]:
        idx = self.order
        if idx < len(_PHASE_ORDER) - 1:
            return _PHASE_ORDER[idx + 1]
        return None


_PHASE_ORDER = [Phase.EXPLORING, Phase.QUESTIONING, Phase.GENERATING]


class ProviderName(str, Enum):
    CLAUDE = "claude"
    OPENCODE = "opencode"
    CURSOR = "cursor"
    CODEX = "codex"
    COPILOT = "copilot"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class InterviewQA(StateModel):
    question: StrictStr
    answer: StrictStr
    timestamp: AwareDatetime


class InterviewState(StateModel):
    """Everything needed to rebuild an interview session."""

    version: Literal[1] = STATE_VERSION
    feature: StrictStr = Field(min_length=1)
    provider: ProviderName
    first_principles: StrictBool = False
    context_files: List[StrictStr] = Field(default_factory=list)
    started_at: AwareDatetime
    updated_at: AwareDatetime
    phase: Phase = Phase.EXPLORING
    history: List[InterviewQA] = Field(default_factory=list)
    ai_context: StrictStr = ""

    @field_validator("version", mode="before")
    @classmethod
    def _version_is_int(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("version must be an integer")
        return value

    @field_validator("feature")
    @classmethod
    def _feature_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("feature must not be blank")
        return value

    @field_validator("history")
    @classmethod
    def _history_in_order(cls, value: List[InterviewQA]) -> List[InterviewQA]:
        for previous, current in zip(value, value[1:]):
            if current.timestamp < previous.timestamp:
                raise ValueError("history timestamps must be non-decreasing")
        return value

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class StateValidationError(BaseModel):
    field: str
    message: str


def validate_state(data: Any) -> List[StateValidationError]:
    """Check an externally supplied document against the state schema.

    Returns an empty list for a valid document, otherwise one entry per
    problem, named by the on-disk (camelCase) field.
    """
    if not isinstance(data, dict):
        return [StateValidationError(field="root", message="state must be a mapping")]
    try:
        InterviewState.model_validate(data)
    except ValidationError as exc:
        errors = []
        for item in exc.errors():
            field = ".".join(str(part) for part in item["loc"]) or "root"
            errors.append(StateValidationError(field=field, message=item["msg"]))
        return errors
    return []


def create_state(
    feature: str,
    provider: ProviderName | str,
    *,
    first_principles: bool = False,
    context_files: Optional[List[str]] = None,
) -> InterviewState:
    now = utcnow()
    return InterviewState(
        feature=feature,
        provider=ProviderName(provider),
        first_principles=first_principles,
        context_files=list(context_files or []),
        started_at=now,
        updated_at=now,
    )


def add_to_history(state: InterviewState, question: str, answer: str) -> InterviewState:
    """Return a copy of ``state`` with one more question/answer pair."""
    timestamp = utcnow()
    if state.history and state.history[-1].timestamp > timestamp:
        timestamp = state.history[-1].timestamp
    entry = InterviewQA(question=question, answer=answer, timestamp=timestamp)
    return state.model_copy(update={"history": [*state.history, entry], "updated_at": timestamp})


def advance_phase(state: InterviewState, phase: Phase) -> InterviewState:
    """Return a copy of ``state`` at ``phase``.

    Raises:
        InterviewError: if ``phase`` is behind the current phase.
    """
    if phase.order < state.phase.order:
        raise InterviewError(
            ErrorCategory.STATE,
            f"cannot move interview phase back from {state.phase.value} to {phase.value}",
            retryable=False,
        )
    if phase is state.phase:
        return state
    return state.model_copy(update={"phase": phase, "updated_at": utcnow()})


def update_ai_context(state: InterviewState, text: str) -> InterviewState:
    text = text.strip()
    if not text:
        return state
    combined = f"{state.ai_context}\n\n{text}" if state.ai_context else text
    return state.model_copy(update={"ai_context": combined})


class StateStore:
    """Reads and writes the single interview checkpoint file."""

    def __init__(self, base_dir: Path | str = "."):
        self.base_dir = Path(base_dir)

    @property
    def path(self) -> Path:
        return self.base_dir / STATE_DIRNAME / STATE_FILENAME

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> Optional[InterviewState]:
        """Load the saved state, or return None when nothing is saved.

        Raises:
            InterviewError: (category ``state``) for unreadable, invalid or
                wrong-version documents.
        """
        if not self.exists():
            return None
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise InterviewError(
                ErrorCategory.STATE, f"could not read state file {self.path}: {exc}", cause=exc
            )

        if isinstance(data, dict) and "version" in data and data["version"] != STATE_VERSION:
            raise InterviewError(
                ErrorCategory.STATE,
                f"unsupported state version {data.get('version')!r} in {self.path} "
                f"(expected {STATE_VERSION})",
            )

        problems = validate_state(data)
        if problems:
            detail = "; ".join(f"{p.field}: {p.message}" for p in problems)
            raise InterviewError(ErrorCategory.STATE, f"invalid state file {self.path}: {detail}")
        return InterviewState.model_validate(data)

    def save(self, state: InterviewState) -> InterviewState:
        """Validate and atomically write ``state``; returns the saved copy."""
        saved = state.model_copy(update={"updated_at": max(utcnow(), state.updated_at)})
        document = saved.to_document()
        problems = validate_state(document)
        if problems:
            detail = "; ".join(f"{p.field}: {p.message}" for p in problems)
            raise InterviewError(ErrorCategory.STATE, f"refusing to save invalid state: {detail}")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        body = STATE_HEADER + yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(body)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug("Wrote interview state (%d history entries)", len(saved.history))
        return saved

    def clear(self) -> bool:
        """Delete the checkpoint. Returns True if a file was removed."""
        if self.exists():
            self.path.unlink()
            return True
        return False
