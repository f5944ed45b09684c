"""Interview session state machine.

The orchestrator owns the live ``InterviewState`` and drives one turn at a
time against an ``AIProvider``::

    INIT -> EXPLORING -> QUESTIONING -> GENERATING -> COMPLETE
      (any non-terminal status) -> FAILED | CANCELLED

Every turn runs under ``with_error_recovery``: transient failures are
retried, and whatever finally surfaces is preceded by a checkpoint of the
last good state. A successful turn is checkpointed before it returns, so at
most the turn in flight is ever lost.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from ..models import PRDDraft, StructuredQuestion
from ..prd import normalize_slug
from .errors import (
    ErrorCategory,
    InterviewError,
    RetryPolicy,
    try_save_state,
    with_error_recovery,
)
from .prompts import PRD_REQUEST, PromptConfig, format_answer, generate_resume_prompt, generate_system_prompt
from .response_parser import KIND_COMPLETE, ParsedAIResponse, parse_ai_response
from .state import (
    InterviewState,
    Phase,
    StateStore,
    add_to_history,
    advance_phase,
    update_ai_context,
)

if TYPE_CHECKING:
    from ..providers.base import AIProvider, ProviderResponse

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    INIT = "init"
    EXPLORING = "exploring"
    QUESTIONING = "questioning"
    GENERATING = "generating"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETE, SessionStatus.FAILED, SessionStatus.CANCELLED)

    @classmethod
    def for_phase(cls, phase: Phase) -> "SessionStatus":
        return cls(phase.value)


class EventType(str, Enum):
    PHASE_CHANGED = "phase-changed"
    QUESTION_RECEIVED = "question-received"
    ANSWER_RECORDED = "answer-recorded"
    PRD_READY = "prd-ready"
    ERROR = "error"


@dataclass(frozen=True)
class OrchestratorEvent:
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[OrchestratorEvent], None]


@dataclass(frozen=True)
class OrchestratorConfig:
    """Everything one session needs; nothing is read from globals."""

    provider: "AIProvider"
    state: InterviewState
    store: StateStore
    first_principles: bool = False
    context_content: Optional[str] = None
    project_summary: Optional[str] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    resumed: bool = False


@dataclass
class InterviewCompletionResult:
    slug: str
    prd: PRDDraft
    state: InterviewState


@dataclass
class TurnResult:
    status: SessionStatus
    state: InterviewState
    content: str
    question: Optional[StructuredQuestion] = None
    completion: Optional[InterviewCompletionResult] = None
    warnings: List[str] = field(default_factory=list)


class InterviewOrchestrator:
    """Runs one interview session against one provider."""

    def __init__(self, config: OrchestratorConfig):
        self.config = config
        self._provider = config.provider
        self._store = config.store
        self._state = config.state
        self._status = SessionStatus.for_phase(config.state.phase) if config.resumed else SessionStatus.INIT
        self._started = False
        self._busy = False
        self._pending_question: Optional[StructuredQuestion] = None
        self._last_content = ""
        self._completion: Optional[InterviewCompletionResult] = None
        self._cancel_event = asyncio.Event()
        self._handlers: List[EventHandler] = []

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def state(self) -> InterviewState:
        return self._state

    @property
    def pending_question(self) -> Optional[StructuredQuestion]:
        return self._pending_question

    @property
    def completion(self) -> Optional[InterviewCompletionResult]:
        return self._completion

    # -- events --------------------------------------------------------

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler``; returns a function that unregisters it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def _emit(self, event_type: EventType, **payload: Any) -> None:
        event = OrchestratorEvent(type=event_type, payload=payload)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event_type.value)

    # -- transitions ---------------------------------------------------

    def _set_status(self, status: SessionStatus) -> None:
        if status is self._status:
            return
        previous, self._status = self._status, status
        logger.debug("Interview status %s -> %s", previous.value, status.value)
        self._emit(EventType.PHASE_CHANGED, previous=previous, status=status)

    def _advance(self, phase: Phase) -> None:
        self._state = advance_phase(self._state, phase)
        self._set_status(SessionStatus.for_phase(phase))

    def _check_can_turn(self, *allowed: SessionStatus) -> None:
        if self._busy:
            raise InterviewError(
                ErrorCategory.PROVIDER, "a turn is already in progress", retryable=False
            )
        if self._status not in allowed:
            raise InterviewError(
                ErrorCategory.PROVIDER,
                f"not allowed while the interview is {self._status.value}",
                retryable=False,
            )

    def _fail(self, err: InterviewError) -> None:
        if err.category is ErrorCategory.USER_CANCELLED:
            self._set_status(SessionStatus.CANCELLED)
        else:
            self._set_status(SessionStatus.FAILED)
        self._emit(EventType.ERROR, error=err)

    # -- turn protocol -------------------------------------------------

    async def _run_turn(
        self,
        exchange: Callable[[], Awaitable["ProviderResponse"]],
        answer: Optional[str] = None,
    ) -> TurnResult:
        self._busy = True
        try:
            response = await self._recover(exchange)
            return await self._apply_response(response, answer=answer)
        except InterviewError as err:
            if not self._status.is_terminal:
                self._fail(err)
            raise
        finally:
            self._busy = False

    async def _apply_response(self, response: "ProviderResponse", answer: Optional[str] = None) -> TurnResult:
        feature = self._state.feature
        parsed = parse_ai_response(response.content, self._state.phase, feature)
        warnings = [*parsed.warnings, *parsed.anomalies]

        if answer is not None:
            asked = self._pending_question.question if self._pending_question else self._last_content
            self._state = add_to_history(self._state, asked or "(no question)", answer)
            self._emit(
                EventType.ANSWER_RECORDED,
                question=asked,
                answer=answer,
                history_length=len(self._state.history),
            )
        self._state = update_ai_context(self._state, parsed.content)
        self._last_content = parsed.content
        self._pending_question = None

        if self._status is SessionStatus.INIT:
            self._set_status(SessionStatus.EXPLORING)

        if parsed.question is not None:
            self._pending_question = parsed.question
            if self._state.phase is Phase.EXPLORING:
                self._advance(Phase.QUESTIONING)
            self._emit(EventType.QUESTION_RECEIVED, question=parsed.question)
        elif parsed.kind == KIND_COMPLETE:
            self._advance(Phase.GENERATING)
            reparsed = parse_ai_response(response.content, Phase.GENERATING, feature)
            if reparsed.prd is not None:
                self._complete(reparsed)
        elif parsed.prd is not None:
            self._complete(parsed)

        result = await try_save_state(self._state, self._store)
        if not result.success:
            raise InterviewError(
                ErrorCategory.STATE,
                f"could not checkpoint interview state to {result.path}",
                cause=result.error,
            )

        return TurnResult(
            status=self._status,
            state=self._state,
            content=parsed.content,
            question=self._pending_question,
            completion=self._completion,
            warnings=warnings,
        )

    def _complete(self, parsed: ParsedAIResponse) -> None:
        slug = parsed.slug or normalize_slug(self._state.feature) or "prd"
        self._completion = InterviewCompletionResult(slug=slug, prd=parsed.prd, state=self._state)
        self._set_status(SessionStatus.COMPLETE)
        self._emit(EventType.PRD_READY, slug=slug, prd=parsed.prd)

    def _prompt_config(self) -> PromptConfig:
        return PromptConfig(
            feature=self._state.feature,
            first_principles=self.config.first_principles,
            context_content=self.config.context_content,
            project_summary=self.config.project_summary,
        )

    # -- public API ----------------------------------------------------

    async def start(self) -> TurnResult:
        """Spawn the provider and get its first reply."""
        self._check_can_turn(SessionStatus.INIT)
        system_prompt = generate_system_prompt(self._prompt_config())

        async def exchange() -> "ProviderResponse":
            await self._provider.spawn(system_prompt)
            return await self._provider.receive()

        self._started = True
        return await self._run_turn(exchange)

    async def resume(self) -> TurnResult:
        """Re-prime the provider with what was recorded and continue.

        Only valid for orchestrators built from a saved state. Recorded answers
        are summarised in the priming message, never replayed as turns.
        """
        if not self.config.resumed or self._started:
            raise InterviewError(ErrorCategory.STATE, "nothing to resume", retryable=False)
        self._check_can_turn(SessionStatus.EXPLORING, SessionStatus.QUESTIONING, SessionStatus.GENERATING)
        system_prompt = generate_system_prompt(self._prompt_config())
        resume_prompt = generate_resume_prompt(self._state)

        async def exchange() -> "ProviderResponse":
            await self._provider.spawn(system_prompt, resume_prompt)
            return await self._provider.receive()

        self._started = True
        return await self._run_turn(exchange)

    async def submit_answer(self, answer: str) -> TurnResult:
        """Send the user's answer and process the reply."""
        self._check_can_turn(SessionStatus.EXPLORING, SessionStatus.QUESTIONING, SessionStatus.GENERATING)
        answer = answer.strip()
        if not answer:
            raise ValueError("answer must not be empty")
        message = format_answer(answer, self._pending_question)

        async def exchange() -> "ProviderResponse":
            await self._provider.send(message)
            return await self._provider.receive()

        return await self._run_turn(exchange, answer=answer)

    async def request_prd(self) -> TurnResult:
        """Ask the provider to write the PRD now."""
        self._check_can_turn(SessionStatus.EXPLORING, SessionStatus.QUESTIONING, SessionStatus.GENERATING)
        if self._state.phase is not Phase.GENERATING:
            self._advance(Phase.GENERATING)
        self._pending_question = None

        async def exchange() -> "ProviderResponse":
            await self._provider.send(PRD_REQUEST)
            return await self._provider.receive()

        return await self._run_turn(exchange)

    async def cancel(self) -> None:
        """Abort the session: stop backoff, kill the provider, checkpoint."""
        if self._status.is_terminal:
            return
        self._cancel_event.set()
        await self._mark_cancelled()

    async def finalize(self) -> InterviewCompletionResult:
        """Remove the checkpoint of a completed interview and return its result."""
        if self._status is not SessionStatus.COMPLETE or self._completion is None:
            raise InterviewError(
                ErrorCategory.STATE,
                f"cannot finalize an interview that is {self._status.value}",
                retryable=False,
            )
        await asyncio.to_thread(self._store.clear)
        await self._provider.cleanup()
        return self._completion

    async def close(self) -> None:
        await self._provider.cleanup()

    async def _recover(self, exchange: Callable[[], Awaitable["ProviderResponse"]]) -> "ProviderResponse":
        try:
            return await with_error_recovery(
                exchange,
                lambda: self._state,
                self._store,
                policy=self.config.retry,
                cancel_event=self._cancel_event,
            )
        except asyncio.CancelledError:
            if not self._cancel_event.is_set():
                await self._mark_cancelled()
                raise
            err = InterviewError(ErrorCategory.USER_CANCELLED, "turn cancelled")
            self._fail(err)
            raise err from None

    async def _mark_cancelled(self) -> None:
        self._set_status(SessionStatus.CANCELLED)
        await self._provider.cleanup()
        await try_save_state(self._state, self._store)


def create_orchestrator(
    provider: "AIProvider",
    state: InterviewState,
    store: StateStore,
    *,
    context_content: Optional[str] = None,
    project_summary: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
) -> InterviewOrchestrator:
    """Orchestrator for a brand-new interview; call ``start()`` next."""
    return InterviewOrchestrator(
        OrchestratorConfig(
            provider=provider,
            state=state,
            store=store,
            first_principles=state.first_principles,
            context_content=context_content,
            project_summary=project_summary,
            retry=policy or RetryPolicy(),
        )
    )


def create_orchestrator_from_state(
    state: InterviewState,
    provider: "AIProvider",
    *,
    store: StateStore,
    context_content: Optional[str] = None,
    project_summary: Optional[str] = None,
    policy: Optional[RetryPolicy] = None,
) -> InterviewOrchestrator:
    """Rebuild a session from a checkpoint; call ``resume()`` next."""
    return InterviewOrchestrator(
        OrchestratorConfig(
            provider=provider,
            state=state,
            store=store,
            first_principles=state.first_principles,
            context_content=context_content,
            project_summary=project_summary,
            retry=policy or RetryPolicy(),
            resumed=True,
        )
    )
