"""Interview orchestration engine.

Drives a resumable, turn-based conversation with an AI provider that ends
in a structured PRD.

Key components:
- InterviewOrchestrator: session state machine and per-turn protocol
- parse_ai_response: extracts questions and PRDs from marker blocks
- InterviewState / StateStore: resumable state and its YAML checkpoint
- InterviewError / with_error_recovery: classification, retry, checkpointing
"""

from .errors import (
    ErrorCategory,
    InterviewError,
    RetryPolicy,
    classify_error,
    format_error_for_user,
    is_recoverable_error,
    safe_execute,
    try_save_state,
    with_error_recovery,
    with_retry,
)
from .orchestrator import (
    EventType,
    InterviewCompletionResult,
    InterviewOrchestrator,
    OrchestratorConfig,
    OrchestratorEvent,
    SessionStatus,
    TurnResult,
    create_orchestrator,
    create_orchestrator_from_state,
)
from .response_parser import ParsedAIResponse, parse_ai_response
from .state import InterviewState, Phase, ProviderName, StateStore, create_state, validate_state

__all__ = [
    "ErrorCategory",
    "EventType",
    "InterviewCompletionResult",
    "InterviewError",
    "InterviewOrchestrator",
    "InterviewState",
    "OrchestratorConfig",
    "OrchestratorEvent",
    "ParsedAIResponse",
    "Phase",
    "ProviderName",
    "RetryPolicy",
    "SessionStatus",
    "StateStore",
    "TurnResult",
    "classify_error",
    "create_orchestrator",
    "create_orchestrator_from_state",
    "create_state",
    "format_error_for_user",
    "is_recoverable_error",
    "parse_ai_response",
    "safe_execute",
    "try_save_state",
    "validate_state",
    "with_error_recovery",
    "with_retry",
]
