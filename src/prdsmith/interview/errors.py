"""Error classification, retry and checkpoint-on-failure helpers.

Every failure that leaves the interview layer is an ``InterviewError``
tagged with an ``ErrorCategory``. The category decides whether the
operation is retried and which message the user sees.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Generic, List, Optional, TypeVar, Union

import aiohttp
import yaml
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

if TYPE_CHECKING:
    from .state import InterviewState, StateStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCategory(str, Enum):
    NETWORK = "network"
    PROVIDER = "provider"
    PROCESS = "process"
    STATE = "state"
    TIMEOUT = "timeout"
    USER_CANCELLED = "user-cancelled"
    UNKNOWN = "unknown"


RECOVERABLE_CATEGORIES = frozenset(
    {ErrorCategory.NETWORK, ErrorCategory.PROVIDER, ErrorCategory.PROCESS, ErrorCategory.TIMEOUT}
)


def is_recoverable_error(target: Union[ErrorCategory, BaseException]) -> bool:
    """Return True when failures of this category are worth retrying."""
    if isinstance(target, BaseException):
        target = classify_error(target)
    return target in RECOVERABLE_CATEGORIES


class InterviewError(Exception):
    """The single error type surfaced by the interview layer.

    Args:
        category: What kind of failure this is.
        message: Developer-facing description (never shown to the user as-is).
        cause: The underlying exception, if any.
        retryable: Overrides the category's default retry policy.
    """

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        *,
        cause: Optional[BaseException] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.category = category
        self.message = message
        self.cause = cause
        self.retryable = is_recoverable_error(category) if retryable is None else retryable
        self.attempts = 0
        self.diagnostics: List[str] = []
        if cause is not None:
            self.__cause__ = cause

    def __repr__(self) -> str:
        return f"InterviewError({self.category.value!r}, {self.message!r}, retryable={self.retryable})"


# Keyword hints for exceptions that carry no useful type (generic RuntimeError
# and friends raised by CLIs and HTTP libraries).
_MESSAGE_HINTS = [
    (ErrorCategory.TIMEOUT, ("timed out", "timeout", "etimedout")),
    (ErrorCategory.NETWORK, ("econnrefused", "econnreset", "enotfound", "network", "connection refused", "dns")),
    (
        ErrorCategory.PROVIDER,
        ("rate limit", "rate_limit", "429", "quota", "overloaded", "unauthorized", "401", "api key"),
    ),
    (ErrorCategory.PROCESS, ("exit code", "exited with", "sigterm", "sigkill", "broken pipe", "spawn")),
    (ErrorCategory.STATE, ("state file", "yaml", "corrupt")),
]


def classify_error(err: BaseException) -> ErrorCategory:
    """Map any exception onto an ``ErrorCategory``."""
    if isinstance(err, InterviewError):
        return err.category
    if isinstance(err, (asyncio.CancelledError, KeyboardInterrupt)):
        return ErrorCategory.USER_CANCELLED
    if isinstance(err, (TimeoutError, asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(err, (BrokenPipeError, ChildProcessError, ProcessLookupError)):
        return ErrorCategory.PROCESS
    if isinstance(err, (aiohttp.ClientConnectionError, ConnectionError, socket.gaierror)):
        return ErrorCategory.NETWORK
    if isinstance(err, aiohttp.ClientResponseError):
        return ErrorCategory.PROVIDER
    if isinstance(err, yaml.YAMLError):
        return ErrorCategory.STATE

    text = str(err).lower()
    for category, hints in _MESSAGE_HINTS:
        if any(hint in text for hint in hints):
            return category
    return ErrorCategory.UNKNOWN


def to_interview_error(err: BaseException) -> InterviewError:
    """Wrap ``err`` in an ``InterviewError`` unless it already is one."""
    if isinstance(err, InterviewError):
        return err
    category = classify_error(err)
    message = str(err) or type(err).__name__
    return InterviewError(category, message, cause=err)


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff_ms: int = 1000
    max_backoff_ms: int = 30000
    jitter_ms: int = 250


async def _cancellable_sleep(seconds: float, cancel_event: Optional[asyncio.Event]) -> None:
    if cancel_event is None:
        await asyncio.sleep(seconds)
        return
    if cancel_event.is_set():
        raise InterviewError(ErrorCategory.USER_CANCELLED, "cancelled before retry")
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    raise InterviewError(ErrorCategory.USER_CANCELLED, "cancelled during retry backoff")


def _log_before_sleep(retry_state: RetryCallState) -> None:
    err = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        "Attempt %d failed (%s), retrying in %.1fs",
        retry_state.attempt_number,
        err,
        wait,
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    backoff_ms: int = 1000,
    max_backoff_ms: int = 30000,
    jitter_ms: int = 250,
    cancel_event: Optional[asyncio.Event] = None,
) -> T:
    """Run ``operation`` and retry it while it fails with a retryable error.

    Failures are normalised to ``InterviewError`` first, so the retry decision
    is made on the ``retryable`` flag alone. The error that finally surfaces
    carries the number of attempts made.

    Raises:
        InterviewError: after the last attempt, or immediately for fatal errors.
    """
    attempts = 0

    async def attempt() -> T:
        nonlocal attempts
        attempts += 1
        try:
            return await operation()
        except (asyncio.CancelledError, InterviewError):
            raise
        except Exception as exc:
            raise to_interview_error(exc) from exc

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=backoff_ms / 1000, max=max_backoff_ms / 1000)
        + wait_random(0, jitter_ms / 1000),
        retry=retry_if_exception(lambda e: isinstance(e, InterviewError) and e.retryable),
        sleep=lambda seconds: _cancellable_sleep(seconds, cancel_event),
        before_sleep=_log_before_sleep,
        reraise=True,
    )
    try:
        return await retrying(attempt)
    except InterviewError as err:
        err.attempts = attempts
        raise


@dataclass
class StateSaveResult:
    success: bool
    path: Optional[Path] = None
    error: Optional[BaseException] = None


async def try_save_state(state: "InterviewState", store: "StateStore") -> StateSaveResult:
    """Persist ``state`` without ever raising."""
    try:
        await asyncio.to_thread(store.save, state)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.error("Could not checkpoint interview state to %s: %s", store.path, exc)
        return StateSaveResult(success=False, path=store.path, error=exc)
    logger.debug("Checkpointed interview state to %s", store.path)
    return StateSaveResult(success=True, path=store.path)


async def with_error_recovery(
    operation: Callable[[], Awaitable[T]],
    state: Union["InterviewState", Callable[[], "InterviewState"]],
    store: "StateStore",
    *,
    policy: Optional[RetryPolicy] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> T:
    """Retry ``operation`` and checkpoint ``state`` once if it still fails.

    ``state`` may be a callable so the checkpoint captures the latest
    snapshot rather than the one current when the call started. A failed
    checkpoint is recorded on the surfaced error's ``diagnostics``.
    """
    policy = policy or RetryPolicy()
    try:
        return await with_retry(
            operation,
            max_attempts=policy.max_attempts,
            backoff_ms=policy.backoff_ms,
            max_backoff_ms=policy.max_backoff_ms,
            jitter_ms=policy.jitter_ms,
            cancel_event=cancel_event,
        )
    except InterviewError as err:
        snapshot = state() if callable(state) else state
        result = await try_save_state(snapshot, store)
        if not result.success:
            err.diagnostics.append(f"checkpoint failed: {result.error}")
        raise


@dataclass
class Outcome(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[InterviewError] = None


async def safe_execute(operation: Callable[[], Awaitable[T]]) -> Outcome[T]:
    """Run ``operation`` and report failure as a value instead of raising."""
    try:
        value = await operation()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        return Outcome(ok=False, error=to_interview_error(exc))
    return Outcome(ok=True, value=value)


_USER_MESSAGES = {
    ErrorCategory.NETWORK: "Could not reach the AI provider. Check your network connection.",
    ErrorCategory.PROVIDER: "The AI provider returned an error. It may be rate limited or misconfigured.",
    ErrorCategory.PROCESS: "The AI provider process exited unexpectedly.",
    ErrorCategory.STATE: "The saved interview state could not be read or written.",
    ErrorCategory.TIMEOUT: "The AI provider took too long to respond.",
    ErrorCategory.USER_CANCELLED: "Interview cancelled.",
    ErrorCategory.UNKNOWN: "An unexpected error occurred.",
}

RESUME_HINT = "Your progress has been saved. Run `prdsmith --resume` to continue."
STATE_HINT = "Run `prdsmith --fresh` to discard the saved interview and start over."


def format_error_for_user(error: BaseException) -> str:
    """Return a fixed, cause-free message for ``error`` plus a recovery hint."""
    category = classify_error(error)
    hint = STATE_HINT if category is ErrorCategory.STATE else RESUME_HINT
    return f"{_USER_MESSAGES[category]}\n{hint}"


def describe_error(error: BaseException) -> str:
    """Developer-facing summary used in verbose logs."""
    err = to_interview_error(error)
    parts = [f"[{err.category.value}] {err.message}"]
    if err.attempts:
        parts.append(f"after {err.attempts} attempt(s)")
    parts.extend(err.diagnostics)
    return "; ".join(parts)
