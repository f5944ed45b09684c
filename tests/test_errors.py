"""Tests for prdsmith.interview.errors."""

import asyncio
import socket
from pathlib import Path
from unittest.mock import MagicMock

import aiohttp
import pytest
import yaml

from prdsmith.interview.errors import (
    ErrorCategory,
    InterviewError,
    RetryPolicy,
    classify_error,
    format_error_for_user,
    is_recoverable_error,
    safe_execute,
    to_interview_error,
    try_save_state,
    with_error_recovery,
    with_retry,
)


def _failing(exc, calls):
    async def op():
        calls.append(1)
        raise exc

    return op


def _mock_store(side_effect=None):
    store = MagicMock()
    store.path = Path("/tmp/prdsmith/state.yaml")
    store.save.side_effect = side_effect
    return store


class TestClassifyError:
    @pytest.mark.parametrize(
        "exc,category",
        [
            (TimeoutError("slow"), ErrorCategory.TIMEOUT),
            (asyncio.TimeoutError(), ErrorCategory.TIMEOUT),
            (BrokenPipeError(), ErrorCategory.PROCESS),
            (ChildProcessError("gone"), ErrorCategory.PROCESS),
            (ConnectionRefusedError(), ErrorCategory.NETWORK),
            (socket.gaierror("no dns"), ErrorCategory.NETWORK),
            (aiohttp.ClientConnectionError("down"), ErrorCategory.NETWORK),
            (yaml.YAMLError("bad"), ErrorCategory.STATE),
            (KeyboardInterrupt(), ErrorCategory.USER_CANCELLED),
            (asyncio.CancelledError(), ErrorCategory.USER_CANCELLED),
            (RuntimeError("Rate limit exceeded"), ErrorCategory.PROVIDER),
            (RuntimeError("connect ECONNREFUSED 127.0.0.1"), ErrorCategory.NETWORK),
            (RuntimeError("request timed out"), ErrorCategory.TIMEOUT),
            (RuntimeError("process exited with code 1"), ErrorCategory.PROCESS),
            (RuntimeError("boom"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_categories(self, exc, category):
        assert classify_error(exc) is category

    def test_interview_error_keeps_category(self):
        err = InterviewError(ErrorCategory.STATE, "timeout while reading")
        assert classify_error(err) is ErrorCategory.STATE


class TestInterviewError:
    def test_retryable_follows_category(self):
        assert InterviewError(ErrorCategory.NETWORK, "x").retryable is True
        assert InterviewError(ErrorCategory.STATE, "x").retryable is False

    def test_retryable_override(self):
        assert InterviewError(ErrorCategory.PROVIDER, "x", retryable=False).retryable is False

    def test_to_interview_error_wraps_cause(self):
        cause = ConnectionResetError("reset")
        err = to_interview_error(cause)

        assert err.category is ErrorCategory.NETWORK
        assert err.cause is cause
        assert to_interview_error(err) is err

    @pytest.mark.parametrize(
        "category,expected",
        [
            (ErrorCategory.NETWORK, True),
            (ErrorCategory.PROVIDER, True),
            (ErrorCategory.PROCESS, True),
            (ErrorCategory.TIMEOUT, True),
            (ErrorCategory.STATE, False),
            (ErrorCategory.USER_CANCELLED, False),
            (ErrorCategory.UNKNOWN, False),
        ],
    )
    def test_is_recoverable(self, category, expected):
        assert is_recoverable_error(category) is expected

    def test_is_recoverable_accepts_exception(self):
        assert is_recoverable_error(TimeoutError()) is True


class TestWithRetry:
    def test_succeeds_first_try(self):
        async def op():
            return "ok"

        assert asyncio.run(with_retry(op, backoff_ms=0, jitter_ms=0)) == "ok"

    def test_always_failing_recoverable_makes_max_attempts(self):
        calls = []
        op = _failing(ConnectionError("down"), calls)

        with pytest.raises(InterviewError) as exc_info:
            asyncio.run(with_retry(op, max_attempts=3, backoff_ms=0, max_backoff_ms=0, jitter_ms=0))

        assert len(calls) == 3
        assert exc_info.value.category is ErrorCategory.NETWORK
        assert exc_info.value.attempts == 3

    def test_fatal_error_not_retried(self):
        calls = []
        op = _failing(ValueError("bad input"), calls)

        with pytest.raises(InterviewError) as exc_info:
            asyncio.run(with_retry(op, max_attempts=3, backoff_ms=0, jitter_ms=0))

        assert len(calls) == 1
        assert exc_info.value.category is ErrorCategory.UNKNOWN
        assert exc_info.value.attempts == 1

    def test_non_retryable_override_not_retried(self):
        calls = []
        op = _failing(InterviewError(ErrorCategory.PROVIDER, "busy", retryable=False), calls)

        with pytest.raises(InterviewError):
            asyncio.run(with_retry(op, max_attempts=3, backoff_ms=0, jitter_ms=0))
        assert len(calls) == 1

    def test_recovers_after_transient_failure(self):
        calls = []

        async def op():
            calls.append(1)
            if len(calls) < 2:
                raise TimeoutError("slow")
            return "ok"

        assert asyncio.run(with_retry(op, backoff_ms=0, max_backoff_ms=0, jitter_ms=0)) == "ok"
        assert len(calls) == 2

    def test_cancel_event_aborts_backoff(self):
        calls = []
        op = _failing(ConnectionError("down"), calls)

        async def scenario():
            cancel = asyncio.Event()
            cancel.set()
            return await with_retry(op, max_attempts=5, backoff_ms=60000, cancel_event=cancel)

        with pytest.raises(InterviewError) as exc_info:
            asyncio.run(scenario())

        assert exc_info.value.category is ErrorCategory.USER_CANCELLED
        assert len(calls) == 1

    def test_cancel_during_backoff_wakes_up(self):
        calls = []
        op = _failing(ConnectionError("down"), calls)

        async def scenario():
            cancel = asyncio.Event()
            asyncio.get_running_loop().call_later(0.05, cancel.set)
            return await with_retry(op, max_attempts=5, backoff_ms=60000, cancel_event=cancel)

        with pytest.raises(InterviewError) as exc_info:
            asyncio.run(asyncio.wait_for(scenario(), timeout=5))
        assert exc_info.value.category is ErrorCategory.USER_CANCELLED


class TestTrySaveState:
    def test_success(self, store, new_state):
        result = asyncio.run(try_save_state(new_state, store))
        assert result.success is True
        assert result.path == store.path
        assert store.exists()

    def test_failure_is_returned_not_raised(self, new_state):
        store = _mock_store(OSError("disk full"))
        result = asyncio.run(try_save_state(new_state, store))

        assert result.success is False
        assert isinstance(result.error, OSError)


class TestWithErrorRecovery:
    def test_state_error_checkpoints_once_without_retry(self, new_state):
        calls = []
        store = _mock_store()
        op = _failing(InterviewError(ErrorCategory.STATE, "bad state"), calls)

        with pytest.raises(InterviewError) as exc_info:
            asyncio.run(with_error_recovery(op, new_state, store, policy=RetryPolicy(backoff_ms=0, jitter_ms=0)))

        assert exc_info.value.category is ErrorCategory.STATE
        assert len(calls) == 1
        store.save.assert_called_once_with(new_state)

    def test_checkpoint_after_exhausted_retries(self, new_state):
        calls = []
        store = _mock_store()
        op = _failing(ConnectionError("down"), calls)
        policy = RetryPolicy(max_attempts=2, backoff_ms=0, max_backoff_ms=0, jitter_ms=0)

        with pytest.raises(InterviewError):
            asyncio.run(with_error_recovery(op, new_state, store, policy=policy))

        assert len(calls) == 2
        assert store.save.call_count == 1

    def test_checkpoint_failure_does_not_replace_error(self, new_state):
        store = _mock_store(OSError("disk full"))
        op = _failing(InterviewError(ErrorCategory.STATE, "bad state"), [])

        with pytest.raises(InterviewError) as exc_info:
            asyncio.run(with_error_recovery(op, new_state, store))

        assert exc_info.value.message == "bad state"
        assert any("disk full" in d for d in exc_info.value.diagnostics)

    def test_state_callable_is_evaluated_at_failure(self, new_state):
        store = _mock_store()
        op = _failing(InterviewError(ErrorCategory.STATE, "bad"), [])

        with pytest.raises(InterviewError):
            asyncio.run(with_error_recovery(op, lambda: new_state, store))
        store.save.assert_called_once_with(new_state)

    def test_success_does_not_checkpoint(self, new_state):
        store = _mock_store()

        async def op():
            return 42

        assert asyncio.run(with_error_recovery(op, new_state, store)) == 42
        store.save.assert_not_called()


class TestSafeExecute:
    def test_ok(self):
        async def op():
            return "value"

        outcome = asyncio.run(safe_execute(op))
        assert outcome.ok is True
        assert outcome.value == "value"

    def test_error_is_returned(self):
        async def op():
            raise BrokenPipeError()

        outcome = asyncio.run(safe_execute(op))
        assert outcome.ok is False
        assert outcome.error.category is ErrorCategory.PROCESS


class TestFormatErrorForUser:
    @pytest.mark.parametrize("category", list(ErrorCategory))
    def test_message_hides_cause(self, category):
        message = format_error_for_user(InterviewError(category, "secret internal detail"))
        assert "secret internal detail" not in message
        assert message.strip()

    def test_resume_hint(self):
        message = format_error_for_user(InterviewError(ErrorCategory.NETWORK, "x"))
        assert "prdsmith --resume" in message

    def test_state_errors_suggest_fresh_start(self):
        message = format_error_for_user(InterviewError(ErrorCategory.STATE, "x"))
        assert "--fresh" in message
