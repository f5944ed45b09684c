"""Tests for prdsmith.interview.orchestrator."""

import asyncio

import pytest
from conftest import FakeProvider, completion_reply, prd_payload, question_reply

from prdsmith.interview.errors import ErrorCategory, InterviewError
from prdsmith.interview.orchestrator import (
    EventType,
    SessionStatus,
    create_orchestrator,
    create_orchestrator_from_state,
)
from prdsmith.interview.prompts import PRD_REQUEST
from prdsmith.interview.response_parser import format_marker
from prdsmith.interview.state import Phase, add_to_history, advance_phase


def _status_events(orchestrator):
    seen = []
    orchestrator.subscribe(
        lambda e: seen.append(e.payload["status"]) if e.type is EventType.PHASE_CHANGED else None
    )
    return seen


class TestNewInterview:
    def test_full_interview_scenario(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply(), completion_reply()])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            statuses = _status_events(orchestrator)
            assert orchestrator.status is SessionStatus.INIT

            first = await orchestrator.start()
            assert first.status is SessionStatus.QUESTIONING
            assert first.question.header == "Auth"
            assert len(first.state.history) == 0
            assert store.load().phase is Phase.QUESTIONING

            second = await orchestrator.submit_answer("Email + password, OAuth")
            assert second.status is SessionStatus.COMPLETE
            assert second.state.phase is Phase.GENERATING
            assert len(second.state.history) == 1
            assert second.completion.slug == "user-authentication"
            assert second.completion.prd.overview == "Let users sign in."

            persisted = store.load()
            assert len(persisted.history) == 1
            assert persisted.history[0].question == "Which login methods should be supported?"
            assert persisted.history[0].answer == "Email + password, OAuth"

            result = await orchestrator.finalize()
            return statuses, result

        statuses, result = asyncio.run(scenario())

        assert statuses == [
            SessionStatus.EXPLORING,
            SessionStatus.QUESTIONING,
            SessionStatus.GENERATING,
            SessionStatus.COMPLETE,
        ]
        assert result.slug == "user-authentication"
        assert store.exists() is False
        assert len(provider.spawns) == 1
        assert provider.spawns[0][0].startswith("You are a senior product manager")

    def test_answer_is_sent_with_question(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply(), question_reply(question="Next?")])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()
            return await orchestrator.submit_answer("OAuth")

        result = asyncio.run(scenario())

        assert provider.sent == ['Answer to "Which login methods should be supported?":\nOAuth']
        assert result.question.question == "Next?"
        assert result.status is SessionStatus.QUESTIONING

    def test_free_text_turn_uses_reply_as_question(self, store, new_state, fast_policy):
        provider = FakeProvider(["What problem are you solving?", question_reply()])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            first = await orchestrator.start()
            assert first.status is SessionStatus.EXPLORING
            assert first.question is None
            return await orchestrator.submit_answer("Users forget passwords")

        result = asyncio.run(scenario())

        assert result.state.history[0].question == "What problem are you solving?"
        assert result.status is SessionStatus.QUESTIONING

    def test_ai_context_accumulates(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply(prose="The app uses Django.")])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            return await orchestrator.start()

        result = asyncio.run(scenario())
        assert result.state.ai_context == "The app uses Django."

    def test_system_prompt_includes_context(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply()])

        async def scenario():
            orchestrator = create_orchestrator(
                provider,
                new_state,
                store,
                context_content="## Reference Documents\n\nBilling notes here",
                policy=fast_policy,
            )
            await orchestrator.start()

        asyncio.run(scenario())
        assert "Billing notes here" in provider.spawns[0][0]
        assert "add user authentication" in provider.spawns[0][0]

    def test_system_prompt_includes_project_summary(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply()])

        async def scenario():
            orchestrator = create_orchestrator(
                provider,
                new_state,
                store,
                project_summary="## Project Overview\n\n**Type:** Python project",
                policy=fast_policy,
            )
            await orchestrator.start()

        asyncio.run(scenario())
        prompt = provider.spawns[0][0]
        assert "**Type:** Python project" in prompt
        assert prompt.index("FEATURE:") < prompt.index("## Project Overview") < prompt.index("## How the interview")

    def test_system_prompt_without_project_summary(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply()])

        async def scenario():
            await create_orchestrator(provider, new_state, store, policy=fast_policy).start()

        asyncio.run(scenario())
        assert "## Project Overview" not in provider.spawns[0][0]


class TestRequestPRD:
    def test_request_prd_from_questioning(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply(), format_marker("prd", prd_payload())])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()
            return await orchestrator.request_prd()

        result = asyncio.run(scenario())

        assert provider.sent == [PRD_REQUEST]
        assert result.status is SessionStatus.COMPLETE
        assert result.state.phase is Phase.GENERATING
        assert result.state.history == []

    def test_reply_without_prd_stays_generating(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply(), "Sure, one moment."])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()
            return await orchestrator.request_prd()

        result = asyncio.run(scenario())
        assert result.status is SessionStatus.GENERATING
        assert result.completion is None

    def test_complete_marker_without_prd(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply(), format_marker("complete", {"summary": "done"})])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()
            return await orchestrator.submit_answer("OAuth")

        result = asyncio.run(scenario())
        assert result.status is SessionStatus.GENERATING
        assert len(result.state.history) == 1

    def test_finalize_before_complete_raises(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply()])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()
            await orchestrator.finalize()

        with pytest.raises(InterviewError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.category is ErrorCategory.STATE
        assert store.exists()


class TestResume:
    def _saved_state(self, new_state):
        state = advance_phase(new_state, Phase.QUESTIONING)
        state = add_to_history(state, "Which login methods?", "OAuth")
        return add_to_history(state, "Which providers?", "Google and GitHub")

    def test_resume_from_questioning(self, store, new_state, fast_policy):
        store.save(self._saved_state(new_state))
        provider = FakeProvider([question_reply(question="Should sessions expire?")])

        async def scenario():
            loaded = store.load()
            orchestrator = create_orchestrator_from_state(loaded, provider, store=store, policy=fast_policy)
            assert orchestrator.status is SessionStatus.QUESTIONING
            assert len(orchestrator.state.history) == 2
            return await orchestrator.resume()

        result = asyncio.run(scenario())

        assert result.status is SessionStatus.QUESTIONING
        assert len(result.state.history) == 2
        assert provider.sent == []
        assert len(provider.spawns) == 1
        priming = provider.spawns[0][1]
        assert "Google and GitHub" in priming
        assert "Which login methods?" in priming
        assert result.question.question == "Should sessions expire?"

    def test_resume_in_generating_completes(self, store, new_state, fast_policy):
        state = advance_phase(self._saved_state(new_state), Phase.GENERATING)
        provider = FakeProvider([format_marker("prd", prd_payload())])

        async def scenario():
            orchestrator = create_orchestrator_from_state(state, provider, store=store, policy=fast_policy)
            return await orchestrator.resume()

        result = asyncio.run(scenario())
        assert result.status is SessionStatus.COMPLETE

    def test_start_not_allowed_on_resumed_session(self, store, new_state, fast_policy):
        provider = FakeProvider([])

        async def scenario():
            state = self._saved_state(new_state)
            orchestrator = create_orchestrator_from_state(state, provider, store=store, policy=fast_policy)
            await orchestrator.start()

        with pytest.raises(InterviewError):
            asyncio.run(scenario())
        assert provider.spawns == []

    def test_resume_not_allowed_on_new_session(self, store, new_state, fast_policy):
        async def scenario():
            orchestrator = create_orchestrator(FakeProvider([]), new_state, store, policy=fast_policy)
            await orchestrator.resume()

        with pytest.raises(InterviewError):
            asyncio.run(scenario())


class TestFailures:
    def test_transient_error_is_retried(self, store, new_state, fast_policy):
        provider = FakeProvider([ConnectionError("reset"), question_reply()])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            return await orchestrator.start()

        result = asyncio.run(scenario())
        assert result.status is SessionStatus.QUESTIONING
        assert len(provider.spawns) == 2

    def test_answer_retry_resends_same_message(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply(), TimeoutError("slow"), question_reply(question="Next?")])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()
            return await orchestrator.submit_answer("OAuth")

        result = asyncio.run(scenario())
        assert len(provider.sent) == 2
        assert provider.sent[0] == provider.sent[1]
        assert len(result.state.history) == 1

    def test_fatal_error_fails_session_and_checkpoints(self, store, new_state, fast_policy):
        fatal = InterviewError(ErrorCategory.PROVIDER, "invalid api key", retryable=False)
        provider = FakeProvider([question_reply(), fatal])
        errors = []

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            orchestrator.subscribe(lambda e: errors.append(e) if e.type is EventType.ERROR else None)
            await orchestrator.start()
            with pytest.raises(InterviewError):
                await orchestrator.submit_answer("OAuth")
            return orchestrator

        orchestrator = asyncio.run(scenario())

        assert orchestrator.status is SessionStatus.FAILED
        assert len(errors) == 1
        assert errors[0].payload["error"] is fatal
        persisted = store.load()
        assert persisted.phase is Phase.QUESTIONING
        assert persisted.history == []

    def test_exhausted_retries_surface_error(self, store, new_state, fast_policy):
        provider = FakeProvider([ConnectionError("down")] * 3)

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()

        with pytest.raises(InterviewError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.category is ErrorCategory.NETWORK
        assert exc_info.value.attempts == 3
        assert store.exists()

    def test_failed_session_rejects_turns(self, store, new_state, fast_policy):
        fatal = InterviewError(ErrorCategory.PROVIDER, "nope", retryable=False)
        provider = FakeProvider([fatal])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            with pytest.raises(InterviewError):
                await orchestrator.start()
            with pytest.raises(InterviewError) as exc_info:
                await orchestrator.submit_answer("hello")
            return exc_info.value

        err = asyncio.run(scenario())
        assert err.retryable is False
        assert provider.sent == []

    def test_empty_answer_rejected(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply()])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()
            await orchestrator.submit_answer("   ")

        with pytest.raises(ValueError):
            asyncio.run(scenario())


class TestConcurrency:
    def test_second_turn_while_in_flight_is_rejected(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply(), question_reply(question="Next?")])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()

            provider.gate = asyncio.Event()
            first = asyncio.create_task(orchestrator.submit_answer("OAuth"))
            await asyncio.sleep(0)
            with pytest.raises(InterviewError) as exc_info:
                await orchestrator.submit_answer("again")
            status_during = orchestrator.status

            provider.gate.set()
            result = await first
            return exc_info.value, status_during, result

        err, status_during, result = asyncio.run(scenario())

        assert err.category is ErrorCategory.PROVIDER
        assert err.retryable is False
        assert status_during is SessionStatus.QUESTIONING
        assert provider.sent == ['Answer to "Which login methods should be supported?":\nOAuth']
        assert result.question.question == "Next?"


class TestCancel:
    def test_cancel_after_start(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply()])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()
            await orchestrator.cancel()
            return orchestrator

        orchestrator = asyncio.run(scenario())
        assert orchestrator.status is SessionStatus.CANCELLED
        assert provider.cleanups >= 1
        assert store.load().phase is Phase.QUESTIONING

    def test_cancel_during_turn(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply(), question_reply()])

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()
            provider.gate = asyncio.Event()
            turn = asyncio.create_task(orchestrator.submit_answer("OAuth"))
            await asyncio.sleep(0)
            turn.cancel()
            with pytest.raises(asyncio.CancelledError):
                await turn
            return orchestrator

        orchestrator = asyncio.run(scenario())
        assert orchestrator.status is SessionStatus.CANCELLED
        assert store.load().history == []

    def test_cancel_is_idempotent(self, store, new_state, fast_policy):
        async def scenario():
            orchestrator = create_orchestrator(FakeProvider([]), new_state, store, policy=fast_policy)
            await orchestrator.cancel()
            await orchestrator.cancel()
            return orchestrator

        assert asyncio.run(scenario()).status is SessionStatus.CANCELLED


class TestEvents:
    def test_unsubscribe(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply()])
        seen = []

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            unsubscribe = orchestrator.subscribe(seen.append)
            unsubscribe()
            await orchestrator.start()

        asyncio.run(scenario())
        assert seen == []

    def test_handler_errors_do_not_break_turn(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply()])

        def broken(event):
            raise RuntimeError("handler bug")

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            orchestrator.subscribe(broken)
            return await orchestrator.start()

        assert asyncio.run(scenario()).status is SessionStatus.QUESTIONING

    def test_event_order_for_answer(self, store, new_state, fast_policy):
        provider = FakeProvider([question_reply(), question_reply(question="Next?")])
        seen = []

        async def scenario():
            orchestrator = create_orchestrator(provider, new_state, store, policy=fast_policy)
            await orchestrator.start()
            orchestrator.subscribe(lambda e: seen.append(e.type))
            await orchestrator.submit_answer("OAuth")

        asyncio.run(scenario())
        assert seen == [EventType.ANSWER_RECORDED, EventType.QUESTION_RECEIVED]
