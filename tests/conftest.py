"""Shared fixtures for the prdsmith test suite."""

import pytest

from prdsmith.interview.errors import ErrorCategory, InterviewError, RetryPolicy
from prdsmith.interview.response_parser import format_marker
from prdsmith.interview.state import StateStore, create_state
from prdsmith.providers.base import OPENING_MESSAGE, AIProvider, ProviderResponse


class FakeProvider(AIProvider):
    """Scripted provider: each ``receive`` pops the next reply or raises it."""

    name = "claude"
    display_name = "Fake Claude"
    command = "fake-claude"

    def __init__(self, script=None):
        self.script = list(script or [])
        self.spawns = []
        self.sent = []
        self.cleanups = 0
        self.gate = None
        self._awaiting = False

    async def is_available(self):
        return True

    async def get_version(self):
        return "fake 1.0"

    async def spawn(self, system_prompt, first_message=OPENING_MESSAGE):
        self.spawns.append((system_prompt, first_message))
        self._awaiting = True

    async def send(self, message):
        if self._awaiting:
            raise InterviewError(ErrorCategory.PROVIDER, "still awaiting", retryable=False)
        self.sent.append(message)
        self._awaiting = True

    async def receive(self):
        if not self._awaiting:
            raise InterviewError(ErrorCategory.PROVIDER, "nothing sent", retryable=False)
        if self.gate is not None:
            await self.gate.wait()
        self._awaiting = False
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return ProviderResponse(content=item)

    def is_running(self):
        return self._awaiting

    async def cleanup(self):
        self.cleanups += 1
        self._awaiting = False


def question_reply(question="Which login methods should be supported?", prose="Here is what I found."):
    payload = {
        "header": "Auth",
        "question": question,
        "options": [
            {"label": "Email + password", "description": "Classic credentials"},
            {"label": "OAuth", "description": "Google and GitHub"},
        ],
        "multiSelect": True,
    }
    return f"{prose}\n\n{format_marker('question', payload)}"


def prd_payload(slug="user-authentication"):
    return {
        "slug": slug,
        "prd": {
            "overview": "Let users sign in.",
            "userStories": [
                {
                    "title": "Sign in with email",
                    "description": "As a user I want to sign in with my email.",
                    "acceptanceCriteria": ["Valid credentials log the user in", "Bad credentials show an error"],
                }
            ],
            "technicalNotes": "Use the existing session middleware.",
        },
    }


def completion_reply(slug="user-authentication"):
    return (
        "Thanks, I have everything I need.\n\n"
        f"{format_marker('complete', {'summary': 'Email and OAuth login'})}\n\n"
        f"{format_marker('prd', prd_payload(slug))}"
    )


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def store(tmp_path):
    return StateStore(tmp_path)


@pytest.fixture
def new_state():
    return create_state("add user authentication", "claude")


@pytest.fixture
def fast_policy():
    """Retry policy without backoff delays."""
    return RetryPolicy(max_attempts=3, backoff_ms=0, max_backoff_ms=0, jitter_ms=0)
