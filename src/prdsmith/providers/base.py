"""Provider interface and the subprocess channel shared by all CLI adapters.

Each AI CLI runs non-interactively: one process per turn, fed the whole
conversation so far. ``SubprocessProvider`` keeps the transcript, enforces
the request/response discipline (one ``send`` then one ``receive``) and
turns subprocess failures into ``InterviewError``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..interview.errors import ErrorCategory, InterviewError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300.0
DEFAULT_GRACE_PERIOD = 5.0
OPENING_MESSAGE = "Begin the interview."


@dataclass
class ProviderConfig:
    """Per-session provider settings.

    ``command`` overrides the executable name; ``args`` are appended to the
    adapter's own flags; ``env`` is merged over the current environment.
    """

    command: Optional[str] = None
    args: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = DEFAULT_TIMEOUT
    grace_period: float = DEFAULT_GRACE_PERIOD
    model: str = ""
    server_url: Optional[str] = None


@dataclass
class ProviderResponse:
    content: str
    is_complete: bool = True
    structured: Optional[Any] = None


class AIProvider(ABC):
    """Capability interface every provider adapter implements."""

    name: str = ""
    display_name: str = ""
    command: str = ""

    @abstractmethod
    async def is_available(self) -> bool:
        ...

    @abstractmethod
    async def get_version(self) -> Optional[str]:
        ...

    @abstractmethod
    async def spawn(self, system_prompt: str, first_message: str = OPENING_MESSAGE) -> None:
        """Start a conversation. The reply to ``first_message`` is read with ``receive``."""

    @abstractmethod
    async def send(self, message: str) -> None:
        ...

    @abstractmethod
    async def receive(self) -> ProviderResponse:
        ...

    @abstractmethod
    def is_running(self) -> bool:
        ...

    @abstractmethod
    async def cleanup(self) -> None:
        ...


class ChannelState(str, Enum):
    IDLE = "idle"
    AWAITING = "awaiting"


def iter_json_lines(output: str) -> Iterator[Dict[str, Any]]:
    """Yield every JSON object found one-per-line in ``output``.

    Non-JSON lines (progress output, warnings) are skipped.
    """
    for line in output.splitlines():
        line = line.strip()
        if not line or not line.startswith("{"):
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict):
            yield entry


class SubprocessProvider(AIProvider):
    """Base for adapters that drive a CLI with one process per turn."""

    # Send the prompt on stdin; adapters that take it as an argument set False
    prompt_on_stdin = True

    def __init__(self, config: Optional[ProviderConfig] = None):
        self.config = config or ProviderConfig()
        if self.config.command:
            self.command = self.config.command
        self._system_prompt: Optional[str] = None
        self._transcript: List[Tuple[str, str]] = []
        self._state = ChannelState.IDLE
        self._pending: Optional[asyncio.Task] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._first_turn = False

    # -- adapter hooks -------------------------------------------------

    def build_command(self, prompt: str) -> List[str]:
        return [self.command, *self.config.args]

    def extract_response(self, output: str) -> ProviderResponse:
        """Turn raw CLI stdout into the assistant's reply."""
        return ProviderResponse(content=output.strip())

    # -- channel -------------------------------------------------------

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def spawned(self) -> bool:
        return self._system_prompt is not None

    @property
    def transcript(self) -> List[Tuple[str, str]]:
        return list(self._transcript)

    def build_prompt(self) -> str:
        """Flatten the conversation into a single prompt for a fresh process."""
        parts = [f"[SYSTEM]\n{self._system_prompt}\n"]
        for role, content in self._transcript:
            parts.append(f"[{role.upper()}]\n{content}\n")
        parts.append("[ASSISTANT]\n")
        return "\n".join(parts)

    async def is_available(self) -> bool:
        return shutil.which(self.command) is not None

    async def get_version(self) -> Optional[str]:
        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=10)
        except (OSError, asyncio.TimeoutError):
            return None
        if process.returncode != 0:
            return None
        lines = stdout.decode("utf-8", errors="replace").strip().splitlines()
        return lines[0] if lines else None

    async def spawn(self, system_prompt: str, first_message: str = OPENING_MESSAGE) -> None:
        if self.spawned:
            raise InterviewError(
                ErrorCategory.PROVIDER, f"{self.name} session already started", retryable=False
            )
        self._system_prompt = system_prompt
        self._transcript = []
        self._first_turn = True
        self._start_turn(first_message)

    async def send(self, message: str) -> None:
        if not self.spawned:
            raise InterviewError(ErrorCategory.PROVIDER, f"{self.name} session not started", retryable=False)
        if self._state is ChannelState.AWAITING:
            raise InterviewError(
                ErrorCategory.PROVIDER,
                f"{self.name} is still answering the previous message",
                retryable=False,
            )
        self._first_turn = False
        self._start_turn(message)

    async def receive(self) -> ProviderResponse:
        if self._state is not ChannelState.AWAITING or self._pending is None:
            raise InterviewError(ErrorCategory.PROVIDER, f"nothing sent to {self.name}", retryable=False)

        timeout = self.config.timeout
        try:
            output = await asyncio.wait_for(self._pending, timeout=timeout)
            response = self.extract_response(output)
        except asyncio.TimeoutError as exc:
            self._rollback()
            raise InterviewError(
                ErrorCategory.TIMEOUT, f"{self.name} did not answer within {timeout}s", cause=exc
            )
        except BaseException:
            self._rollback()
            raise

        self._transcript.append(("assistant", response.content))
        self._pending = None
        self._state = ChannelState.IDLE
        return response

    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def cleanup(self) -> None:
        pending = self._pending
        if pending is not None and not pending.done():
            pending.cancel()
            await asyncio.gather(pending, return_exceptions=True)
        if self._process is not None:
            await self._terminate(self._process)
        self._pending = None
        self._process = None
        self._state = ChannelState.IDLE
        self._system_prompt = None
        self._transcript = []

    def _start_turn(self, message: str) -> None:
        self._transcript.append(("user", message))
        self._state = ChannelState.AWAITING
        self._pending = asyncio.create_task(self._run_turn(self.build_prompt()))

    def _rollback(self) -> None:
        # Forget the failed turn so the same message can be sent again
        if self._transcript and self._transcript[-1][0] == "user":
            self._transcript.pop()
        self._pending = None
        self._state = ChannelState.IDLE
        if self._first_turn:
            self._system_prompt = None
            self._first_turn = False

    async def _run_turn(self, prompt: str) -> str:
        cmd = self.build_command(prompt)
        env = {**os.environ, **self.config.env}
        logger.debug("Running %s (%d prompt chars)", cmd[0], len(prompt))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if self.prompt_on_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as exc:
            raise InterviewError(
                ErrorCategory.PROVIDER,
                f"{self.command} command not found. Ensure it is installed and in PATH.",
                cause=exc,
                retryable=False,
            )

        self._process = process
        try:
            stdout, stderr = await process.communicate(
                prompt.encode("utf-8") if self.prompt_on_stdin else None
            )
        except asyncio.CancelledError:
            await self._terminate(process)
            raise
        except BrokenPipeError as exc:
            raise InterviewError(ErrorCategory.PROCESS, f"{self.command} closed its input", cause=exc)
        finally:
            self._process = None

        if process.returncode != 0:
            error_msg = stderr.decode("utf-8", errors="replace").strip() or "Unknown error"
            raise InterviewError(
                ErrorCategory.PROCESS,
                f"{self.command} failed with exit code {process.returncode}: {error_msg[:500]}",
            )
        return stdout.decode("utf-8", errors="replace")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.grace_period)
        except asyncio.TimeoutError:
            logger.warning("%s ignored SIGTERM, killing it", self.command)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
