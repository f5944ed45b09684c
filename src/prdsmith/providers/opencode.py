"""OpenCode adapter.

Runs ``opencode run --format json`` per turn, or posts to a running
``opencode serve`` instance when ``server_url`` is configured.
"""

from __future__ import annotations

import asyncio
import json
from typing import List

import aiohttp

from ..interview.errors import ErrorCategory, InterviewError
from .base import ProviderResponse, SubprocessProvider, iter_json_lines


class OpenCodeProvider(SubprocessProvider):
    name = "opencode"
    display_name = "OpenCode"
    command = "opencode"

    def build_command(self, prompt: str) -> List[str]:
        cmd = [self.command, "run", "--format", "json"]
        if self.config.model:
            cmd.extend(["--model", self.config.model])
        return [*cmd, *self.config.args]

    async def is_available(self) -> bool:
        if self.config.server_url:
            return True
        return await super().is_available()

    async def _run_turn(self, prompt: str) -> str:
        if self.config.server_url:
            return await self._run_turn_via_server(prompt)
        return await super()._run_turn(prompt)

    async def _run_turn_via_server(self, prompt: str) -> str:
        payload = {"prompt": prompt, "format": "json"}
        if self.config.model:
            payload["model"] = self.config.model

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.config.server_url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.config.timeout),
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise InterviewError(
                            ErrorCategory.PROVIDER,
                            f"opencode server returned status {response.status}: {error_text[:500]}",
                            retryable=response.status >= 500 or response.status == 429,
                        )
                    return await response.text()
        except (asyncio.TimeoutError, aiohttp.ServerTimeoutError) as exc:
            raise InterviewError(
                ErrorCategory.TIMEOUT,
                f"opencode server at {self.config.server_url} did not answer within {self.config.timeout}s",
                cause=exc,
            )
        except aiohttp.ClientConnectionError as exc:
            raise InterviewError(
                ErrorCategory.NETWORK, f"could not reach opencode server at {self.config.server_url}", cause=exc
            )

    def extract_response(self, output: str) -> ProviderResponse:
        """Join the ``text`` parts of the JSON event stream."""
        parts = []
        for event in iter_json_lines(output):
            kind = event.get("type", "")
            part = event.get("part")
            if kind == "error":
                error = event.get("error")
                detail = error.get("message", error) if isinstance(error, dict) else error
                raise InterviewError(ErrorCategory.PROVIDER, f"opencode reported an error: {detail}")
            if kind == "text" and isinstance(part, dict):
                if part.get("text"):
                    parts.append(part["text"])
            elif isinstance(event.get("text"), str):
                parts.append(event["text"])
        if parts:
            return ProviderResponse(content="\n".join(parts).strip())

        # Server mode answers with one JSON document
        try:
            data = json.loads(output)
        except json.JSONDecodeError:
            return ProviderResponse(content=output.strip())
        if isinstance(data, dict):
            for key in ("text", "content"):
                if isinstance(data.get(key), str):
                    return ProviderResponse(content=data[key].strip(), structured=data)
            message = data.get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return ProviderResponse(content=message["content"].strip(), structured=data)
        return ProviderResponse(content=output.strip())
