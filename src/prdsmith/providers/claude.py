"""Claude Code CLI adapter (``claude -p --output-format stream-json``)."""

from __future__ import annotations

from typing import List

from ..interview.errors import ErrorCategory, InterviewError
from .base import ProviderResponse, SubprocessProvider, iter_json_lines


class ClaudeProvider(SubprocessProvider):
    name = "claude"
    display_name = "Claude Code"
    command = "claude"

    def build_command(self, prompt: str) -> List[str]:
        cmd = [self.command, "-p", "--output-format", "stream-json", "--verbose"]
        if self.config.model:
            cmd.extend(["--model", self.config.model])
        return [*cmd, *self.config.args]

    def extract_response(self, output: str) -> ProviderResponse:
        """Prefer the final ``result`` event; fall back to assistant text blocks."""
        texts = []
        for event in iter_json_lines(output):
            kind = event.get("type")
            if kind == "result":
                if event.get("is_error"):
                    raise InterviewError(
                        ErrorCategory.PROVIDER,
                        f"claude reported an error: {str(event.get('result', ''))[:500]}",
                    )
                if isinstance(event.get("result"), str):
                    return ProviderResponse(content=event["result"].strip(), structured=event)
            elif kind == "assistant":
                message = event.get("message") or {}
                for block in message.get("content") or []:
                    if isinstance(block, dict) and block.get("type") == "text":
                        texts.append(block.get("text", ""))
        if texts:
            return ProviderResponse(content="".join(texts).strip())
        return ProviderResponse(content=output.strip())
