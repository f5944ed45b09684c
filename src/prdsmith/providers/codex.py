"""OpenAI Codex CLI adapter (``codex exec --json``)."""

from __future__ import annotations

from typing import List

from ..interview.errors import ErrorCategory, InterviewError
from .base import ProviderResponse, SubprocessProvider, iter_json_lines


class CodexProvider(SubprocessProvider):
    name = "codex"
    display_name = "OpenAI Codex"
    command = "codex"

    def build_command(self, prompt: str) -> List[str]:
        cmd = [self.command, "exec", "--json", "--skip-git-repo-check"]
        if self.config.model:
            cmd.extend(["--model", self.config.model])
        # "-" makes codex read the prompt from stdin
        return [*cmd, *self.config.args, "-"]

    def extract_response(self, output: str) -> ProviderResponse:
        messages = []
        for event in iter_json_lines(output):
            kind = event.get("type")
            if kind in ("error", "turn.failed"):
                error = event.get("error")
                detail = error.get("message") if isinstance(error, dict) else event.get("message")
                raise InterviewError(ErrorCategory.PROVIDER, f"codex reported an error: {detail}")
            if kind == "item.completed":
                item = event.get("item") or {}
                if item.get("type") == "agent_message" and item.get("text"):
                    messages.append(item["text"])
        if messages:
            return ProviderResponse(content="\n\n".join(messages).strip())
        return ProviderResponse(content=output.strip())
