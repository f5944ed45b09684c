"""Cursor agent CLI adapter (``agent -p --output-format json``)."""

from __future__ import annotations

import json
from typing import List

from ..interview.errors import ErrorCategory, InterviewError
from .base import ProviderResponse, SubprocessProvider, iter_json_lines


class CursorProvider(SubprocessProvider):
    name = "cursor"
    display_name = "Cursor Agent"
    command = "agent"
    prompt_on_stdin = False

    def build_command(self, prompt: str) -> List[str]:
        cmd = [self.command, "-p", "--output-format", "json"]
        if self.config.model:
            cmd.extend(["--model", self.config.model])
        return [*cmd, *self.config.args, prompt]

    def extract_response(self, output: str) -> ProviderResponse:
        events = list(iter_json_lines(output))
        if not events:
            # Pretty-printed single document
            try:
                document = json.loads(output)
            except json.JSONDecodeError:
                return ProviderResponse(content=output.strip())
            events = [document] if isinstance(document, dict) else []

        for event in reversed(events):
            if event.get("type") == "result" or "result" in event:
                if event.get("is_error"):
                    raise InterviewError(
                        ErrorCategory.PROVIDER, f"cursor reported an error: {event.get('result')}"
                    )
                return ProviderResponse(content=str(event.get("result", "")).strip(), structured=event)
        return ProviderResponse(content=output.strip())
