"""GitHub Copilot CLI adapter (``copilot -p``)."""

from __future__ import annotations

import json
from typing import List

from .base import ProviderResponse, SubprocessProvider

_TEXT_FIELDS = ("result", "text", "suggestion", "content")


class CopilotProvider(SubprocessProvider):
    name = "copilot"
    display_name = "GitHub Copilot"
    command = "copilot"
    prompt_on_stdin = False

    def build_command(self, prompt: str) -> List[str]:
        cmd = [self.command, "-p", prompt]
        if self.config.model:
            cmd.extend(["--model", self.config.model])
        return [*cmd, *self.config.args]

    def extract_response(self, output: str) -> ProviderResponse:
        """Copilot prints plain text; JSON output is accepted when configured."""
        text = output.strip()
        if not text.startswith("{"):
            return ProviderResponse(content=text)
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return ProviderResponse(content=text)
        if isinstance(data, dict):
            for key in _TEXT_FIELDS:
                if isinstance(data.get(key), str):
                    return ProviderResponse(content=data[key].strip(), structured=data)
        return ProviderResponse(content=text)
