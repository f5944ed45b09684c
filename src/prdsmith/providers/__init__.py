"""AI provider adapters.

One adapter per supported CLI, all implementing ``AIProvider``:
- ClaudeProvider: Claude Code (``claude``)
- OpenCodeProvider: OpenCode (``opencode``), CLI or server mode
- CodexProvider: OpenAI Codex (``codex``)
- CursorProvider: Cursor agent (``agent``)
- CopilotProvider: GitHub Copilot (``copilot``)
"""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional

from ..interview.state import ProviderName
from .base import AIProvider, ChannelState, ProviderConfig, ProviderResponse, SubprocessProvider
from .claude import ClaudeProvider
from .codex import CodexProvider
from .copilot import CopilotProvider
from .cursor import CursorProvider
from .opencode import OpenCodeProvider

PROVIDER_FACTORIES: Dict[ProviderName, Callable[[Optional[ProviderConfig]], AIProvider]] = {
    ProviderName.CLAUDE: ClaudeProvider,
    ProviderName.OPENCODE: OpenCodeProvider,
    ProviderName.CODEX: CodexProvider,
    ProviderName.CURSOR: CursorProvider,
    ProviderName.COPILOT: CopilotProvider,
}


def create_provider(name: ProviderName | str, config: Optional[ProviderConfig] = None) -> AIProvider:
    """Build the adapter for ``name``.

    Raises:
        ValueError: for an unknown provider name.
    """
    try:
        key = ProviderName(name)
    except ValueError:
        valid = ", ".join(p.value for p in ProviderName)
        raise ValueError(f"unknown provider {name!r} (expected one of: {valid})") from None
    return PROVIDER_FACTORIES[key](config)


async def detect_available_providers() -> List[ProviderName]:
    """Return the providers whose CLI is installed, in preference order."""
    providers = [create_provider(name) for name in PROVIDER_FACTORIES]
    found = await asyncio.gather(*(p.is_available() for p in providers))
    return [ProviderName(p.name) for p, ok in zip(providers, found) if ok]


__all__ = [
    "AIProvider",
    "ChannelState",
    "ClaudeProvider",
    "CodexProvider",
    "CopilotProvider",
    "CursorProvider",
    "OpenCodeProvider",
    "PROVIDER_FACTORIES",
    "ProviderConfig",
    "ProviderResponse",
    "SubprocessProvider",
    "create_provider",
    "detect_available_providers",
]
