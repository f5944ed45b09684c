"""Reference documents passed to the interview with ``--context``.

Files are read up front and folded into the system prompt as one
"Reference Documents" section. Only text files are accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 1024 * 1024

SUPPORTED_EXTENSIONS = frozenset(
    {
        ".md", ".markdown", ".txt", ".text", ".rst",
        ".json", ".yaml", ".yml", ".toml", ".ini", ".conf", ".cfg", ".xml", ".csv",
        ".py", ".js", ".jsx", ".ts", ".tsx", ".rb", ".go", ".rs", ".java",
        ".html", ".css", ".scss", ".less",
        ".sh", ".bash", ".zsh", ".sql", ".graphql", ".gql",
        ".env", ".example",
    }
)
# Dotfiles without an extension that are known to be text
SUPPORTED_DOTFILES = frozenset({".env", ".gitignore", ".dockerignore", ".eslintrc", ".prettierrc"})


@dataclass
class ContextFile:
    path: str
    absolute_path: Path
    content: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and self.content is not None


@dataclass
class ContextLoadResult:
    files: List[ContextFile] = field(default_factory=list)
    combined_content: str = ""

    @property
    def successful(self) -> List[ContextFile]:
        return [f for f in self.files if f.success]

    @property
    def failed(self) -> List[ContextFile]:
        return [f for f in self.files if not f.success]

    @property
    def all_successful(self) -> bool:
        return not self.failed


def is_supported_file(path: Path) -> bool:
    name = path.name.lower()
    suffix = path.suffix.lower()
    if name in SUPPORTED_DOTFILES:
        return True
    if not suffix:
        # README, LICENSE and friends
        return True
    return suffix in SUPPORTED_EXTENSIONS


def resolve_path(path: str, base_dir: Optional[Path] = None) -> Path:
    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return candidate
    return (base_dir or Path.cwd()) / candidate


def load_context_file(
    path: str,
    *,
    base_dir: Optional[Path] = None,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
) -> ContextFile:
    absolute = resolve_path(path, base_dir)
    result = ContextFile(path=path, absolute_path=absolute)

    if not absolute.is_file():
        result.error = f"File not found: {path}"
        return result
    try:
        size = absolute.stat().st_size
    except OSError as exc:
        result.error = f"Cannot read file stats: {path} - {exc}"
        return result
    if size > max_file_size:
        result.error = (
            f"File too large: {path} ({size / (1024 * 1024):.2f}MB exceeds "
            f"{max_file_size / (1024 * 1024):.2f}MB limit)"
        )
        return result
    if not is_supported_file(absolute):
        result.error = f"Unsupported file type: {path} ({absolute.suffix}). Only text files are supported."
        return result

    try:
        result.content = absolute.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        result.error = f"Failed to read file: {path} - {exc}"
    return result


def format_file_content(file: ContextFile) -> str:
    if not file.success:
        return ""
    lang = Path(file.path).suffix.lower().lstrip(".") or "text"
    return f"### File: {file.path}\n```{lang}\n{file.content}\n```"


def load_context_files(
    paths: Sequence[str],
    *,
    base_dir: Optional[Path] = None,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    continue_on_error: bool = True,
) -> ContextLoadResult:
    """Load every path; failures are collected, not raised."""
    result = ContextLoadResult()
    for path in paths:
        loaded = load_context_file(path, base_dir=base_dir, max_file_size=max_file_size)
        result.files.append(loaded)
        if not loaded.success:
            logger.warning("Skipping context file: %s", loaded.error)
            if not continue_on_error:
                break

    parts = [format_file_content(f) for f in result.successful]
    if parts:
        result.combined_content = "## Reference Documents\n\n" + "\n\n".join(parts)
    return result


def format_context_errors(failed: Sequence[ContextFile]) -> str:
    if not failed:
        return ""
    noun = "file" if len(failed) == 1 else "files"
    lines = "\n".join(f"  - {f.error}" for f in failed)
    return f"Failed to load {len(failed)} context {noun}:\n{lines}"
