"""Terminal rendering and answer collection (rich)."""

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from .interview.orchestrator import SessionStatus
from .interview.prompts import format_choice_answer
from .models import StructuredQuestion
from .prd import PRDFiles

DONE_COMMAND = "/done"
HEADER_MAX_LENGTH = 12

_STATUS_STYLES = {
    SessionStatus.EXPLORING: ("Exploring", "cyan", "Reading the codebase and your reference material"),
    SessionStatus.QUESTIONING: ("Interview", "magenta", "Answer the questions; type /done to write the PRD"),
    SessionStatus.GENERATING: ("Writing PRD", "yellow", "Turning the interview into a PRD"),
    SessionStatus.COMPLETE: ("Done", "green", "PRD ready"),
}


def render_welcome(console: Console, feature: str, provider: str, *, resumed: bool = False) -> None:
    title = "Resuming interview" if resumed else "prdsmith"
    body = Text.assemble(("Feature: ", "bold"), feature, "\n", ("Provider: ", "bold"), provider)
    console.print(Panel(body, title=title, border_style="blue"))


def render_status(console: Console, status: SessionStatus) -> None:
    if status not in _STATUS_STYLES:
        return
    label, style, hint = _STATUS_STYLES[status]
    console.rule(f"[bold {style}]{label}[/]")
    console.print(f"[dim]{hint}[/]")


def render_ai_text(console: Console, text: str) -> None:
    if text.strip():
        console.print(Panel(Markdown(text), border_style="dim"))


def format_header(header: str) -> str:
    header = header.strip()
    if len(header) > HEADER_MAX_LENGTH:
        header = header[: HEADER_MAX_LENGTH - 1] + "…"
    return header


def render_question(console: Console, question: StructuredQuestion) -> None:
    title = format_header(question.header) or None
    if question.is_free_text:
        console.print(Panel(Text(question.question, style="bold"), title=title, border_style="magenta"))
        return

    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(justify="right", style="bold cyan")
    table.add_column()
    for idx, option in enumerate(question.options, 1):
        label = Text(option.label, style="bold")
        if option.description:
            label.append(f"  {option.description}", style="dim")
        table.add_row(str(idx), label)
    table.add_row(str(len(question.options) + 1), Text("Other (type your own answer)", style="italic"))

    hint = "Pick one or more, e.g. 1,3" if question.multi_select else "Pick one"
    console.print(
        Panel(_question_body(question, table, hint), title=title, border_style="magenta")
    )


def _question_body(question: StructuredQuestion, table: Table, hint: str) -> Table:
    grid = Table.grid(padding=(1, 0))
    grid.add_row(Text(question.question, style="bold"))
    grid.add_row(table)
    grid.add_row(Text(hint, style="dim"))
    return grid


def parse_selection(raw: str, question: StructuredQuestion) -> Optional[str]:
    """Turn what the user typed into an answer string.

    Numbers pick options (comma separated for multi-select); the number after
    the last option, or any text that is not a number list, is taken as a
    free-text "Other" answer. Returns None for an invalid selection.
    """
    raw = raw.strip()
    if not raw:
        return None
    if question.is_free_text:
        return raw

    tokens = [t.strip() for t in raw.replace(" ", ",").split(",") if t.strip()]
    if not all(t.isdigit() for t in tokens):
        return format_choice_answer([], raw)

    other_index = len(question.options) + 1
    picks = []
    for token in tokens:
        number = int(token)
        if number < 1 or number > other_index:
            return None
        if number not in picks:
            picks.append(number)
    if len(picks) > 1 and not question.multi_select:
        return None
    if other_index in picks:
        return None
    return format_choice_answer([question.options[n - 1].label for n in picks])


def ask_answer(console: Console, question: Optional[StructuredQuestion]) -> str:
    """Prompt until the user gives a usable answer or ``/done``."""
    while True:
        raw = Prompt.ask("[bold]>[/]", console=console).strip()
        if raw.lower() == DONE_COMMAND:
            return DONE_COMMAND
        if question is None:
            if raw:
                return raw
            continue

        if not question.is_free_text and raw.isdigit() and int(raw) == len(question.options) + 1:
            other = Prompt.ask("Your answer", console=console).strip()
            if other:
                return format_choice_answer([], other)
            continue

        answer = parse_selection(raw, question)
        if answer is not None:
            return answer
        console.print("[red]Invalid selection, try again.[/]")


def render_error(console: Console, message: str) -> None:
    console.print(Panel(message, title="Error", border_style="red"))


def render_completion(console: Console, files: PRDFiles) -> None:
    body = Text.assemble(
        ("Markdown: ", "bold"), str(files.markdown_path), "\n", ("JSON:     ", "bold"), str(files.json_path)
    )
    console.print(Panel(body, title="PRD written", border_style="green"))
