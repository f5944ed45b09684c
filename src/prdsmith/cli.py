"""Command-line entry point.

Usage:
    # New interview
    prdsmith "add user authentication"

    # Different provider, with reference documents
    prdsmith "billing exports" --provider codex --context docs/billing.md

    # Continue an interrupted interview
    prdsmith --resume
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .console import (
    DONE_COMMAND,
    ask_answer,
    render_ai_text,
    render_completion,
    render_error,
    render_question,
    render_status,
    render_welcome,
)
from .context import format_context_errors, load_context_files
from .exploration import get_quick_summary
from .interview.errors import ErrorCategory, InterviewError, describe_error, format_error_for_user
from .interview.orchestrator import (
    EventType,
    InterviewOrchestrator,
    OrchestratorEvent,
    SessionStatus,
    TurnResult,
    create_orchestrator,
    create_orchestrator_from_state,
)
from .interview.state import STATE_DIRNAME, InterviewState, ProviderName, StateStore, create_state
from .prd import PRDValidationError, write_prd
from .providers import ProviderConfig, create_provider, detect_available_providers

logger = logging.getLogger(__name__)

# PRD requests per session before giving up on the provider
MAX_PRD_ATTEMPTS = 3

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130

LOG_FILENAME = "prdsmith.log"
LOG_MAX_BYTES = 1024 * 1024
LOG_BACKUPS = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="prdsmith",
        description="Interview-driven PRD generation using your AI coding CLI.",
    )
    parser.add_argument("feature", nargs="?", help="Feature to write a PRD for")
    parser.add_argument("--resume", action="store_true", help="Continue the saved interview")
    parser.add_argument("--fresh", action="store_true", help="Discard any saved interview first")
    parser.add_argument(
        "--first-principles",
        action="store_true",
        help="Challenge the premise before discussing solutions",
    )
    parser.add_argument(
        "--context",
        nargs="+",
        default=[],
        metavar="FILE",
        help="Reference documents to include",
    )
    parser.add_argument(
        "--provider",
        choices=[p.value for p in ProviderName],
        help="AI provider (default from prdsmith/config.yaml)",
    )
    parser.add_argument("--model", default="", help="Model to ask the provider for")
    parser.add_argument("--server-url", help="opencode serve endpoint (opencode only)")
    parser.add_argument("--timeout", type=float, help="Seconds to wait for each reply")
    parser.add_argument("--base-dir", default=".", help="Project directory (default: current)")
    parser.add_argument("--output", help="Directory for the PRD files")
    parser.add_argument("--list-providers", action="store_true", help="Show installed providers and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(verbose: bool, log_file: Optional[Path] = None) -> None:
    """Send log records to ``log_file`` and, with ``verbose``, to stderr.

    Records carry raw provider output, so the terminal only sees them when
    asked for; the interview itself renders cause-free messages.
    """
    handlers: List[logging.Handler] = []
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8", delay=True
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
        handlers.append(file_handler)
    if verbose:
        handlers.append(RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=True))
    if not handlers:
        handlers.append(logging.NullHandler())
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


async def list_providers(console: Console) -> int:
    available = await detect_available_providers()
    for name in ProviderName:
        mark = "[green]installed[/]" if name in available else "[dim]not found[/]"
        console.print(f"{name.value:<10} {mark}")
    return EXIT_OK if available else EXIT_ERROR


def _select_state(
    args: argparse.Namespace, app_config: AppConfig, saved: Optional[InterviewState], console: Console
) -> Optional[InterviewState]:
    if args.resume:
        if saved is None:
            render_error(console, "There is no saved interview to resume.")
        return saved
    if not args.feature:
        render_error(console, "Describe the feature to interview about, or use --resume.")
        return None
    if saved is not None:
        render_error(
            console,
            f"An unfinished interview about \"{saved.feature}\" exists.\n"
            "Run `prdsmith --resume` to continue it or add --fresh to discard it.",
        )
        return None
    provider = args.provider or app_config.default_provider
    return create_state(
        args.feature,
        provider,
        first_principles=args.first_principles,
        context_files=args.context,
    )


async def _interview_loop(
    orchestrator: InterviewOrchestrator, result: TurnResult, console: Console
) -> TurnResult:
    prd_requests = 0
    while result.status is not SessionStatus.COMPLETE:
        render_ai_text(console, result.content)

        if result.status is SessionStatus.GENERATING:
            if prd_requests >= MAX_PRD_ATTEMPTS:
                raise InterviewError(
                    ErrorCategory.PROVIDER,
                    f"no valid PRD after {prd_requests} requests",
                    retryable=False,
                )
            prd_requests += 1
            with console.status("Writing the PRD..."):
                result = await orchestrator.request_prd()
            continue

        if result.question is not None:
            render_question(console, result.question)
        answer = ask_answer(console, result.question)
        if answer == DONE_COMMAND:
            prd_requests += 1
            with console.status("Writing the PRD..."):
                result = await orchestrator.request_prd()
            continue
        with console.status("Thinking..."):
            result = await orchestrator.submit_answer(answer)
    return result


async def run_interview(args: argparse.Namespace, console: Console) -> int:
    base_dir = Path(args.base_dir)
    try:
        app_config = load_config(base_dir)
    except ConfigError as exc:
        render_error(console, f"Invalid configuration: {exc}")
        return EXIT_USAGE

    store = StateStore(base_dir)
    if args.fresh and store.clear():
        console.print("[dim]Discarded the saved interview.[/]")
    try:
        saved = store.load()
    except InterviewError as err:
        logger.error(describe_error(err))
        render_error(console, format_error_for_user(err))
        return EXIT_ERROR

    state = _select_state(args, app_config, saved, console)
    if state is None:
        return EXIT_USAGE
    resumed = state is saved

    context = load_context_files(state.context_files, base_dir=base_dir)
    if context.failed:
        console.print(f"[yellow]{format_context_errors(context.failed)}[/]")

    provider = create_provider(
        state.provider,
        ProviderConfig(
            timeout=args.timeout or app_config.response_timeout,
            model=args.model,
            server_url=args.server_url,
        ),
    )
    if not await provider.is_available():
        render_error(
            console,
            f"{provider.display_name} CLI (`{provider.command}`) was not found in PATH.\n"
            "Install it or pick another provider with --provider.",
        )
        return EXIT_ERROR

    policy = app_config.retry.to_policy()
    try:
        project_summary = await asyncio.to_thread(get_quick_summary, base_dir)
    except OSError as exc:
        logger.warning("Could not look around %s: %s", base_dir, exc)
        project_summary = None
    if resumed:
        orchestrator = create_orchestrator_from_state(
            state,
            provider,
            store=store,
            context_content=context.combined_content,
            project_summary=project_summary,
            policy=policy,
        )
    else:
        orchestrator = create_orchestrator(
            provider,
            state,
            store,
            context_content=context.combined_content,
            project_summary=project_summary,
            policy=policy,
        )

    def on_event(event: OrchestratorEvent) -> None:
        if event.type is EventType.PHASE_CHANGED:
            render_status(console, event.payload["status"])

    orchestrator.subscribe(on_event)
    render_welcome(console, state.feature, provider.display_name, resumed=resumed)

    try:
        with console.status("Waiting for the assistant..."):
            result = await (orchestrator.resume() if resumed else orchestrator.start())
        result = await _interview_loop(orchestrator, result, console)

        completion = result.completion
        output_dir = Path(args.output) if args.output else base_dir / app_config.output_directory
        files = write_prd(completion.prd, completion.slug, output_dir)
        await orchestrator.finalize()
        render_completion(console, files)
        return EXIT_OK
    except InterviewError as err:
        logger.error(describe_error(err))
        render_error(console, format_error_for_user(err))
        return EXIT_CANCELLED if err.category is ErrorCategory.USER_CANCELLED else EXIT_ERROR
    except PRDValidationError as exc:
        render_error(console, f"The PRD could not be written: {exc}\nRun `prdsmith --resume` to try again.")
        return EXIT_ERROR
    finally:
        await orchestrator.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, Path(args.base_dir) / STATE_DIRNAME / LOG_FILENAME)
    console = Console()

    try:
        if args.list_providers:
            return asyncio.run(list_providers(console))
        return asyncio.run(run_interview(args, console))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interview cancelled. Run `prdsmith --resume` to continue.[/]")
        return EXIT_CANCELLED


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
