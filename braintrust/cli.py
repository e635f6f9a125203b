"""Click CLI: config loading, panel selection, meeting run, and output."""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config
from braintrust.agenda import parse_agenda_file
from braintrust.chair import SynthesisError
from braintrust.events import ConsoleProgressObserver
from braintrust.healthcheck import run_health_checks
from braintrust.models import MeetingResult
from braintrust.orchestrator import MeetingOrchestrator
from braintrust.output import (
    print_aborted,
    print_round_summary,
    print_sessions,
    print_synthesis,
    result_to_json,
)
from braintrust.providers.anthropic import AnthropicProvider
from braintrust.providers.base import AIProvider
from braintrust.providers.gemini import GeminiProvider
from braintrust.providers.openai_provider import OpenAIProvider
from braintrust.rounds import MeetingAbortError, Participant
from braintrust.session import SessionStore

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)
err_console = Console(stderr=True, legacy_windows=False)

EXIT_ABORTED = 2

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "google": GeminiProvider,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
    )


def _build_providers(config: AppConfig, names: list[str]) -> dict[str, AIProvider]:
    """Build the named providers that have API keys. Returns dict keyed by name."""
    providers: dict[str, AIProvider] = {}
    for name in dict.fromkeys(names):
        model_cfg = config.models.get(name)
        if model_cfg is None:
            logger.warning("Model '%s' is not configured, skipping", name)
            continue
        if name not in config.available_providers:
            continue
        provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
        if provider_cls is None:
            logger.warning("Model '%s' uses unknown sdk '%s', skipping", name, model_cfg.sdk)
            continue
        try:
            providers[name] = provider_cls(model_cfg)
        except Exception as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


def _check_and_filter_providers(providers: dict[str, AIProvider]) -> dict[str, AIProvider]:
    """Run health checks, print results, and ask what to do on failures.

    Returns the working subset. Exits if the user declines to continue or
    no provider passes.
    """
    err_console.print("\n[bold]Checking providers...[/bold]")
    results: dict[str, tuple[bool, str]] = asyncio.run(run_health_checks(providers))

    failed_names: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            err_console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            err_console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed_names.append(name)

    if not failed_names:
        return providers

    working = {n: p for n, p in providers.items() if n not in failed_names}
    if not working:
        err_console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)

    err_console.print(f"\n[yellow]{len(failed_names)} provider(s) failed:[/yellow] {', '.join(failed_names)}")
    err_console.print(f"Working providers: {', '.join(sorted(working))}")
    if not click.confirm("Continue with working providers only?", default=True, err=True):
        sys.exit(0)
    return working


def _print_result(result: MeetingResult, as_json: bool, store: SessionStore) -> None:
    if as_json:
        click.echo(result_to_json(result))
        return
    for rnd in result.rounds:
        print_round_summary(rnd)
    print_synthesis(result)
    console.print(f"\n[dim]Session: {store.base_dir / result.meeting_id}[/dim]")


@click.command()
@click.option("--agenda", default=None, help="Agenda text for the meeting")
@click.option("--file", "agenda_file", type=click.Path(exists=True, dir_okay=False),
              help="Read agenda from a .md file (frontmatter: max_rounds, context)")
@click.option("--context", default=None, help="Extra context passed to every participant")
@click.option("--project-path", default=".", type=click.Path(exists=True, file_okay=False),
              help="Repository root the participants may inspect (default: cwd)")
@click.option("--max-rounds", default=None, type=click.IntRange(min=1),
              help="Maximum deliberation rounds (default: from config)")
@click.option("--chair", default=None, help="Which model chairs the meeting (default: from config)")
@click.option("--models", default=None, help="Comma-separated participant list, overrides the panel")
@click.option("--resume", "resume_id", default=None, help="Resume a stored meeting by id")
@click.option("--list-sessions", is_flag=True, default=False, help="List stored meetings and exit")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the result record as JSON")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    agenda: str | None,
    agenda_file: str | None,
    context: str | None,
    project_path: str,
    max_rounds: int | None,
    chair: str | None,
    models: str | None,
    resume_id: str | None,
    list_sessions: bool,
    as_json: bool,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Braintrust -- multi-model deliberation over a codebase.

    \b
    Examples:
      braintrust --agenda "Evaluate the error-handling strategy"
      braintrust --agenda "Is the cache layer safe?" --max-rounds 2 --models openai,gemini
      braintrust --file agenda.md --project-path ../service
      braintrust --list-sessions
      braintrust --resume 20260102-150405-1a2b3c4d
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        err_console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    store = SessionStore(config.defaults.sessions_dir)

    if list_sessions:
        sessions = store.list_meetings()
        if as_json:
            click.echo(json.dumps(sessions, indent=2, ensure_ascii=False))
        else:
            print_sessions(sessions)
        return

    # CLI flags win; frontmatter only fills in when a flag is not set
    agenda_text = agenda
    if agenda_file:
        try:
            parsed = parse_agenda_file(Path(agenda_file))
        except ValueError as exc:
            err_console.print(f"[bold red]Error:[/bold red] {exc}")
            sys.exit(1)
        agenda_text = agenda_text or parsed.agenda
        context = context or parsed.context
        max_rounds = max_rounds or parsed.max_rounds

    if not resume_id and not (agenda_text and agenda_text.strip()):
        err_console.print("[bold red]Error:[/bold red] Provide --agenda, --file, or --resume.")
        sys.exit(1)

    panel_names = [m.strip() for m in models.split(",") if m.strip()] if models else list(config.defaults.panel)
    chair_name = chair or config.defaults.chair

    providers = _build_providers(config, [*panel_names, chair_name])
    if not providers:
        err_console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    if not skip_health_check:
        providers = _check_and_filter_providers(providers)

    if chair_name not in providers:
        err_console.print(f"[bold red]Error:[/bold red] Chair '{chair_name}' is not available.")
        sys.exit(1)

    participants = [Participant(name=n, provider=providers[n]) for n in panel_names if n in providers]
    if not participants:
        err_console.print("[bold red]Error:[/bold red] No participants available. Check API keys or --models.")
        sys.exit(1)

    try:
        orchestrator = MeetingOrchestrator.from_config(
            config,
            participants,
            providers[chair_name],
            Path(project_path),
            store=store,
            observer=ConsoleProgressObserver(err_console),
            max_rounds=max_rounds,
        )
    except ValueError as exc:
        err_console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    try:
        result = asyncio.run(orchestrator.run(
            agenda=agenda_text or "",
            context=context,
            max_rounds=max_rounds,
            resume_id=resume_id,
        ))
    except MeetingAbortError as exc:
        if exc.result is not None:
            if as_json:
                click.echo(result_to_json(exc.result))
            else:
                print_aborted(exc.result)
        else:
            err_console.print(f"[bold red]ABORTED:[/bold red] {exc}")
        sys.exit(EXIT_ABORTED)
    except (SynthesisError, ValueError, FileNotFoundError) as exc:
        err_console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)

    _print_result(result, as_json, store)


if __name__ == "__main__":
    main()
