"""Rich console rendering and JSON result surface for meeting results."""

import json
import logging
from dataclasses import asdict
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from braintrust.models import MeetingResult, MeetingStatus, ParticipantOutcome, Round

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _preview(text: str, words: int = 50) -> str:
    """Return the first N words of a text."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _outcome_panel(outcome: ParticipantOutcome) -> Panel:
    if outcome.succeeded:
        body: str | Text = _preview(outcome.text)
        border = "dim"
        title = f"[bold]{outcome.participant}[/bold] ({outcome.model})"
    else:
        failure = outcome.failure
        body = Text(f"{failure.error_class}: {failure.message}" if failure else "failed", style="red")
        border = "red"
        title = f"[bold red]{outcome.participant}[/bold red] ({outcome.model}) FAILED"
    subtitle = f"{outcome.duration_sec:.1f}s | {len(outcome.invocations)} tool calls"
    if outcome.attempts > 1:
        subtitle += f" | {outcome.attempts} attempts"
    return Panel(body, title=title, subtitle=subtitle, border_style=border)


def print_round_summary(rnd: Round) -> None:
    """Print a brief summary of one round to the console."""
    console.print(Rule(f"[bold cyan]Round {rnd.index + 1}[/bold cyan]"))
    console.print(Text(f"Question: {_preview(rnd.question, 40)}", style="italic"))
    for outcome in rnd.outcomes.values():
        console.print(_outcome_panel(outcome))
    if rnd.verdict is not None:
        verdict = rnd.verdict
        if verdict.follow_up:
            label = f"CONTINUE: {verdict.follow_up}"
        elif verdict.downgraded:
            label = "DONE (round limit reached)"
        elif verdict.error:
            label = f"DONE (forced: {verdict.error})"
        else:
            label = "DONE"
        console.print(Text(f"Chair: {label}", style="magenta"))


def print_synthesis(result: MeetingResult) -> None:
    """Print the final synthesis using Rich markdown."""
    console.print(Rule("[bold green]Braintrust Synthesis[/bold green]"))
    console.print(
        Text(
            f"Meeting: {result.meeting_id} | "
            f"Duration: {result.elapsed_sec:.1f}s | "
            f"Rounds: {result.total_rounds}",
            style="dim",
        )
    )
    if result.failed_participants:
        names = ", ".join(sorted(result.failed_participants))
        console.print(Text(f"Participants with failures: {names}", style="yellow"))
    console.print(Markdown(result.synthesis))


def print_aborted(result: MeetingResult) -> None:
    """Distinct terminal panel for a meeting aborted by majority failure."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Participant")
    table.add_column("Error")
    table.add_column("Detail", overflow="fold")
    for name, failure in sorted(result.failed_participants.items()):
        table.add_row(name, failure.error_class, failure.message)
    console.print(
        Panel(
            table,
            title=f"[bold red]ABORTED[/bold red] meeting {result.meeting_id}",
            subtitle=result.error or "",
            border_style="red",
        )
    )


def print_sessions(sessions: list[dict[str, Any]]) -> None:
    """Table of stored meetings, newest first."""
    if not sessions:
        console.print("No sessions found.")
        return
    table = Table(title="Braintrust sessions", header_style="bold")
    table.add_column("ID")
    table.add_column("Created")
    table.add_column("Status")
    table.add_column("Rounds", justify="right")
    table.add_column("Agenda", overflow="ellipsis", max_width=60)
    for meta in sessions:
        created = meta.get("created_at")
        created_str = datetime.fromtimestamp(created).strftime("%Y-%m-%d %H:%M") if created else "?"
        table.add_row(
            str(meta.get("id", "?")),
            created_str,
            str(meta.get("status", "?")),
            str(meta.get("rounds", "?")),
            _preview(str(meta.get("agenda", "")), 12),
        )
    console.print(table)


def result_to_dict(result: MeetingResult) -> dict[str, Any]:
    """The structured result record: id, status, synthesis, transcript, totals."""
    data = asdict(result)
    data["status"] = result.status.value
    data["aborted"] = result.status is MeetingStatus.ABORTED
    return data


def result_to_json(result: MeetingResult) -> str:
    return json.dumps(result_to_dict(result), indent=2, ensure_ascii=False)
