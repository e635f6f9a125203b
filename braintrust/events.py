"""Meeting progress events and the observers that consume them."""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape

logger = logging.getLogger(__name__)


@dataclass
class MeetingEvent:
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    ts: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return json.dumps({"ts": self.ts, "event": self.name, "payload": self.payload}, ensure_ascii=False)


class MeetingObserver(ABC):
    """Receives every event synchronously, in emission order."""

    @abstractmethod
    def on_event(self, event: MeetingEvent) -> None:
        ...


class NullObserver(MeetingObserver):
    def on_event(self, event: MeetingEvent) -> None:
        pass


class JsonlEventLog(MeetingObserver):
    """Append-only JSON-lines log, one object per event, flushed per line so viewers can tail it."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def on_event(self, event: MeetingEvent) -> None:
        with self._path.open("a", encoding="utf-8") as f:
            f.write(event.to_json() + "\n")


class ConsoleProgressObserver(MeetingObserver):
    """Human-readable progress lines on stderr, separate from the result output."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True, legacy_windows=False)

    def on_event(self, event: MeetingEvent) -> None:
        line = self._format(event)
        if line:
            self._console.print(line, highlight=False)

    @staticmethod
    def _format(event: MeetingEvent) -> str | None:
        # Payload text comes from models and the filesystem, never markup
        p = {key: _escape_markup(value) for key, value in event.payload.items()}
        rnd = p.get("round", 0) + 1
        match event.name:
            case "meeting_started":
                label = "Resuming" if p.get("resumed") else "Starting"
                return f"[bold]{label} meeting {p.get('meeting_id')}[/bold] ({', '.join(p.get('participants', []))})"
            case "round_started":
                return f"[cyan]Round {rnd}[/cyan] started"
            case "participant_tool_call":
                status = "ok" if p.get("ok") else p.get("error_code")
                return f"[dim]  {p.get('participant')} #{p.get('sequence')} {p.get('tool')} ({status})[/dim]"
            case "participant_retry":
                return f"[yellow]  {p.get('participant')} retrying in {p.get('delay_sec'):.1f}s[/yellow]"
            case "participant_completed":
                if p.get("status") == "success":
                    return (
                        f"  [green]✓[/green] {p.get('participant')} "
                        f"({p.get('duration_sec', 0):.1f}s, {p.get('tool_calls', 0)} tool calls)"
                    )
                return f"  [red]✗[/red] {p.get('participant')} failed ({p.get('error_class')})"
            case "round_completed":
                return f"[cyan]Round {rnd}[/cyan] complete: {len(p.get('succeeded', []))} ok, {len(p.get('failed', []))} failed"
            case "chair_deciding":
                return "[magenta]Chair deciding...[/magenta]"
            case "chair_verdict":
                if p.get("decision") == "continue":
                    return f"[magenta]Chair:[/magenta] CONTINUE: {p.get('follow_up')}"
                note = " (round limit reached)" if p.get("downgraded") else ""
                return f"[magenta]Chair:[/magenta] DONE{note}"
            case "chair_synthesizing":
                return "[magenta]Chair synthesizing...[/magenta]"
            case "meeting_completed":
                return f"[bold green]Meeting complete[/bold green] ({p.get('total_rounds')} rounds, {p.get('elapsed_sec', 0):.1f}s)"
            case "meeting_aborted":
                return f"[bold red]Meeting aborted[/bold red]: {p.get('error')}"
        return None


def _escape_markup(value: Any) -> Any:
    if isinstance(value, str):
        return escape(value)
    if isinstance(value, list):
        return [_escape_markup(v) for v in value]
    return value


class CompositeObserver(MeetingObserver):
    """Fan one event out to several observers; a failing observer is logged and skipped."""

    def __init__(self, observers: list[MeetingObserver]) -> None:
        self._observers = list(observers)

    def on_event(self, event: MeetingEvent) -> None:
        for observer in self._observers:
            try:
                observer.on_event(event)
            except Exception as exc:
                logger.warning("Observer %s failed on %s: %s", type(observer).__name__, event.name, exc)
