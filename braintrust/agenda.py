"""Agenda files: markdown body with optional YAML frontmatter."""

from dataclasses import dataclass
from pathlib import Path

import frontmatter


@dataclass
class AgendaFile:
    agenda: str
    context: str | None = None
    max_rounds: int | None = None


def parse_agenda_file(file_path: Path) -> AgendaFile:
    """Parse an agenda file.

    Recognized frontmatter keys: ``context`` (str) and ``max_rounds`` (int).
    Unknown keys are ignored.

    Raises:
        ValueError: If the body is empty or max_rounds is not a positive integer.
    """
    post = frontmatter.load(str(file_path))
    agenda = post.content.strip()
    if not agenda:
        raise ValueError(f"Agenda file has no body: {file_path}")

    metadata = dict(post.metadata)
    max_rounds = metadata.get("max_rounds")
    if max_rounds is not None:
        try:
            max_rounds = int(max_rounds)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"max_rounds must be an integer, got {max_rounds!r}") from exc
        if max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {max_rounds}")

    context = metadata.get("context")
    return AgendaFile(
        agenda=agenda,
        context=str(context).strip() if context else None,
        max_rounds=max_rounds,
    )
