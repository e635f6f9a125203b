"""Fill prompt templates and render round history for the chair."""

import logging
from pathlib import Path

from config.config_loader import PromptsConfig
from braintrust.evidence.errors import NotFoundError, ToolError
from braintrust.evidence.toolkit import EvidenceToolkit
from braintrust.models import Decision, Meeting, Round

logger = logging.getLogger(__name__)

PROJECT_MEMORY_FILE = "CLAUDE.md"
PROJECT_RULES_GLOB = ".claude/rules/*.md"


def context_block(context: str | None) -> str:
    if not context or not context.strip():
        return ""
    return f"\n**Context:**\n{context.strip()}\n"


def load_project_memory(toolkit: EvidenceToolkit) -> str | None:
    """Project instructions from CLAUDE.md and .claude/rules/*.md, or None if there are none.

    Files are read through the toolkit, so the confinement rules, denylist and
    read window that bind participants bind this too.
    """
    sections: list[str] = []
    for rel in [PROJECT_MEMORY_FILE, *sorted(toolkit.find_files(PROJECT_RULES_GLOB))]:
        try:
            lines = toolkit.read_file(rel)
        except NotFoundError:
            continue
        except ToolError as exc:
            logger.warning("Skipping project memory file %s: %s", rel, exc.message)
            continue
        body = "\n".join(text for _number, text in lines).strip()
        if body:
            sections.append(f"### {rel}\n{body}")
    return "\n\n".join(sections) or None


def participant_system(prompts: PromptsConfig, repo_root: Path, project_memory: str | None = None) -> str:
    system = prompts.participant_system.format(repo_root=str(repo_root))
    if project_memory:
        system += f"\n\n## Project memory\n{project_memory}"
    return system


def participant_prompt(prompts: PromptsConfig, meeting: Meeting, round_index: int, question: str) -> str:
    """Round 0 gets the agenda framing, later rounds the chair's follow-up."""
    if round_index == 0:
        return prompts.participant_initial.format(
            agenda=meeting.agenda,
            context_block=context_block(meeting.context),
        )
    return prompts.participant_followup.format(
        agenda=meeting.agenda,
        context_block=context_block(meeting.context),
        question=question,
    )


def format_history(rounds: list[Round]) -> str:
    """Format all rounds into one transcript, failed participants included."""
    parts: list[str] = []
    for rnd in rounds:
        parts.append(f"### Round {rnd.index + 1}")
        parts.append(f"**Question:** {rnd.question}")
        for name, outcome in rnd.outcomes.items():
            if outcome.succeeded:
                parts.append(f"#### {name} ({outcome.model})\n{outcome.text}")
            else:
                failure = outcome.failure
                reason = f"{failure.error_class}: {failure.message}" if failure else "unknown error"
                parts.append(f"#### {name} ({outcome.model}) [FAILED]\n{reason}")
        if rnd.verdict is not None:
            if rnd.verdict.decision is Decision.CONTINUE:
                parts.append(f"**Chair:** CONTINUE: {rnd.verdict.follow_up}")
            else:
                parts.append("**Chair:** DONE")
        parts.append("")
    return "\n\n".join(parts)
