"""Chair: per-round CONTINUE/DONE decision and the final synthesis."""

import logging
import re

from config.config_loader import PromptsConfig
from braintrust.models import ChairVerdict, Decision, FailureDetail, Meeting, Synthesis
from braintrust.prompts import context_block, format_history
from braintrust.providers.base import AIProvider
from braintrust.runner import ParticipantRunner

logger = logging.getLogger(__name__)

_EMPHASIS = "*`_"
_CONTINUE_RE = re.compile(r"^continue[\s*`_]*:(.*)$", re.IGNORECASE | re.DOTALL)
_DONE_RE = re.compile(r"^done\b", re.IGNORECASE)


class ChairFormatError(ValueError):
    """The chair's decision text matches neither CONTINUE: <question> nor DONE."""

    def __init__(self, raw_text: str, reason: str) -> None:
        self.raw_text = raw_text
        super().__init__(f"Unrecognized chair verdict ({reason}): {raw_text[:200]!r}")


class SynthesisError(RuntimeError):
    """The chair could not produce the final report."""

    def __init__(self, failure: FailureDetail) -> None:
        self.failure = failure
        super().__init__(f"Chair synthesis failed: {failure.message}")


def _unwrap(text: str) -> str:
    """Strip whitespace and one layer of surrounding markdown emphasis."""
    text = text.strip()
    body = text.lstrip(_EMPHASIS)
    marker = text[: len(text) - len(body)]
    if marker and body.endswith(marker[::-1]):
        body = body[: -len(marker)]
    return body.strip()


def parse_verdict(text: str, round_index: int) -> ChairVerdict:
    """Parse the chair's decision text.

    Accepted shapes, case-insensitive, with surrounding whitespace and
    markdown emphasis ignored:

    - ``CONTINUE: <question>`` (spaces allowed before the colon, the question
      may span lines and must not be empty)
    - ``DONE`` as the first word, anything after it ignored

    Raises:
        ChairFormatError: For any other shape.
    """
    cleaned = _unwrap(text)
    match = _CONTINUE_RE.match(cleaned)
    if match:
        follow_up = match.group(1).strip().lstrip(_EMPHASIS).strip()
        if not follow_up:
            raise ChairFormatError(text, "CONTINUE without a question")
        return ChairVerdict(
            decision=Decision.CONTINUE,
            round_index=round_index,
            follow_up=follow_up,
            raw_text=text,
        )
    if _DONE_RE.match(cleaned):
        return ChairVerdict(decision=Decision.DONE, round_index=round_index, raw_text=text)
    raise ChairFormatError(text, "expected CONTINUE: <question> or DONE")


class ChairEngine:
    """Two tool-less calls on the chair backend: decide after each round, synthesize once."""

    def __init__(
        self,
        provider: AIProvider,
        prompts: PromptsConfig,
        runner: ParticipantRunner,
        label: str = "chair",
    ) -> None:
        self._provider = provider
        self._prompts = prompts
        self._runner = runner
        self._label = label

    @property
    def provider(self) -> AIProvider:
        return self._provider

    async def decide(self, meeting: Meeting, round_index: int) -> ChairVerdict:
        """Decide whether another round is needed. Never raises: errors become DONE."""
        prompt = self._prompts.chair_decision.format(
            agenda=meeting.agenda,
            context_block=context_block(meeting.context),
            history=format_history(meeting.rounds),
        )
        outcome = await self._runner.run(
            self._label,
            self._provider,
            self._prompts.chair_system,
            prompt,
            tools_enabled=False,
        )
        if not outcome.succeeded:
            message = outcome.failure.message if outcome.failure else "unknown error"
            logger.warning("Chair decision failed in round %d, ending discussion: %s", round_index + 1, message)
            return ChairVerdict(
                decision=Decision.DONE,
                round_index=round_index,
                error=message,
            )

        try:
            verdict = parse_verdict(outcome.text, round_index)
        except ChairFormatError as exc:
            logger.warning("Chair format error in round %d, treating as DONE: %s", round_index + 1, exc)
            return ChairVerdict(
                decision=Decision.DONE,
                round_index=round_index,
                raw_text=outcome.text,
                format_error=True,
                error=str(exc),
            )

        logger.info("Chair verdict for round %d: %s", round_index + 1, verdict.decision.value.upper())
        return verdict

    async def synthesize(self, meeting: Meeting) -> Synthesis:
        """Produce the final report from every round.

        Raises:
            SynthesisError: If the chair backend fails or answers empty.
        """
        prompt = self._prompts.chair_synthesis.format(
            rounds=len(meeting.rounds),
            agenda=meeting.agenda,
            context_block=context_block(meeting.context),
            history=format_history(meeting.rounds),
        )

        logger.info("Running synthesis via %s", self._provider.name())

        outcome = await self._runner.run(
            self._label,
            self._provider,
            self._prompts.chair_system,
            prompt,
            tools_enabled=False,
        )
        if not outcome.succeeded:
            raise SynthesisError(outcome.failure or FailureDetail("UnknownError", "no detail"))
        return Synthesis(text=outcome.text, rounds_considered=len(meeting.rounds))
