"""One deliberation round: concurrent participant fan-out with fault isolation."""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from config.config_loader import PromptsConfig
from braintrust.events import MeetingEvent, MeetingObserver, NullObserver
from braintrust.models import (
    FailureDetail,
    Meeting,
    MeetingResult,
    OutcomeStatus,
    ParticipantOutcome,
    Round,
    ToolInvocation,
)
from braintrust.prompts import participant_prompt, participant_system
from braintrust.providers.base import AIProvider
from braintrust.runner import RETRYABLE_FAILURES, ParticipantRunner, ToolCallHook

logger = logging.getLogger(__name__)


@dataclass
class Participant:
    name: str
    provider: AIProvider


class MeetingAbortError(Exception):
    """A majority of participants failed in one round; the meeting cannot continue."""

    def __init__(
        self,
        meeting_id: str,
        round_index: int,
        failures: dict[str, FailureDetail],
        rnd: Round | None = None,
    ) -> None:
        self.meeting_id = meeting_id
        self.round_index = round_index
        self.failures = failures
        self.round = rnd
        self.result: MeetingResult | None = None
        names = ", ".join(failures) or "none"
        super().__init__(
            f"Meeting {meeting_id} aborted in round {round_index + 1}: "
            f"{len(failures)} participant(s) failed ({names})"
        )


class RoundCoordinator:
    """Launch every participant for a round and collect one outcome each.

    A failing participant (transport error, tool-loop abort, deadline) is
    converted to a Failed outcome and never disturbs the others. Transport
    failures are retried with exponential backoff before they count.
    """

    def __init__(
        self,
        participants: list[Participant],
        runner: ParticipantRunner,
        prompts: PromptsConfig,
        repo_root: Path,
        participant_timeout_sec: float | None = None,
        retries: int = 2,
        retry_base_delay_sec: float = 2.0,
        project_memory: str | None = None,
    ) -> None:
        self._participants = participants
        self._runner = runner
        self._prompts = prompts
        self._repo_root = repo_root
        self._project_memory = project_memory
        self._timeout = participant_timeout_sec
        self._retries = max(0, retries)
        self._retry_base_delay = retry_base_delay_sec

    async def run_round(
        self,
        meeting: Meeting,
        index: int,
        question: str,
        observer: MeetingObserver | None = None,
    ) -> Round:
        """Run all participants on ``question`` and return the sealed-for-chair Round.

        Raises:
            MeetingAbortError: If failed outcomes are at least as many as successful ones.
        """
        observer = observer or NullObserver()
        rnd = Round(index=index, question=question, started_at=time.time())
        system_prompt = participant_system(self._prompts, self._repo_root, self._project_memory)
        prompt = participant_prompt(self._prompts, meeting, index, question)

        logger.info("Starting round %d with %d participants", index + 1, len(self._participants))
        observer.on_event(MeetingEvent("round_started", {
            "round": index,
            "question": question,
            "participants": [p.name for p in self._participants],
        }))

        outcomes = await asyncio.gather(*(
            self._run_participant(p, system_prompt, prompt, index, observer)
            for p in self._participants
        ))
        for participant, outcome in zip(self._participants, outcomes):
            rnd.outcomes[participant.name] = outcome

        succeeded = [o.participant for o in outcomes if o.succeeded]
        failures = {o.participant: o.failure for o in outcomes if not o.succeeded}

        logger.info(
            "Round %d complete: %d/%d participants succeeded",
            index + 1,
            len(succeeded),
            len(outcomes),
        )
        observer.on_event(MeetingEvent("round_completed", {
            "round": index,
            "succeeded": succeeded,
            "failed": list(failures),
        }))

        if len(failures) >= len(succeeded):
            raise MeetingAbortError(meeting.meeting_id, index, failures, rnd=rnd)
        return rnd

    async def _run_participant(
        self,
        participant: Participant,
        system_prompt: str,
        prompt: str,
        round_index: int,
        observer: MeetingObserver,
    ) -> ParticipantOutcome:
        """Run one participant with retries. Never raises."""
        observer.on_event(MeetingEvent("participant_started", {
            "round": round_index,
            "participant": participant.name,
            "model": participant.provider.model_string(),
        }))

        def on_tool_call(name: str, invocation: ToolInvocation) -> None:
            result = invocation.result
            observer.on_event(MeetingEvent("participant_tool_call", {
                "round": round_index,
                "participant": name,
                "sequence": invocation.sequence,
                "tool": invocation.name,
                "ok": bool(result and result.ok),
                "error_code": result.error_code if result else None,
            }))

        attempt = 0
        while True:
            attempt += 1
            outcome = await self._attempt(participant, system_prompt, prompt, on_tool_call)
            outcome.attempts = attempt
            if outcome.succeeded or attempt > self._retries:
                break
            if outcome.failure is None or outcome.failure.error_class not in RETRYABLE_FAILURES:
                break
            delay = self._retry_base_delay * 2 ** (attempt - 1)
            logger.warning(
                "%s failed in round %d (attempt %d/%d), retrying in %.1fs: %s",
                participant.name,
                round_index + 1,
                attempt,
                self._retries + 1,
                delay,
                outcome.failure.message,
            )
            observer.on_event(MeetingEvent("participant_retry", {
                "round": round_index,
                "participant": participant.name,
                "attempt": attempt,
                "delay_sec": delay,
                "error_class": outcome.failure.error_class,
            }))
            await asyncio.sleep(delay)

        if not outcome.succeeded:
            logger.warning(
                "%s failed in round %d: %s",
                participant.name,
                round_index + 1,
                outcome.failure.message if outcome.failure else "unknown error",
            )
        observer.on_event(MeetingEvent("participant_completed", {
            "round": round_index,
            "participant": participant.name,
            "status": outcome.status.value,
            "duration_sec": round(outcome.duration_sec, 3),
            "tool_calls": len(outcome.invocations),
            "attempts": outcome.attempts,
            "error_class": outcome.failure.error_class if outcome.failure else None,
        }))
        return outcome

    async def _attempt(
        self,
        participant: Participant,
        system_prompt: str,
        prompt: str,
        on_tool_call: ToolCallHook,
    ) -> ParticipantOutcome:
        start = time.monotonic()
        # Filled by the runner as calls happen, so a cut-off turn keeps its record
        invocations: list[ToolInvocation] = []
        turn = self._runner.run(
            participant.name,
            participant.provider,
            system_prompt,
            prompt,
            on_tool_call=on_tool_call,
            invocations=invocations,
        )
        try:
            if self._timeout:
                return await asyncio.wait_for(turn, timeout=self._timeout)
            return await turn
        except TimeoutError:
            failure = FailureDetail(
                "ParticipantTimeoutError",
                f"[{participant.name}] turn exceeded {self._timeout}s",
            )
        except Exception as exc:
            failure = FailureDetail(type(exc).__name__, f"[{participant.name}] unexpected error: {exc}")
            logger.exception("Unexpected failure in participant %s", participant.name)

        return ParticipantOutcome(
            participant=participant.name,
            model=participant.provider.model_string(),
            status=OutcomeStatus.FAILED,
            text="",
            duration_sec=time.monotonic() - start,
            invocations=invocations,
            failure=failure,
        )
