"""Meeting state machine: Setup -> (Round -> ChairDecision)* -> Synthesis -> Terminated."""

import logging
import time
from pathlib import Path

from config.config_loader import AppConfig, PromptsConfig
from braintrust.chair import ChairEngine, ChairFormatError, parse_verdict
from braintrust.events import CompositeObserver, JsonlEventLog, MeetingEvent, MeetingObserver
from braintrust.evidence.dispatch import DEFAULT_TOOL_TIMEOUT_SEC, ToolDispatcher
from braintrust.evidence.toolkit import EvidenceToolkit
from braintrust.models import (
    ChairVerdict,
    Decision,
    FailureDetail,
    Meeting,
    MeetingResult,
    MeetingStatus,
    Round,
)
from braintrust.prompts import load_project_memory
from braintrust.providers.base import AIProvider
from braintrust.rounds import MeetingAbortError, Participant, RoundCoordinator
from braintrust.runner import DEFAULT_MAX_ITERATIONS, ParticipantRunner
from braintrust.session import SessionStore, new_meeting_id

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 3


class MeetingOrchestrator:
    """Run one meeting end to end over an injected panel, chair and toolkit.

    The result surface is the returned MeetingResult. A majority failure in
    any round raises MeetingAbortError carrying the aborted result as
    ``.result``; every other participant failure degrades gracefully and is
    reported in the transcript.
    """

    def __init__(
        self,
        participants: list[Participant],
        chair_provider: AIProvider,
        toolkit: EvidenceToolkit,
        prompts: PromptsConfig,
        store: SessionStore | None = None,
        observer: MeetingObserver | None = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
        max_tool_iterations: int = DEFAULT_MAX_ITERATIONS,
        tool_timeout_sec: float = DEFAULT_TOOL_TIMEOUT_SEC,
        participant_timeout_sec: float | None = None,
        participant_retries: int = 2,
        retry_base_delay_sec: float = 2.0,
        parallel_tool_calls: bool = True,
    ) -> None:
        if not participants:
            raise ValueError("At least one participant is required")
        names = [p.name for p in participants]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate participant names: {', '.join(duplicates)}")
        if max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {max_rounds}")

        self._participants = participants
        self._toolkit = toolkit
        self._store = store
        self._observer = observer
        self._max_rounds = max_rounds

        runner = ParticipantRunner(
            ToolDispatcher(toolkit, timeout_sec=tool_timeout_sec),
            max_iterations=max_tool_iterations,
            parallel_tool_calls=parallel_tool_calls,
        )
        self._coordinator = RoundCoordinator(
            participants,
            runner,
            prompts,
            toolkit.root,
            participant_timeout_sec=participant_timeout_sec,
            retries=participant_retries,
            retry_base_delay_sec=retry_base_delay_sec,
            project_memory=load_project_memory(toolkit),
        )
        self._chair = ChairEngine(chair_provider, prompts, ParticipantRunner(None, max_iterations=1))

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        participants: list[Participant],
        chair_provider: AIProvider,
        repo_root: Path,
        store: SessionStore | None = None,
        observer: MeetingObserver | None = None,
        max_rounds: int | None = None,
    ) -> "MeetingOrchestrator":
        limits = config.tools
        defaults = config.defaults
        toolkit = EvidenceToolkit(
            repo_root,
            max_results=limits.max_results,
            max_file_bytes=limits.max_file_bytes,
            max_read_lines=limits.max_read_lines,
            max_diff_lines=limits.max_diff_lines,
            diff_timeout_sec=limits.diff_timeout_sec,
        )
        return cls(
            participants,
            chair_provider,
            toolkit,
            config.prompts,
            store=store,
            observer=observer,
            max_rounds=max_rounds or defaults.max_rounds,
            max_tool_iterations=defaults.max_tool_iterations,
            tool_timeout_sec=limits.tool_timeout_sec,
            participant_timeout_sec=defaults.participant_timeout_sec,
            participant_retries=defaults.participant_retries,
            retry_base_delay_sec=defaults.retry_base_delay_sec,
            parallel_tool_calls=defaults.parallel_tool_calls,
        )

    async def run(
        self,
        agenda: str = "",
        context: str | None = None,
        max_rounds: int | None = None,
        resume_id: str | None = None,
    ) -> MeetingResult:
        """Run (or resume) a meeting and return its result.

        Raises:
            ValueError: On an empty agenda or invalid round bound.
            FileNotFoundError: If ``resume_id`` names no stored meeting.
            MeetingAbortError: On majority participant failure; ``.result`` holds the aborted result.
            SynthesisError: If the chair cannot produce the final report.
        """
        bound = max_rounds or self._max_rounds
        if bound < 1:
            raise ValueError(f"max_rounds must be >= 1, got {bound}")

        start = time.monotonic()
        if resume_id:
            meeting = self._load(resume_id)
            meeting.max_rounds = len(meeting.rounds) + bound
        else:
            if not agenda or not agenda.strip():
                raise ValueError("Agenda must not be empty")
            meeting = Meeting(
                meeting_id=self._store.allocate_id() if self._store else new_meeting_id(),
                agenda=agenda.strip(),
                max_rounds=bound,
                created_at=time.time(),
                context=context,
            )
            if self._store:
                self._store.create(meeting)

        observer = self._observer_for(meeting)
        observer.on_event(MeetingEvent("meeting_started", {
            "meeting_id": meeting.meeting_id,
            "agenda": meeting.agenda,
            "max_rounds": meeting.max_rounds,
            "participants": [p.name for p in self._participants],
            "chair": self._chair.provider.name(),
            "resumed": bool(resume_id),
        }))
        if self._store:
            self._store.update_status(meeting, MeetingStatus.RUNNING)

        try:
            question = await self._first_question(meeting, observer, resumed=bool(resume_id))
            index = len(meeting.rounds)
            last_index = meeting.max_rounds - 1

            while question is not None:
                rnd = await self._coordinator.run_round(meeting, index, question, observer)
                self._append_round(meeting, rnd)
                verdict = await self._decide(meeting, rnd, index >= last_index, observer)
                question = verdict.follow_up if verdict.decision is Decision.CONTINUE else None
                index += 1

            observer.on_event(MeetingEvent("chair_synthesizing", {"rounds": len(meeting.rounds)}))
            synthesis = await self._chair.synthesize(meeting)
        except MeetingAbortError as exc:
            if exc.round is not None:
                self._append_round(meeting, exc.round)
            result = self._result(meeting, MeetingStatus.ABORTED, "", start, error=str(exc))
            result.failed_participants = dict(exc.failures)
            exc.result = result
            logger.error("%s", exc)
            if self._store:
                self._store.update_status(meeting, MeetingStatus.ABORTED, result.elapsed_sec, str(exc))
            observer.on_event(MeetingEvent("meeting_aborted", {
                "meeting_id": meeting.meeting_id,
                "round": exc.round_index,
                "error": str(exc),
                "failed": {name: f.error_class for name, f in exc.failures.items()},
            }))
            raise
        except Exception as exc:
            logger.error("Meeting %s failed: %s", meeting.meeting_id, exc)
            if self._store:
                self._store.update_status(
                    meeting, MeetingStatus.FAILED, time.monotonic() - start, f"{type(exc).__name__}: {exc}"
                )
            raise

        meeting.synthesis = synthesis
        if self._store:
            self._store.save_synthesis(meeting.meeting_id, synthesis)
        observer.on_event(MeetingEvent("chair_completed", {"rounds_considered": synthesis.rounds_considered}))

        result = self._result(meeting, MeetingStatus.COMPLETED, synthesis.text, start)
        if self._store:
            self._store.update_status(meeting, MeetingStatus.COMPLETED, result.elapsed_sec)
        observer.on_event(MeetingEvent("meeting_completed", {
            "meeting_id": meeting.meeting_id,
            "total_rounds": result.total_rounds,
            "elapsed_sec": round(result.elapsed_sec, 3),
            "failed": list(result.failed_participants),
        }))
        logger.info("Meeting %s complete: %d rounds, %.1fs", meeting.meeting_id, result.total_rounds, result.elapsed_sec)
        return result

    def _load(self, resume_id: str) -> Meeting:
        if self._store is None:
            raise ValueError("Resuming requires a session store")
        meeting = self._store.load_meeting(resume_id)
        logger.info("Resuming meeting %s with %d stored rounds", meeting.meeting_id, len(meeting.rounds))
        return meeting

    async def _first_question(self, meeting: Meeting, observer: MeetingObserver, resumed: bool) -> str | None:
        """Question for the next round, or None to go straight to synthesis."""
        if not resumed or not meeting.rounds:
            return meeting.agenda

        last = meeting.rounds[-1]
        if last.verdict is not None and last.verdict.decision is Decision.CONTINUE:
            return last.verdict.follow_up
        if last.verdict is not None and last.verdict.downgraded:
            try:
                return parse_verdict(last.verdict.raw_text, last.index).follow_up
            except ChairFormatError:
                logger.warning("Stored follow-up for round %d is unreadable, asking the chair again", last.index + 1)

        observer.on_event(MeetingEvent("chair_deciding", {"round": last.index, "resumed": True}))
        verdict = await self._chair.decide(meeting, last.index)
        if last.verdict is None:
            last.verdict = verdict
            if self._store:
                self._store.save_verdict(meeting.meeting_id, last)
        self._emit_verdict(observer, verdict)
        return verdict.follow_up if verdict.decision is Decision.CONTINUE else None

    async def _decide(self, meeting: Meeting, rnd: Round, is_last: bool, observer: MeetingObserver) -> ChairVerdict:
        observer.on_event(MeetingEvent("chair_deciding", {"round": rnd.index}))
        verdict = await self._chair.decide(meeting, rnd.index)
        if verdict.decision is Decision.CONTINUE and is_last:
            logger.info("Round limit reached (%d), ending discussion", meeting.max_rounds)
            verdict.decision = Decision.DONE
            verdict.follow_up = None
            verdict.downgraded = True
        rnd.verdict = verdict
        if self._store:
            self._store.save_verdict(meeting.meeting_id, rnd)
        self._emit_verdict(observer, verdict)
        return verdict

    @staticmethod
    def _emit_verdict(observer: MeetingObserver, verdict: ChairVerdict) -> None:
        observer.on_event(MeetingEvent("chair_verdict", {
            "round": verdict.round_index,
            "decision": verdict.decision.value,
            "follow_up": verdict.follow_up,
            "downgraded": verdict.downgraded,
            "format_error": verdict.format_error,
            "error": verdict.error,
        }))

    def _append_round(self, meeting: Meeting, rnd: Round) -> None:
        meeting.rounds.append(rnd)
        if self._store:
            self._store.save_round(meeting.meeting_id, rnd)

    def _observer_for(self, meeting: Meeting) -> MeetingObserver:
        observers: list[MeetingObserver] = []
        if self._observer is not None:
            observers.append(self._observer)
        if self._store is not None:
            observers.append(JsonlEventLog(self._store.events_path(meeting.meeting_id)))
        return CompositeObserver(observers)

    @staticmethod
    def _result(
        meeting: Meeting,
        status: MeetingStatus,
        synthesis: str,
        start: float,
        error: str | None = None,
    ) -> MeetingResult:
        failed: dict[str, FailureDetail] = {}
        for rnd in meeting.rounds:
            for name, outcome in rnd.outcomes.items():
                if not outcome.succeeded and outcome.failure is not None:
                    failed[name] = outcome.failure
        return MeetingResult(
            meeting_id=meeting.meeting_id,
            status=status,
            synthesis=synthesis,
            rounds=list(meeting.rounds),
            total_rounds=len(meeting.rounds),
            elapsed_sec=time.monotonic() - start,
            error=error,
            failed_participants=failed,
        )
