"""End-to-end tests for braintrust/orchestrator.py with scripted backends."""

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from braintrust.chair import SynthesisError
from braintrust.models import Decision, MeetingStatus, OutcomeStatus
from braintrust.orchestrator import MeetingOrchestrator
from braintrust.providers.base import BackendTransportError
from braintrust.rounds import MeetingAbortError, Participant
from braintrust.session import SessionStore

from tests.conftest import ScriptedProvider, tool_call_reply


def chair_replies(decisions: list[str], synthesis: str = "## Final report") -> Callable:
    """Chair script: decision prompts consume ``decisions`` in order, synthesis gets ``synthesis``."""
    pending = list(decisions)

    def reply(transcript):
        prompt = transcript[0]["content"]
        if prompt.startswith("Synthesize"):
            return synthesis
        return pending.pop(0) if pending else "DONE"

    return reply


def _panel(*providers: ScriptedProvider) -> list[Participant]:
    return [Participant(p.name(), p) for p in providers]


def _orchestrator(toolkit, prompts, panel, chair, **kwargs) -> MeetingOrchestrator:
    kwargs.setdefault("participant_retries", 0)
    kwargs.setdefault("retry_base_delay_sec", 0.0)
    return MeetingOrchestrator(panel, chair, toolkit, prompts, **kwargs)


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    return SessionStore(tmp_path / "sessions")


# --- validation ---

def test_empty_panel_rejected(toolkit, sample_prompts_config):
    with pytest.raises(ValueError):
        MeetingOrchestrator([], ScriptedProvider("claude"), toolkit, sample_prompts_config)


def test_duplicate_participant_names_rejected(toolkit, sample_prompts_config):
    panel = _panel(ScriptedProvider("openai"), ScriptedProvider("openai"))
    with pytest.raises(ValueError, match="Duplicate"):
        MeetingOrchestrator(panel, ScriptedProvider("claude"), toolkit, sample_prompts_config)


def test_zero_round_bound_rejected(toolkit, sample_prompts_config):
    with pytest.raises(ValueError):
        MeetingOrchestrator(
            _panel(ScriptedProvider("openai")),
            ScriptedProvider("claude"),
            toolkit,
            sample_prompts_config,
            max_rounds=0,
        )


@pytest.mark.parametrize("agenda", ["", "   \n"])
async def test_empty_agenda_rejected(toolkit, sample_prompts_config, agenda):
    orchestrator = _orchestrator(
        toolkit, sample_prompts_config, _panel(ScriptedProvider("openai")), ScriptedProvider("claude")
    )
    with pytest.raises(ValueError, match="Agenda"):
        await orchestrator.run(agenda)


# --- flow ---

async def test_single_round_when_chair_is_done(toolkit, sample_prompts_config):
    """main.go only prints hello: one round, DONE, synthesis."""
    openai = ScriptedProvider("openai", [
        tool_call_reply(("find_files", {"pattern": "**/*.go"})),
        tool_call_reply(("read_file", {"path": "main.go"})),
        "main.go prints hello and has no error handling.",
    ])
    gemini = ScriptedProvider("gemini", ["There is nothing to handle; no errors are possible."])
    chair = ScriptedProvider("claude", default=chair_replies(["DONE"], "No error handling is present."))
    orchestrator = _orchestrator(toolkit, sample_prompts_config, _panel(openai, gemini), chair)

    result = await orchestrator.run("evaluate error handling in main.go")

    assert result.status is MeetingStatus.COMPLETED
    assert result.total_rounds == 1
    assert result.synthesis == "No error handling is present."
    assert result.failed_participants == {}
    assert result.rounds[0].verdict.decision is Decision.DONE
    assert [i.name for i in result.rounds[0].outcomes["openai"].invocations] == ["find_files", "read_file"]


async def test_follow_up_is_passed_verbatim(toolkit, sample_prompts_config):
    openai = ScriptedProvider("openai")
    chair = ScriptedProvider("claude", default=chair_replies(["CONTINUE: what logging library is used?", "DONE"]))
    orchestrator = _orchestrator(toolkit, sample_prompts_config, _panel(openai), chair)

    result = await orchestrator.run("evaluate error handling")

    assert result.total_rounds == 2
    assert result.rounds[1].question == "what logging library is used?"
    assert openai.prompts_seen[1].endswith("Follow-up: what logging library is used?")


async def test_round_bound_is_never_exceeded(toolkit, sample_prompts_config):
    openai = ScriptedProvider("openai")
    chair = ScriptedProvider("claude", default=lambda transcript: (
        "## Report" if transcript[0]["content"].startswith("Synthesize") else "CONTINUE: dig deeper"
    ))
    orchestrator = _orchestrator(toolkit, sample_prompts_config, _panel(openai), chair, max_rounds=3)

    result = await orchestrator.run("evaluate error handling")

    assert result.total_rounds == 3
    assert len(openai.calls) == 3
    last = result.rounds[-1].verdict
    assert last.decision is Decision.DONE
    assert last.downgraded is True
    assert last.raw_text == "CONTINUE: dig deeper"
    assert result.synthesis == "## Report"


async def test_max_rounds_override_per_run(toolkit, sample_prompts_config):
    chair = ScriptedProvider("claude", default=chair_replies(["CONTINUE: more"] * 5))
    orchestrator = _orchestrator(
        toolkit, sample_prompts_config, _panel(ScriptedProvider("openai")), chair, max_rounds=5
    )

    result = await orchestrator.run("review", max_rounds=1)

    assert result.total_rounds == 1


async def test_chair_format_error_ends_discussion(toolkit, sample_prompts_config):
    chair = ScriptedProvider("claude", default=chair_replies(["Let me think about it."]))
    orchestrator = _orchestrator(toolkit, sample_prompts_config, _panel(ScriptedProvider("openai")), chair)

    result = await orchestrator.run("review")

    assert result.status is MeetingStatus.COMPLETED
    assert result.total_rounds == 1
    assert result.rounds[0].verdict.format_error is True


async def test_minority_failure_degrades_gracefully(toolkit, sample_prompts_config):
    panel = _panel(
        ScriptedProvider("openai", ["analysis a"]),
        ScriptedProvider("gemini", default=BackendTransportError("gemini", "503", "server")),
        ScriptedProvider("grok", ["analysis c"]),
    )
    chair = ScriptedProvider("claude", default=chair_replies(["DONE"]))
    orchestrator = _orchestrator(toolkit, sample_prompts_config, panel, chair)

    result = await orchestrator.run("review")

    assert result.status is MeetingStatus.COMPLETED
    assert list(result.failed_participants) == ["gemini"]
    # The chair saw the failure in the transcript
    assert "[FAILED]" in chair.prompts_seen[0]


async def test_majority_failure_aborts_with_result(toolkit, sample_prompts_config, store):
    panel = _panel(
        ScriptedProvider("openai", default=BackendTransportError("openai", "401", "auth")),
        ScriptedProvider("gemini", default=BackendTransportError("gemini", "503", "server")),
        ScriptedProvider("grok", ["analysis"]),
    )
    chair = ScriptedProvider("claude", default=chair_replies([]))
    orchestrator = _orchestrator(toolkit, sample_prompts_config, panel, chair, store=store)

    with pytest.raises(MeetingAbortError) as excinfo:
        await orchestrator.run("review")

    result = excinfo.value.result
    assert result is not None
    assert result.status is MeetingStatus.ABORTED
    assert result.synthesis == ""
    assert set(result.failed_participants) == {"openai", "gemini"}
    assert result.total_rounds == 1
    # The chair is never consulted after an abort
    assert chair.calls == []

    metadata = json.loads((store.meeting_dir(result.meeting_id) / "metadata.json").read_text(encoding="utf-8"))
    assert metadata["status"] == "aborted"
    assert "aborted" in metadata["error"]


async def test_abort_in_later_round_keeps_earlier_rounds(toolkit, sample_prompts_config):
    panel = _panel(
        ScriptedProvider("openai", ["first", BackendTransportError("openai", "down")]),
        ScriptedProvider("gemini", ["first", BackendTransportError("gemini", "down")]),
    )
    chair = ScriptedProvider("claude", default=chair_replies(["CONTINUE: next?"]))
    orchestrator = _orchestrator(toolkit, sample_prompts_config, panel, chair)

    with pytest.raises(MeetingAbortError) as excinfo:
        await orchestrator.run("review")

    assert excinfo.value.round_index == 1
    assert excinfo.value.result.total_rounds == 2


async def test_synthesis_failure_raises_and_marks_session(toolkit, sample_prompts_config, store):
    chair = ScriptedProvider("claude", ["DONE", BackendTransportError("claude", "overloaded", "server")])
    orchestrator = _orchestrator(
        toolkit, sample_prompts_config, _panel(ScriptedProvider("openai")), chair, store=store
    )

    with pytest.raises(SynthesisError):
        await orchestrator.run("review")

    [metadata] = store.list_meetings()
    assert metadata["status"] == "failed"
    assert "SynthesisError" in metadata["error"]


# --- persistence ---

async def test_session_layout(toolkit, sample_prompts_config, store):
    openai = ScriptedProvider("openai", [tool_call_reply(("read_file", {"path": "main.go"})), "answer"])
    chair = ScriptedProvider("claude", default=chair_replies(["DONE"], "final"))
    orchestrator = _orchestrator(toolkit, sample_prompts_config, _panel(openai), chair, store=store)

    result = await orchestrator.run("review", context="Go service")

    directory = store.meeting_dir(result.meeting_id)
    metadata = json.loads((directory / "metadata.json").read_text(encoding="utf-8"))
    assert metadata["status"] == "completed"
    assert metadata["context"] == "Go service"
    assert metadata["rounds"] == 1
    assert (directory / "synthesis.md").read_text(encoding="utf-8") == "final"
    assert (directory / "round_0" / "question.md").read_text(encoding="utf-8") == "review"
    saved = json.loads((directory / "round_0" / "openai.json").read_text(encoding="utf-8"))
    assert saved["status"] == "success"
    assert saved["invocations"][0]["name"] == "read_file"
    verdict = json.loads((directory / "round_0" / "verdict.json").read_text(encoding="utf-8"))
    assert verdict["decision"] == "done"


async def test_event_log_records_lifecycle(toolkit, sample_prompts_config, store):
    openai = ScriptedProvider("openai", [tool_call_reply(("find_files", {"pattern": "*"})), "answer"])
    chair = ScriptedProvider("claude", default=chair_replies(["DONE"]))
    orchestrator = _orchestrator(toolkit, sample_prompts_config, _panel(openai), chair, store=store)

    result = await orchestrator.run("review")

    lines = store.events_path(result.meeting_id).read_text(encoding="utf-8").splitlines()
    names = [json.loads(line)["event"] for line in lines]
    assert names == [
        "meeting_started",
        "round_started",
        "participant_started",
        "participant_tool_call",
        "participant_completed",
        "round_completed",
        "chair_deciding",
        "chair_verdict",
        "chair_synthesizing",
        "chair_completed",
        "meeting_completed",
    ]


async def test_resume_continues_from_stored_follow_up(toolkit, sample_prompts_config, store):
    chair = ScriptedProvider("claude", default=chair_replies(["CONTINUE: check the tests"], "first report"))
    first = _orchestrator(
        toolkit, sample_prompts_config, _panel(ScriptedProvider("openai")), chair, store=store, max_rounds=1
    )
    result = await first.run("review")
    assert result.rounds[0].verdict.downgraded is True

    openai = ScriptedProvider("openai", ["tests reviewed"])
    chair2 = ScriptedProvider("claude", default=chair_replies(["DONE"], "second report"))
    second = _orchestrator(toolkit, sample_prompts_config, _panel(openai), chair2, store=store, max_rounds=2)

    resumed = await second.run(resume_id=result.meeting_id)

    assert resumed.meeting_id == result.meeting_id
    assert resumed.total_rounds == 2
    assert resumed.rounds[1].question == "check the tests"
    assert resumed.rounds[1].outcomes["openai"].status is OutcomeStatus.SUCCESS
    assert resumed.synthesis == "second report"
    metadata = json.loads((store.meeting_dir(result.meeting_id) / "metadata.json").read_text(encoding="utf-8"))
    assert metadata["max_rounds"] == 3


async def test_resume_unknown_meeting(toolkit, sample_prompts_config, store):
    orchestrator = _orchestrator(
        toolkit, sample_prompts_config, _panel(ScriptedProvider("openai")), ScriptedProvider("claude"), store=store
    )
    with pytest.raises(FileNotFoundError):
        await orchestrator.run(resume_id="20200101-000000-deadbeef")


async def test_resume_requires_store(toolkit, sample_prompts_config):
    orchestrator = _orchestrator(
        toolkit, sample_prompts_config, _panel(ScriptedProvider("openai")), ScriptedProvider("claude")
    )
    with pytest.raises(ValueError):
        await orchestrator.run(resume_id="20200101-000000-deadbeef")


async def test_from_config(sample_app_config, repo):
    panel = _panel(ScriptedProvider("openai"), ScriptedProvider("gemini"))
    chair = ScriptedProvider("claude", default=chair_replies(["DONE"]))

    orchestrator = MeetingOrchestrator.from_config(sample_app_config, panel, chair, repo, max_rounds=2)
    result = await orchestrator.run("review")

    assert result.status is MeetingStatus.COMPLETED
    assert result.total_rounds == 1
