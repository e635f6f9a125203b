"""Tests for braintrust/output.py."""

import json

import pytest
from rich.console import Console

import braintrust.output as output
from braintrust.models import (
    ChairVerdict,
    Decision,
    FailureDetail,
    MeetingResult,
    MeetingStatus,
    OutcomeStatus,
    ParticipantOutcome,
    Round,
)


@pytest.fixture
def captured(monkeypatch) -> Console:
    console = Console(record=True, width=120, legacy_windows=False)
    monkeypatch.setattr(output, "console", console)
    return console


@pytest.fixture
def sample_round() -> Round:
    rnd = Round(index=0, question="evaluate error handling")
    rnd.outcomes["openai"] = ParticipantOutcome(
        participant="openai",
        model="gpt-5.2",
        status=OutcomeStatus.SUCCESS,
        text="main.go has no error handling.",
        duration_sec=2.5,
    )
    rnd.outcomes["gemini"] = ParticipantOutcome(
        participant="gemini",
        model="gemini-3-pro-preview",
        status=OutcomeStatus.FAILED,
        text="",
        duration_sec=0.3,
        failure=FailureDetail("BackendTransportError", "[gemini] 503"),
        attempts=3,
    )
    rnd.verdict = ChairVerdict(decision=Decision.DONE, round_index=0, downgraded=True)
    return rnd


@pytest.fixture
def completed(sample_round) -> MeetingResult:
    return MeetingResult(
        meeting_id="20260101-000000-abcdef01",
        status=MeetingStatus.COMPLETED,
        synthesis="## Recommendation\nAdd error handling.",
        rounds=[sample_round],
        total_rounds=1,
        elapsed_sec=12.0,
        failed_participants={"gemini": sample_round.outcomes["gemini"].failure},
    )


def test_preview_truncates():
    assert output._preview("a b c d", words=2) == "a b..."
    assert output._preview("a b", words=2) == "a b"


def test_round_summary_shows_failures_and_verdict(captured, sample_round):
    output.print_round_summary(sample_round)
    text = captured.export_text()
    assert "Round 1" in text
    assert "gemini" in text and "FAILED" in text
    assert "3 attempts" in text
    assert "round limit reached" in text


def test_synthesis_lists_failed_participants(captured, completed):
    output.print_synthesis(completed)
    text = captured.export_text()
    assert "Recommendation" in text
    assert "Participants with failures: gemini" in text


def test_aborted_panel(captured, completed):
    completed.status = MeetingStatus.ABORTED
    completed.error = "Meeting aborted in round 1"
    output.print_aborted(completed)
    text = captured.export_text()
    assert "ABORTED" in text
    assert "BackendTransportError" in text


def test_sessions_table(captured):
    output.print_sessions([
        {"id": "20260101-000000-abcdef01", "created_at": 1767225600.0, "status": "completed",
         "rounds": 2, "agenda": "review the CLI"},
    ])
    text = captured.export_text()
    assert "20260101-000000-abcdef01" in text
    assert "completed" in text


def test_no_sessions(captured):
    output.print_sessions([])
    assert "No sessions found" in captured.export_text()


def test_result_json(completed):
    data = json.loads(output.result_to_json(completed))
    assert data["status"] == "completed"
    assert data["aborted"] is False
    assert data["total_rounds"] == 1
    assert data["rounds"][0]["outcomes"]["gemini"]["failure"]["error_class"] == "BackendTransportError"
    assert data["rounds"][0]["verdict"]["decision"] == "done"


def test_result_json_aborted(completed):
    completed.status = MeetingStatus.ABORTED
    assert output.result_to_dict(completed)["aborted"] is True
