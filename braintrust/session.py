"""Per-meeting session directories: metadata, round transcripts, verdicts, synthesis."""

import json
import logging
import re
import secrets
import time
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any

from braintrust.models import (
    ChairVerdict,
    Decision,
    FailureDetail,
    Meeting,
    MeetingStatus,
    OutcomeStatus,
    ParticipantOutcome,
    Round,
    Synthesis,
    ToolInvocation,
    ToolResult,
)

logger = logging.getLogger(__name__)

DEFAULT_SESSIONS_DIR = Path.home() / ".braintrust" / "sessions"

_METADATA = "metadata.json"
_ROUND_INDEX = "round.json"
_QUESTION = "question.md"
_VERDICT = "verdict.json"
_SYNTHESIS = "synthesis.md"
_EVENTS = "events.jsonl"
_ID_RE = re.compile(r"^\d{8}-\d{6}-[0-9a-f]{8}$")


def new_meeting_id() -> str:
    """Time-ordered id like 20260102-150405-1a2b3c4d."""
    return f"{datetime.now().strftime('%Y%m%d-%H%M%S')}-{secrets.token_hex(4)}"


def _safe_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", name) or "_"


def _write_json(path: Path, data: Any) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


class SessionStore:
    """Filesystem layout for persisted meetings.

    <base>/<meeting_id>/
        metadata.json
        events.jsonl
        round_<n>/question.md, round.json, <participant>.json, verdict.json
        synthesis.md
    """

    def __init__(self, base_dir: Path = DEFAULT_SESSIONS_DIR) -> None:
        self._base = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base

    def meeting_dir(self, meeting_id: str) -> Path:
        if not _ID_RE.match(meeting_id):
            raise ValueError(f"Invalid meeting id: {meeting_id!r}")
        return self._base / meeting_id

    def events_path(self, meeting_id: str) -> Path:
        return self.meeting_dir(meeting_id) / _EVENTS

    def allocate_id(self) -> str:
        """A meeting id not yet present in this store."""
        while True:
            meeting_id = new_meeting_id()
            if not (self._base / meeting_id).exists():
                return meeting_id

    def create(self, meeting: Meeting) -> Path:
        directory = self.meeting_dir(meeting.meeting_id)
        directory.mkdir(parents=True, exist_ok=False)
        self._write_metadata(meeting, MeetingStatus.RUNNING)
        logger.info("Session created: %s", directory)
        return directory

    def save_round(self, meeting_id: str, rnd: Round) -> None:
        round_dir = self.meeting_dir(meeting_id) / f"round_{rnd.index}"
        round_dir.mkdir(parents=True, exist_ok=True)
        (round_dir / _QUESTION).write_text(rnd.question, encoding="utf-8")
        _write_json(round_dir / _ROUND_INDEX, {
            "index": rnd.index,
            "started_at": rnd.started_at,
            "participants": list(rnd.outcomes),
        })
        for name, outcome in rnd.outcomes.items():
            _write_json(round_dir / f"{_safe_name(name)}.json", asdict(outcome))

    def save_verdict(self, meeting_id: str, rnd: Round) -> None:
        if rnd.verdict is None:
            return
        round_dir = self.meeting_dir(meeting_id) / f"round_{rnd.index}"
        round_dir.mkdir(parents=True, exist_ok=True)
        _write_json(round_dir / _VERDICT, asdict(rnd.verdict))

    def save_synthesis(self, meeting_id: str, synthesis: Synthesis) -> Path:
        path = self.meeting_dir(meeting_id) / _SYNTHESIS
        path.write_text(synthesis.text, encoding="utf-8")
        return path

    def update_status(
        self,
        meeting: Meeting,
        status: MeetingStatus,
        elapsed_sec: float | None = None,
        error: str | None = None,
    ) -> None:
        self._write_metadata(meeting, status, elapsed_sec=elapsed_sec, error=error)

    def _write_metadata(
        self,
        meeting: Meeting,
        status: MeetingStatus,
        elapsed_sec: float | None = None,
        error: str | None = None,
    ) -> None:
        terminal = status is not MeetingStatus.RUNNING
        _write_json(self.meeting_dir(meeting.meeting_id) / _METADATA, {
            "id": meeting.meeting_id,
            "agenda": meeting.agenda,
            "context": meeting.context,
            "max_rounds": meeting.max_rounds,
            "created_at": meeting.created_at,
            "status": status.value,
            "rounds": len(meeting.rounds),
            "completed_at": time.time() if terminal else None,
            "elapsed_sec": elapsed_sec,
            "error": error,
        })

    def list_meetings(self) -> list[dict[str, Any]]:
        """Metadata of every stored meeting, newest first. Unreadable entries are skipped."""
        if not self._base.is_dir():
            return []
        meetings: list[dict[str, Any]] = []
        for entry in self._base.iterdir():
            metadata_path = entry / _METADATA
            if not _ID_RE.match(entry.name) or not metadata_path.is_file():
                continue
            try:
                meetings.append(_read_json(metadata_path))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Skipping unreadable session %s: %s", entry.name, exc)
        meetings.sort(key=lambda m: m.get("created_at") or 0, reverse=True)
        return meetings

    def load_meeting(self, meeting_id: str) -> Meeting:
        """Rebuild a Meeting with its rounds in index order.

        Raises:
            FileNotFoundError: If no such meeting exists.
        """
        directory = self.meeting_dir(meeting_id)
        metadata_path = directory / _METADATA
        if not metadata_path.is_file():
            raise FileNotFoundError(f"Session not found: {meeting_id}")
        metadata = _read_json(metadata_path)

        meeting = Meeting(
            meeting_id=metadata["id"],
            agenda=metadata["agenda"],
            max_rounds=int(metadata["max_rounds"]),
            created_at=float(metadata["created_at"]),
            context=metadata.get("context"),
        )

        round_dirs = sorted(
            (d for d in directory.glob("round_*") if d.is_dir() and d.name[6:].isdigit()),
            key=lambda d: int(d.name[6:]),
        )
        for round_dir in round_dirs:
            rnd = self._load_round(round_dir)
            if rnd is not None:
                meeting.rounds.append(rnd)

        synthesis_path = directory / _SYNTHESIS
        if synthesis_path.is_file():
            meeting.synthesis = Synthesis(
                text=synthesis_path.read_text(encoding="utf-8"),
                rounds_considered=len(meeting.rounds),
            )
        return meeting

    def _load_round(self, round_dir: Path) -> Round | None:
        index_path = round_dir / _ROUND_INDEX
        if not index_path.is_file():
            logger.warning("Skipping incomplete round directory %s", round_dir)
            return None
        index = _read_json(index_path)
        rnd = Round(
            index=int(index["index"]),
            question=(round_dir / _QUESTION).read_text(encoding="utf-8"),
            started_at=float(index.get("started_at") or 0.0),
        )
        for name in index["participants"]:
            rnd.outcomes[name] = _outcome_from_dict(_read_json(round_dir / f"{_safe_name(name)}.json"))
        verdict_path = round_dir / _VERDICT
        if verdict_path.is_file():
            rnd.verdict = _verdict_from_dict(_read_json(verdict_path))
        return rnd


def _outcome_from_dict(data: dict[str, Any]) -> ParticipantOutcome:
    failure = data.get("failure")
    return ParticipantOutcome(
        participant=data["participant"],
        model=data["model"],
        status=OutcomeStatus(data["status"]),
        text=data.get("text", ""),
        duration_sec=float(data.get("duration_sec", 0.0)),
        invocations=[_invocation_from_dict(i) for i in data.get("invocations", [])],
        failure=FailureDetail(**failure) if failure else None,
        attempts=int(data.get("attempts", 1)),
    )


def _invocation_from_dict(data: dict[str, Any]) -> ToolInvocation:
    result = data.get("result")
    return ToolInvocation(
        name=data["name"],
        arguments=data.get("arguments", {}),
        call_id=data["call_id"],
        sequence=int(data["sequence"]),
        argument_error=data.get("argument_error"),
        result=ToolResult(**result) if result else None,
    )


def _verdict_from_dict(data: dict[str, Any]) -> ChairVerdict:
    return ChairVerdict(
        decision=Decision(data["decision"]),
        round_index=int(data["round_index"]),
        follow_up=data.get("follow_up"),
        raw_text=data.get("raw_text", ""),
        format_error=bool(data.get("format_error", False)),
        downgraded=bool(data.get("downgraded", False)),
        error=data.get("error"),
    )
