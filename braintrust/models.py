"""Pure dataclasses for the Braintrust meeting pipeline. No I/O, no deps."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class Decision(str, Enum):
    CONTINUE = "continue"
    DONE = "done"


class MeetingStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass
class ToolResult:
    ok: bool
    tool: str
    payload: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    error: str | None = None


@dataclass
class ToolInvocation:
    name: str                    # tool name as the model sent it
    arguments: dict[str, Any]
    call_id: str                 # backend correlation id, echoed back verbatim
    sequence: int                # 1-based, strictly increasing within one turn
    argument_error: str | None = None
    result: ToolResult | None = None


@dataclass(frozen=True)
class FailureDetail:
    error_class: str             # e.g. "BackendTransportError", "MaxIterationsExceeded"
    message: str


@dataclass
class ParticipantOutcome:
    participant: str
    model: str
    status: OutcomeStatus
    text: str
    duration_sec: float
    invocations: list[ToolInvocation] = field(default_factory=list)
    failure: FailureDetail | None = None
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


@dataclass
class ChairVerdict:
    decision: Decision
    round_index: int
    follow_up: str | None = None
    raw_text: str = ""
    format_error: bool = False
    downgraded: bool = False     # Continue turned into Done by the round bound
    error: str | None = None     # why Done was forced (format or transport error)


@dataclass
class Round:
    index: int
    question: str
    outcomes: dict[str, ParticipantOutcome] = field(default_factory=dict)
    verdict: ChairVerdict | None = None
    started_at: float = 0.0


@dataclass
class Synthesis:
    text: str
    rounds_considered: int


@dataclass
class Meeting:
    meeting_id: str
    agenda: str
    max_rounds: int
    created_at: float
    context: str | None = None
    rounds: list[Round] = field(default_factory=list)
    synthesis: Synthesis | None = None


@dataclass
class MeetingResult:
    meeting_id: str
    status: MeetingStatus
    synthesis: str
    rounds: list[Round]
    total_rounds: int
    elapsed_sec: float
    error: str | None = None
    failed_participants: dict[str, FailureDetail] = field(default_factory=dict)
