"""Abstract base for all model backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from braintrust.adapters import ToolCallAdapter
from braintrust.evidence.dispatch import ToolSpec


class BackendTransportError(Exception):
    """Raised when a backend call fails (network, auth, rate limit, malformed response)."""

    def __init__(self, provider_name: str, message: str, status_class: str = "transport") -> None:
        self.provider_name = provider_name
        self.status_class = status_class
        super().__init__(f"[{provider_name}] {message}")


class ParticipantTimeoutError(BackendTransportError):
    """A backend call or a whole participant turn exceeded its deadline."""

    def __init__(self, provider_name: str, message: str) -> None:
        super().__init__(provider_name, message, status_class="timeout")


def status_class_for(exc: Exception) -> str:
    """Coarse error class for diagnostics; never includes response bodies or keys."""
    status = getattr(exc, "status_code", None) or getattr(exc, "code", None)
    if isinstance(status, int):
        if status in (401, 403):
            return "auth"
        if status == 429:
            return "rate_limit"
        if 500 <= status < 600:
            return "server"
        if 400 <= status < 500:
            return "client"
    return "transport"


@dataclass
class BackendReply:
    text: str
    tool_calls: list[dict[str, Any]] = field(default_factory=list)   # native shape
    assistant_message: dict[str, Any] = field(default_factory=dict)  # appended to the transcript
    token_count: int | None = None


class AIProvider(ABC):
    """One model backend. Stateless across calls: the caller owns the transcript."""

    adapter: ToolCallAdapter

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        transcript: list[dict[str, Any]],
        tools: list[ToolSpec] | None = None,
    ) -> BackendReply:
        """Send the conversation and return the model's next turn.

        Args:
            system_prompt: System framing for the conversation.
            transcript: Native-shaped messages built through ``self.adapter``.
            tools: Tool declarations to offer, or None to disable tool calling.

        Returns:
            BackendReply with free text and/or native tool calls.

        Raises:
            BackendTransportError: On API failure, timeout, or invalid response.
        """
        ...
