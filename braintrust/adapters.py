"""Translation between canonical ToolInvocation/ToolResult and each backend's native shapes.

Every backend follows the same pattern: the assistant emits typed calls with an
id and arguments, the caller answers with results tagged by that id. Only the
field names and framing differ, and that difference lives here. Adding a
backend means adding one adapter.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from braintrust.evidence.dispatch import ToolSpec
from braintrust.models import ToolInvocation, ToolResult

_SYNTHETIC_ID_PREFIX = "synthetic-call-"


def result_envelope(result: ToolResult) -> dict[str, Any]:
    """JSON-ready view of a ToolResult as the model sees it."""
    if result.ok:
        return {"ok": True, "tool": result.tool, **result.payload}
    return {
        "ok": False,
        "tool": result.tool,
        "error": {"code": result.error_code, "message": result.error},
    }


def result_text(result: ToolResult) -> str:
    return json.dumps(result_envelope(result), ensure_ascii=False)


def _decode_arguments(raw: Any) -> tuple[dict[str, Any], str | None]:
    """Returns (arguments, error). Never raises."""
    if raw is None or raw == "":
        return {}, None
    if isinstance(raw, dict):
        return raw, None
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            return {}, f"arguments are not valid JSON: {exc.msg} at position {exc.pos}"
        if isinstance(decoded, dict):
            return decoded, None
        return {}, f"arguments must be a JSON object, got {type(decoded).__name__}"
    return {}, f"arguments must be a JSON object, got {type(raw).__name__}"


class ToolCallAdapter(ABC):
    """Bridge for one backend's tool-calling wire format."""

    @abstractmethod
    def declare(self, specs: list[ToolSpec]) -> list[dict[str, Any]]:
        """Native tool declarations for the request."""
        ...

    @abstractmethod
    def user_message(self, text: str) -> dict[str, Any]:
        """Native message carrying the opening user prompt."""
        ...

    @abstractmethod
    def translate(self, native_calls: list[dict[str, Any]], first_sequence: int = 1) -> list[ToolInvocation]:
        """Canonical invocations in the order the backend emitted them.

        Malformed arguments never raise: the invocation carries
        ``argument_error`` and is answered with a structured error result.
        """
        ...

    @abstractmethod
    def render(self, invocation: ToolInvocation, result: ToolResult) -> dict[str, Any]:
        """Native result item answering ``invocation``."""
        ...

    def result_messages(self, rendered: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Frame rendered result items as transcript messages (one per item by default)."""
        return rendered


class OpenAIChatAdapter(ToolCallAdapter):
    """OpenAI chat completions: ``tool_calls`` on the assistant, ``role=tool`` replies."""

    def declare(self, specs: list[ToolSpec]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {"name": s.name, "description": s.description, "parameters": s.parameters},
            }
            for s in specs
        ]

    def user_message(self, text: str) -> dict[str, Any]:
        return {"role": "user", "content": text}

    def translate(self, native_calls: list[dict[str, Any]], first_sequence: int = 1) -> list[ToolInvocation]:
        invocations: list[ToolInvocation] = []
        for offset, call in enumerate(native_calls):
            sequence = first_sequence + offset
            function = call.get("function") or {}
            arguments, error = _decode_arguments(function.get("arguments"))
            invocations.append(ToolInvocation(
                name=function.get("name") or "",
                arguments=arguments,
                call_id=call.get("id") or f"{_SYNTHETIC_ID_PREFIX}{sequence}",
                sequence=sequence,
                argument_error=error,
            ))
        return invocations

    def render(self, invocation: ToolInvocation, result: ToolResult) -> dict[str, Any]:
        return {"role": "tool", "tool_call_id": invocation.call_id, "content": result_text(result)}


class AnthropicAdapter(ToolCallAdapter):
    """Anthropic messages: ``tool_use`` blocks, answered by one user turn of ``tool_result`` blocks."""

    def declare(self, specs: list[ToolSpec]) -> list[dict[str, Any]]:
        return [{"name": s.name, "description": s.description, "input_schema": s.parameters} for s in specs]

    def user_message(self, text: str) -> dict[str, Any]:
        return {"role": "user", "content": text}

    def translate(self, native_calls: list[dict[str, Any]], first_sequence: int = 1) -> list[ToolInvocation]:
        invocations: list[ToolInvocation] = []
        for offset, block in enumerate(native_calls):
            sequence = first_sequence + offset
            arguments, error = _decode_arguments(block.get("input"))
            invocations.append(ToolInvocation(
                name=block.get("name") or "",
                arguments=arguments,
                call_id=block.get("id") or f"{_SYNTHETIC_ID_PREFIX}{sequence}",
                sequence=sequence,
                argument_error=error,
            ))
        return invocations

    def render(self, invocation: ToolInvocation, result: ToolResult) -> dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": invocation.call_id,
            "content": result_text(result),
            "is_error": not result.ok,
        }

    def result_messages(self, rendered: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [{"role": "user", "content": rendered}] if rendered else []


class GeminiAdapter(ToolCallAdapter):
    """Gemini: ``function_call`` parts, answered by one user content of ``function_response`` parts.

    Older Gemini models omit call ids and correlate by name and position; a
    synthetic id is used internally and never sent back.
    """

    def declare(self, specs: list[ToolSpec]) -> list[dict[str, Any]]:
        return [
            {"name": s.name, "description": s.description, "parameters_json_schema": s.parameters}
            for s in specs
        ]

    def user_message(self, text: str) -> dict[str, Any]:
        return {"role": "user", "parts": [{"text": text}]}

    def translate(self, native_calls: list[dict[str, Any]], first_sequence: int = 1) -> list[ToolInvocation]:
        invocations: list[ToolInvocation] = []
        for offset, call in enumerate(native_calls):
            sequence = first_sequence + offset
            arguments, error = _decode_arguments(call.get("args"))
            invocations.append(ToolInvocation(
                name=call.get("name") or "",
                arguments=arguments,
                call_id=call.get("id") or f"{_SYNTHETIC_ID_PREFIX}{sequence}",
                sequence=sequence,
                argument_error=error,
            ))
        return invocations

    def render(self, invocation: ToolInvocation, result: ToolResult) -> dict[str, Any]:
        response: dict[str, Any] = {"name": invocation.name, "response": result_envelope(result)}
        if not invocation.call_id.startswith(_SYNTHETIC_ID_PREFIX):
            response["id"] = invocation.call_id
        return {"function_response": response}

    def result_messages(self, rendered: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [{"role": "user", "parts": rendered}] if rendered else []
