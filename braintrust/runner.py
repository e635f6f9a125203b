"""One participant turn: the bounded request / tool-call / response loop."""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from braintrust.evidence.dispatch import TOOL_SPECS, ToolDispatcher
from braintrust.models import (
    FailureDetail,
    OutcomeStatus,
    ParticipantOutcome,
    ToolInvocation,
    ToolResult,
)
from braintrust.providers.base import AIProvider, BackendTransportError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 50

MAX_ITERATIONS_EXCEEDED = "MaxIterationsExceeded"
EMPTY_RESPONSE = "EmptyResponse"

# Failure classes a coordinator may retry; everything else is final
RETRYABLE_FAILURES = frozenset({"BackendTransportError", "ParticipantTimeoutError"})

ToolCallHook = Callable[[str, ToolInvocation], None]


class ParticipantRunner:
    """Drive one provider through a single turn until it answers in free text.

    The runner owns the transcript for the turn. Tool calls from one model
    response run as a batch against the dispatcher and their results go back
    in the order the model emitted them. Transport errors end the turn
    immediately; retrying is the caller's decision.
    """

    def __init__(
        self,
        dispatcher: ToolDispatcher | None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        parallel_tool_calls: bool = True,
    ) -> None:
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        self._dispatcher = dispatcher
        self._max_iterations = max_iterations
        self._parallel = parallel_tool_calls

    async def run(
        self,
        participant: str,
        provider: AIProvider,
        system_prompt: str,
        prompt: str,
        tools_enabled: bool = True,
        on_tool_call: ToolCallHook | None = None,
        invocations: list[ToolInvocation] | None = None,
    ) -> ParticipantOutcome:
        """Run one turn. Never raises BackendTransportError: failures become a Failed outcome.

        With ``tools_enabled=False`` (chair mode) no tools are offered and
        any tool call the backend still emits is ignored. Tool calls are
        appended to ``invocations`` when the caller passes a list, so they
        survive a turn that is cancelled from outside.
        """
        tools_enabled = tools_enabled and self._dispatcher is not None
        adapter = provider.adapter
        transcript: list[dict[str, Any]] = [adapter.user_message(prompt)]
        if invocations is None:
            invocations = []
        start = time.monotonic()

        def finish(status: OutcomeStatus, text: str, failure: FailureDetail | None = None) -> ParticipantOutcome:
            return ParticipantOutcome(
                participant=participant,
                model=provider.model_string(),
                status=status,
                text=text,
                duration_sec=time.monotonic() - start,
                invocations=invocations,
                failure=failure,
            )

        for iteration in range(1, self._max_iterations + 1):
            try:
                reply = await provider.complete(
                    system_prompt,
                    transcript,
                    tools=TOOL_SPECS if tools_enabled else None,
                )
            except BackendTransportError as exc:
                logger.warning("%s failed at iteration %d: %s", participant, iteration, exc)
                return finish(OutcomeStatus.FAILED, "", FailureDetail(type(exc).__name__, str(exc)))

            if not tools_enabled or not reply.tool_calls:
                text = reply.text.strip()
                if not text:
                    logger.warning("%s returned an empty answer", participant)
                    return finish(
                        OutcomeStatus.FAILED,
                        "",
                        FailureDetail(EMPTY_RESPONSE, f"[{provider.name()}] empty response"),
                    )
                logger.info(
                    "%s answered after %d iteration(s), %d tool call(s)",
                    participant,
                    iteration,
                    len(invocations),
                )
                return finish(OutcomeStatus.SUCCESS, text)

            batch = adapter.translate(reply.tool_calls, first_sequence=len(invocations) + 1)
            invocations.extend(batch)
            await self._execute(participant, batch, on_tool_call)

            transcript.append(reply.assistant_message)
            rendered = [adapter.render(inv, inv.result) for inv in batch]
            transcript.extend(adapter.result_messages(rendered))

        logger.warning("%s hit the tool-call ceiling (%d iterations)", participant, self._max_iterations)
        return finish(
            OutcomeStatus.FAILED,
            "",
            FailureDetail(
                MAX_ITERATIONS_EXCEEDED,
                f"[{provider.name()}] no final answer after {self._max_iterations} iterations",
            ),
        )

    async def _execute(
        self,
        participant: str,
        batch: list[ToolInvocation],
        on_tool_call: ToolCallHook | None,
    ) -> None:
        """Execute a batch and attach results to each invocation in place."""
        if self._parallel:
            results = await asyncio.gather(*(self._dispatcher.execute(inv) for inv in batch))
        else:
            results = [await self._dispatcher.execute(inv) for inv in batch]

        for invocation, result in zip(batch, results):
            invocation.result = result
            _log_result(participant, invocation, result)
            if on_tool_call:
                on_tool_call(participant, invocation)


def _log_result(participant: str, invocation: ToolInvocation, result: ToolResult) -> None:
    logger.debug(
        "%s tool #%d %s ok=%s%s",
        participant,
        invocation.sequence,
        invocation.name,
        result.ok,
        "" if result.ok else f" ({result.error_code})",
    )
