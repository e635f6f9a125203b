"""OpenAI chat-completions provider (also serves OpenAI-compatible endpoints via base_url)."""

import asyncio
import logging
import os
import time
from typing import Any

from openai import AsyncOpenAI

from braintrust.adapters import OpenAIChatAdapter
from braintrust.evidence.dispatch import ToolSpec
from braintrust.providers.base import (
    AIProvider,
    BackendReply,
    BackendTransportError,
    ParticipantTimeoutError,
    status_class_for,
)
from config.config_loader import ModelConfig

logger = logging.getLogger(__name__)


class OpenAIProvider(AIProvider):
    """OpenAI provider via openai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise BackendTransportError(config.name, f"Missing API key: {config.api_key_env}", "auth")
        if config.base_url:
            self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)
        else:
            self._client = AsyncOpenAI(api_key=api_key)
        self.adapter = OpenAIChatAdapter()

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def complete(
        self,
        system_prompt: str,
        transcript: list[dict[str, Any]],
        tools: list[ToolSpec] | None = None,
    ) -> BackendReply:
        request: dict[str, Any] = {
            "model": self._config.model,
            "messages": [{"role": "system", "content": system_prompt}, *transcript],
        }
        # Compatible endpoints still expect the legacy token field
        if self._config.base_url:
            request["max_tokens"] = self._config.max_tokens
        else:
            request["max_completion_tokens"] = self._config.max_tokens
        if tools:
            request["tools"] = self.adapter.declare(tools)

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(**request),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ParticipantTimeoutError(
                self._config.name, f"Request timed out after {self._config.timeout_sec}s"
            ) from exc
        except Exception as exc:
            raise BackendTransportError(
                self._config.name, f"API call failed: {type(exc).__name__}: {exc}", status_class_for(exc)
            ) from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if choice is None:
            raise BackendTransportError(self._config.name, "Response has no choices", "malformed")

        message = choice.message
        text = message.content or ""
        tool_calls = [tc.model_dump(exclude_none=True) for tc in (message.tool_calls or [])]
        assistant: dict[str, Any] = {"role": "assistant", "content": text or None}
        if tool_calls:
            assistant["tool_calls"] = tool_calls

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.debug(
            "OpenAI %s: %.2fs, %s tokens, %d tool calls",
            self._config.name,
            latency,
            token_count,
            len(tool_calls),
        )

        return BackendReply(
            text=text,
            tool_calls=tool_calls,
            assistant_message=assistant,
            token_count=token_count,
        )
