"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import os
import time
from typing import Any

import anthropic as anthropic_sdk

from braintrust.adapters import AnthropicAdapter
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


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise BackendTransportError(config.name, f"Missing API key: {config.api_key_env}", "auth")
        if config.base_url:
            self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key, base_url=config.base_url)
        else:
            self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)
        self.adapter = AnthropicAdapter()

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
            "max_tokens": self._config.max_tokens,
            "system": system_prompt,
            "messages": transcript,
        }
        if tools:
            request["tools"] = self.adapter.declare(tools)

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(**request),
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

        if not response.content:
            raise BackendTransportError(self._config.name, "Empty response content", "malformed")

        blocks = [block.model_dump(exclude_none=True) for block in response.content]
        text = "\n".join(b["text"] for b in blocks if b.get("type") == "text" and b.get("text"))
        tool_calls = [b for b in blocks if b.get("type") == "tool_use"]

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.debug(
            "Anthropic %s: %.2fs, %s tokens, %d tool calls",
            self._config.name,
            latency,
            token_count,
            len(tool_calls),
        )

        return BackendReply(
            text=text,
            tool_calls=tool_calls,
            assistant_message={"role": "assistant", "content": blocks},
            token_count=token_count,
        )
