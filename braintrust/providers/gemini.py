"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import os
import time
from typing import Any

from google import genai
from google.genai import types as genai_types

from braintrust.adapters import GeminiAdapter
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


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise BackendTransportError(config.name, f"Missing API key: {config.api_key_env}", "auth")
        self._client = genai.Client(api_key=api_key)
        self.adapter = GeminiAdapter()

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
        tool_config = None
        if tools:
            tool_config = [
                genai_types.Tool(function_declarations=[
                    genai_types.FunctionDeclaration(**decl) for decl in self.adapter.declare(tools)
                ])
            ]

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=transcript,
                    config=genai_types.GenerateContentConfig(
                        system_instruction=system_prompt,
                        max_output_tokens=self._config.max_tokens,
                        tools=tool_config,
                    ),
                ),
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

        candidate = response.candidates[0] if response.candidates else None
        if candidate is None or candidate.content is None:
            raise BackendTransportError(self._config.name, "Empty response candidates", "malformed")

        parts = candidate.content.parts or []
        text = "".join(p.text for p in parts if p.text and not p.thought)
        tool_calls = [p.function_call.model_dump(exclude_none=True) for p in parts if p.function_call]

        # Keep thought signatures: Gemini rejects follow-ups without them
        assistant = candidate.content.model_dump(exclude_none=True)
        assistant.setdefault("role", "model")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.debug(
            "Gemini %s: %.2fs, %s tokens, %d tool calls",
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
