"""Anthropic Claude provider using anthropic SDK with native async streaming."""

import asyncio
import json
import logging
import os
import time

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from loopy.models import GenerationResult, ToolCall
from loopy.providers.base import AIProvider, ChatRequest, ProviderError, TokenCallback

logger = logging.getLogger(__name__)

_TOOL_CHOICES = {"auto": {"type": "auto"}, "required": {"type": "any"}, "any": {"type": "any"}}


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def _tool_kwargs(self, request: ChatRequest) -> dict:
        # "none" means: do not offer tools at all
        if not request.tools or request.tool_choice == "none":
            return {}
        return {
            "tools": [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in request.tools
            ],
            "tool_choice": _TOOL_CHOICES.get(request.tool_choice, {"type": "auto"}),
        }

    async def _stream(self, request: ChatRequest, on_token: TokenCallback | None) -> tuple[str, list[ToolCall]]:
        parts: list[str] = []
        async with self._client.messages.stream(
            model=self._config.model,
            max_tokens=self._config.max_tokens,
            system=request.system,
            messages=request.messages,
            **self._tool_kwargs(request),
        ) as stream:
            async for text in stream.text_stream:
                parts.append(text)
                if on_token:
                    on_token(text)
            final = await stream.get_final_message()

        tool_calls = [
            ToolCall(name=block.name, arguments=json.dumps(block.input))
            for block in final.content
            if block.type == "tool_use"
        ]
        return "".join(parts), tool_calls

    async def generate(self, request: ChatRequest, on_token: TokenCallback | None = None) -> GenerationResult:
        start = time.monotonic()
        try:
            text, tool_calls = await asyncio.wait_for(
                self._stream(request, on_token),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start
        logger.info("Anthropic: %.2fs, %d chars, %d tool calls", latency, len(text), len(tool_calls))

        return GenerationResult(
            text=text,
            model=self._config.model,
            latency_sec=latency,
            tool_calls=tool_calls,
        )
