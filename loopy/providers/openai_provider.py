"""OpenAI-compatible provider (OpenAI, Ollama's /v1 endpoint) using the openai SDK with streaming."""

import asyncio
import logging
import os
import time

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from loopy.models import GenerationResult, ToolCall
from loopy.providers.base import AIProvider, ChatRequest, ProviderError, TokenCallback

logger = logging.getLogger(__name__)

# Ollama ignores the key but the SDK insists on one
_LOCAL_API_KEY = "ollama"


class OpenAIProvider(AIProvider):
    """OpenAI chat completions, or any server speaking the same API via base_url."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        if config.api_key_env:
            api_key = os.environ.get(config.api_key_env, "").strip()
            if not api_key:
                raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        else:
            if not config.base_url:
                raise ProviderError(config.name, "base_url is required for keyless providers")
            api_key = _LOCAL_API_KEY
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def _tool_kwargs(self, request: ChatRequest) -> dict:
        if not request.tools:
            return {}
        return {
            "tools": [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in request.tools
            ],
            "tool_choice": request.tool_choice,
        }

    async def _stream(self, request: ChatRequest, on_token: TokenCallback | None) -> tuple[str, list[ToolCall]]:
        stream = await self._client.chat.completions.create(
            model=self._config.model,
            messages=[{"role": "system", "content": request.system}, *request.messages],
            max_tokens=self._config.max_tokens,
            stream=True,
            **self._tool_kwargs(request),
        )
        parts: list[str] = []
        calls: dict[int, dict[str, str]] = {}
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                parts.append(delta.content)
                if on_token:
                    on_token(delta.content)
            for tc in delta.tool_calls or []:
                slot = calls.setdefault(tc.index, {"name": "", "arguments": ""})
                if tc.function and tc.function.name:
                    slot["name"] += tc.function.name
                if tc.function and tc.function.arguments:
                    slot["arguments"] += tc.function.arguments
        tool_calls = [ToolCall(name=c["name"], arguments=c["arguments"]) for _, c in sorted(calls.items())]
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
        logger.info("%s: %.2fs, %d chars", self._config.name, latency, len(text))

        return GenerationResult(
            text=text,
            model=self._config.model,
            latency_sec=latency,
            tool_calls=tool_calls,
        )
