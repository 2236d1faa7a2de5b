"""Gemini provider using google-genai SDK with native async streaming."""

import asyncio
import logging
import os
import time

from google import genai
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from loopy.models import GenerationResult
from loopy.providers.base import AIProvider, ChatRequest, ProviderError, TokenCallback

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK. Text only; tools are not offered."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env or "", "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    @staticmethod
    def _contents(request: ChatRequest) -> list[genai_types.Content]:
        return [
            genai_types.Content(
                role="model" if m["role"] == "assistant" else "user",
                parts=[genai_types.Part(text=m["content"])],
            )
            for m in request.messages
        ]

    async def _stream(self, request: ChatRequest, on_token: TokenCallback | None) -> str:
        if request.tools:
            logger.debug("Gemini provider ignores %d offered tools", len(request.tools))
        parts: list[str] = []
        stream = await self._client.aio.models.generate_content_stream(
            model=self._config.model,
            contents=self._contents(request),
            config=genai_types.GenerateContentConfig(
                system_instruction=request.system,
                max_output_tokens=self._config.max_tokens,
            ),
        )
        async for chunk in stream:
            if chunk.text:
                parts.append(chunk.text)
                if on_token:
                    on_token(chunk.text)
        return "".join(parts)

    async def generate(self, request: ChatRequest, on_token: TokenCallback | None = None) -> GenerationResult:
        start = time.monotonic()
        try:
            text = await asyncio.wait_for(
                self._stream(request, on_token),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start
        logger.info("Gemini: %.2fs, %d chars", latency, len(text))

        return GenerationResult(text=text, model=self._config.model, latency_sec=latency)
