"""OpenRouter (OpenAI-compatible) client used by the extraction pipeline."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

from personfinder.config import settings
from personfinder.services.logger import log_llm_call


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


class CompletionClient:
    """Single-turn chat completion returning the raw text of the first choice.

    The caller interprets and validates the text; an empty string is returned
    when the model sends no content.
    """

    def __init__(self, openai_client: Any, model: str, *, temperature: float = 0.1):
        self._client = openai_client
        self.model = model
        self.temperature = temperature
        self.last_usage = Usage()

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        started = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
            )
        except Exception as e:
            log_llm_call(
                model=self.model,
                caller="extraction",
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=str(e) or type(e).__name__,
            )
            raise

        usage = getattr(response, "usage", None)
        self.last_usage = Usage(
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        log_llm_call(
            model=self.model,
            caller="extraction",
            input_tokens=self.last_usage.input_tokens,
            output_tokens=self.last_usage.output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        return getattr(message, "content", None) or ""


def get_model() -> str:
    """Get the active OpenRouter model id."""
    if settings.openrouter_model:
        return settings.openrouter_model
    return settings.default_model


def get_client() -> CompletionClient:
    """Build a completion client on the OpenAI-compatible SDK."""
    from openai import AsyncOpenAI

    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    openai_client = AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
    )
    return CompletionClient(openai_client, get_model(), temperature=settings.extraction_temperature)


_client: CompletionClient | None = None


def client() -> CompletionClient:
    """Get or create the LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
