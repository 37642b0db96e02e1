# src/llm/adapters/openai_adapter.py — v3
"""OpenAI chat adapter implementing BaseLLMClient.

Uses the official openai SDK. A custom base_url points it at any
OpenAI-compatible server (llama.cpp, vLLM, LM Studio).
"""

from __future__ import annotations

import time
from typing import Any

from frameagent.llm.base_client import BaseLLMClient
from frameagent.llm.models import LLMResponse, Message


class OpenAIAdapter(BaseLLMClient):
    """OpenAI chat completions adapter."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        api_key: str = "",
        base_url: str | None = None,
        **kwargs: Any,
    ):
        self._model = model
        self._api_key = api_key
        self._base_url = base_url or None

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        max_tokens: int = 512,
        temperature: float = 0.2,
        top_p: float | None = None,
        seed: int | None = None,
        repetition_penalty: float | None = None,
    ) -> LLMResponse:
        import openai

        client = openai.AsyncOpenAI(api_key=self._api_key or "not-needed", base_url=self._base_url)
        oai_messages: list[dict[str, Any]] = []
        if system:
            oai_messages.append({"role": "system", "content": system})
        for m in messages:
            oai_messages.append({"role": m.role, "content": m.content})

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": oai_messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if top_p is not None:
            kwargs["top_p"] = top_p
        if seed is not None:
            kwargs["seed"] = seed
        if repetition_penalty is not None:
            kwargs["extra_body"] = {"repetition_penalty": repetition_penalty}

        t0 = time.monotonic()
        resp = await client.chat.completions.create(**kwargs)
        latency = int((time.monotonic() - t0) * 1000)

        choice = resp.choices[0]
        usage = resp.usage
        return LLMResponse(
            content=choice.message.content or "",
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            model=self._model,
            provider="openai",
            latency_ms=latency,
            raw_response=resp,
        )

    @property
    def provider_name(self) -> str:
        return "openai"
