# src/llm/adapters/ollama_adapter.py — v3
"""Ollama local LLM adapter implementing BaseLLMClient.

Uses the ollama Python SDK against a local server, the usual home for the
small on-device models this agent plans with.
"""

from __future__ import annotations

import time
from typing import Any

from frameagent.llm.base_client import BaseLLMClient
from frameagent.llm.models import LLMResponse, Message


class OllamaAdapter(BaseLLMClient):
    """Ollama local inference adapter."""

    def __init__(
        self, model: str = "phi3", host: str = "http://localhost:11434", **kwargs: Any,
    ):
        self._model = model
        self._host = host
        self._repeat_penalty = kwargs.get("repeat_penalty")

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
        import ollama

        client = ollama.AsyncClient(host=self._host)
        msgs: list[dict[str, str]] = []
        if system:
            msgs.append({"role": "system", "content": system})
        for m in messages:
            msgs.append({"role": m.role, "content": m.content})

        options: dict[str, Any] = {
            "num_predict": max_tokens,
            "temperature": temperature,
        }
        if top_p is not None:
            options["top_p"] = top_p
        if seed is not None:
            options["seed"] = seed
        penalty = repetition_penalty if repetition_penalty is not None else self._repeat_penalty
        if penalty is not None:
            options["repeat_penalty"] = penalty

        t0 = time.monotonic()
        resp = await client.chat(model=self._model, messages=msgs, options=options)
        latency = int((time.monotonic() - t0) * 1000)

        return LLMResponse(
            content=resp["message"]["content"],
            input_tokens=resp.get("prompt_eval_count", 0) or 0,
            output_tokens=resp.get("eval_count", 0) or 0,
            model=self._model,
            provider="ollama",
            latency_ms=latency,
            raw_response=resp,
        )

    @property
    def provider_name(self) -> str:
        return "ollama"
