# src/llm/base_client.py — v3
"""Abstract generative text model interface.

The planner and the alignment check are the only consumers; both treat the
model as optional and degrade when it is absent or not loaded.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from frameagent.llm.models import LLMResponse, Message


class BaseLLMClient(ABC):
    """Unified interface for all LLM providers."""

    @abstractmethod
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
        """Text completion."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier (ollama, openai)."""

    @property
    def is_loaded(self) -> bool:
        """Whether the model is ready to serve completions."""
        return True
