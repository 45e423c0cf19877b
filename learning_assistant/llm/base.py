"""LLM provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from learning_assistant.models import LLMStreamChunk


class UpstreamModelError(RuntimeError):
    """The model call itself failed (network, auth, rate limit, bad response)."""


class LLMProvider(ABC):
    """Abstract model provider used by the generation driver."""

    @abstractmethod
    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[LLMStreamChunk]:
        """Stream a model response as incremental chunks."""
