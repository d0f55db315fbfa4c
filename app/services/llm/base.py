"""
Abstract base class for LLM providers.
All providers must implement this interface.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, fields, replace

# Receives each text fragment as soon as the provider produces it.
ChunkSink = Callable[[str], Awaitable[None]]


@dataclass
class UsageMetrics:
    """Token, cost and timing figures reported for one generation."""

    generation_id: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    total_cost: float | None = None
    latency_ms: int | None = None
    generation_time_ms: int | None = None

    def merged_with(self, other: "UsageMetrics | None") -> "UsageMetrics":
        """Return a copy where every value reported by ``other`` wins."""
        if other is None:
            return replace(self)
        updates = {
            f.name: getattr(other, f.name)
            for f in fields(self)
            if getattr(other, f.name) is not None
        }
        return replace(self, **updates)


@dataclass
class CompletionOptions:
    """Per-call generation options."""

    model: str | None = None
    temperature: float | None = None
    response_format: str = "text"
    response_schema: str | None = None

    @property
    def is_structured(self) -> bool:
        return self.response_format in ("json", "xml")


@dataclass
class CompletionResult:
    """Complete (non-streamed) response from a provider."""

    text: str
    usage: UsageMetrics


class LLMProvider(ABC):
    """
    Capability every completion backend offers to the chat engine.

    ``messages`` is always the fully assembled list of ``{"role", "content"}``
    dicts, system entry included; providers never add prompts of their own.
    Any failure is raised as ``ProviderError``.
    """

    provider_name: str = "base"

    def __init__(self, default_model: str):
        self.default_model = default_model

    def resolve_model(self, model: str | None) -> str:
        """Model id actually sent to the backend for a requested id."""
        return model or self.default_model

    @abstractmethod
    async def complete(self, messages: list[dict[str, str]], options: CompletionOptions) -> CompletionResult:
        """
        Generate a complete response (non-streaming).

        Args:
            messages: Ordered message dicts with 'role' and 'content'
            options: Model, temperature and response format

        Returns:
            CompletionResult with the generated text and usage
        """

    @abstractmethod
    async def stream_complete(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
        chunk_sink: ChunkSink,
    ) -> UsageMetrics:
        """
        Stream a response, handing every fragment to ``chunk_sink`` in order.

        Returns:
            Usage reported by the backend once the stream is finished
        """

    async def fetch_generation_stats(self, generation_id: str) -> UsageMetrics | None:
        """Look up authoritative usage for a finished generation, if supported."""
        return None
