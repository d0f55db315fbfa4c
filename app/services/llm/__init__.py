"""LLM provider capability and its implementations."""

from .base import ChunkSink, CompletionOptions, CompletionResult, LLMProvider, UsageMetrics
from .registry import DEFAULT_PROVIDER, ProviderRegistry

__all__ = [
    "ChunkSink",
    "CompletionOptions",
    "CompletionResult",
    "LLMProvider",
    "UsageMetrics",
    "ProviderRegistry",
    "DEFAULT_PROVIDER",
]
