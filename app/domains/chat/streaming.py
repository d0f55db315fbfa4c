# app/domains/chat/streaming.py
"""Relays a provider's output to the caller as a framed stream.

Every streamed turn produces ``start``, any number of ``chunk`` frames and
exactly one terminal ``end`` or ``error`` frame. The persisted answer is the
concatenation of the chunk payloads.
"""
import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass

from app.exceptions.ai import ProviderError
from app.services.llm import CompletionOptions, CompletionResult, LLMProvider, UsageMetrics

logger = logging.getLogger(__name__)

START = "start"
CHUNK = "chunk"
END = "end"
ERROR = "error"

OnComplete = Callable[[str, UsageMetrics], Awaitable[None]]


@dataclass(frozen=True)
class Frame:
    type: str
    content: str | None = None
    message: str | None = None

    @classmethod
    def start(cls) -> "Frame":
        return cls(START)

    @classmethod
    def chunk(cls, content: str) -> "Frame":
        return cls(CHUNK, content=content)

    @classmethod
    def end(cls) -> "Frame":
        return cls(END)

    @classmethod
    def error(cls, message: str) -> "Frame":
        return cls(ERROR, message=message)

    @property
    def is_terminal(self) -> bool:
        return self.type in (END, ERROR)

    def to_dict(self) -> dict:
        payload = {"type": self.type}
        if self.type == CHUNK:
            payload["content"] = self.content
        elif self.type == ERROR:
            payload["message"] = self.message
        return payload

    def to_sse(self) -> str:
        """Encode as one Server-Sent Events ``data:`` event."""
        return f"data: {json.dumps(self.to_dict())}\n\n"


@dataclass
class _Finished:
    usage: UsageMetrics


@dataclass
class _Failed:
    message: str


def _with_timings(usage: UsageMetrics, started: float, first_chunk_at: float | None, finished: float) -> UsageMetrics:
    """Fill latency and generation time from the local clock where the provider left them empty."""
    measured = UsageMetrics(
        latency_ms=int((first_chunk_at - started) * 1000) if first_chunk_at is not None else None,
        generation_time_ms=int((finished - started) * 1000),
    )
    return measured.merged_with(usage)


class StreamingOrchestrator:
    """Runs one provider call per turn and frames its output."""

    def __init__(self, provider: LLMProvider):
        self.provider = provider

    async def stream_turn(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
        on_complete: OnComplete,
    ) -> AsyncIterator[Frame]:
        """
        Yield the frames of one streamed turn.

        The provider runs in its own task and pushes fragments into a queue;
        frames leave in arrival order. ``on_complete(text, usage)`` is awaited
        once, after the ``end`` frame has been handed out, and never for a
        failed or abandoned turn. Closing the iterator early cancels the
        provider call.
        """
        queue: asyncio.Queue = asyncio.Queue()

        async def sink(text: str) -> None:
            await queue.put(text)

        async def run_provider() -> None:
            try:
                usage = await self.provider.stream_complete(messages, options, sink)
            except ProviderError as e:
                logger.error(
                    f"Provider stream failed: {str(e)}",
                    extra={"provider": self.provider.provider_name, "error_code": e.error_code},
                )
                await queue.put(_Failed(e.message))
            except Exception as e:
                logger.exception("Unexpected provider failure")
                await queue.put(_Failed(f"Streaming failed: {str(e)}"))
            else:
                await queue.put(_Finished(usage or UsageMetrics()))

        started = time.monotonic()
        first_chunk_at = None
        parts: list[str] = []
        usage: UsageMetrics | None = None
        completed = False
        task = asyncio.create_task(run_provider())

        try:
            yield Frame.start()
            while True:
                item = await queue.get()
                if isinstance(item, str):
                    if first_chunk_at is None:
                        first_chunk_at = time.monotonic()
                    parts.append(item)
                    yield Frame.chunk(item)
                elif isinstance(item, _Finished):
                    usage = _with_timings(item.usage, started, first_chunk_at, time.monotonic())
                    completed = True
                    yield Frame.end()
                    break
                else:
                    yield Frame.error(item.message)
                    break
        finally:
            if not task.done():
                logger.info("Stream abandoned before completion, cancelling provider call")
                task.cancel()
                await asyncio.wait([task])
            if completed:
                logger.info(
                    "Stream completed",
                    extra={
                        "provider": self.provider.provider_name,
                        "chunks": len(parts),
                        "response_chars": sum(len(part) for part in parts),
                    },
                )
                await on_complete("".join(parts), usage)

    async def complete_turn(self, messages: list[dict[str, str]], options: CompletionOptions) -> CompletionResult:
        """Non-streaming turn: the whole answer or a ``ProviderError``."""
        started = time.monotonic()
        try:
            result = await self.provider.complete(messages, options)
        except ProviderError:
            raise
        except Exception as e:
            logger.exception("Unexpected provider failure")
            raise ProviderError(f"Completion failed: {str(e)}") from e

        finished = time.monotonic()
        measured = UsageMetrics(
            latency_ms=int((finished - started) * 1000),
            generation_time_ms=int((finished - started) * 1000),
        )
        return CompletionResult(text=result.text, usage=measured.merged_with(result.usage))
