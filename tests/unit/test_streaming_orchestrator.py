"""Unit tests for StreamingOrchestrator and stream frames."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from app.domains.chat.streaming import Frame, StreamingOrchestrator
from app.exceptions.ai import ProviderError, ProviderTimeoutError
from app.services.llm import CompletionOptions, UsageMetrics

from tests.factories import FakeProvider

MESSAGES = [{"role": "system", "content": "Be nice."}, {"role": "user", "content": "Hello"}]


async def collect(frames) -> list[Frame]:
    return [frame async for frame in frames]


class TestFrame:
    """Test cases for frame encoding."""

    def test_sse_encoding(self):
        assert Frame.start().to_sse() == 'data: {"type": "start"}\n\n'
        assert Frame.chunk("Hi").to_sse() == 'data: {"type": "chunk", "content": "Hi"}\n\n'
        assert Frame.end().to_sse() == 'data: {"type": "end"}\n\n'
        assert json.loads(Frame.error("boom").to_sse()[6:]) == {"type": "error", "message": "boom"}

    def test_terminal_frames(self):
        assert Frame.end().is_terminal
        assert Frame.error("x").is_terminal
        assert not Frame.start().is_terminal
        assert not Frame.chunk("x").is_terminal


class TestStreamTurn:
    """Test cases for a streamed turn."""

    @pytest.mark.asyncio
    async def test_frame_sequence(self):
        provider = FakeProvider(chunks=["Hel", "lo", "!"])
        on_complete = AsyncMock()

        frames = await collect(StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), on_complete))

        assert [f.type for f in frames] == ["start", "chunk", "chunk", "chunk", "end"]
        assert [f.content for f in frames if f.type == "chunk"] == ["Hel", "lo", "!"]
        assert provider.calls == [(MESSAGES, CompletionOptions())]

    @pytest.mark.asyncio
    async def test_completion_receives_concatenated_text(self):
        provider = FakeProvider(
            chunks=["{", '"a": ', "1", "}"],
            usage=UsageMetrics(generation_id="gen-1", prompt_tokens=5, completion_tokens=3, total_tokens=8),
        )
        on_complete = AsyncMock()

        await collect(StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), on_complete))

        on_complete.assert_awaited_once()
        text, usage = on_complete.await_args.args
        assert text == '{"a": 1}'
        assert usage.generation_id == "gen-1"
        assert usage.total_tokens == 8
        assert usage.latency_ms is not None
        assert usage.generation_time_ms is not None

    @pytest.mark.asyncio
    async def test_completion_runs_after_end_frame(self):
        events = []
        provider = FakeProvider(chunks=["a"])

        async def on_complete(text, usage):
            events.append("recorded")

        async for frame in StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), on_complete):
            events.append(frame.type)

        assert events == ["start", "chunk", "end", "recorded"]

    @pytest.mark.asyncio
    async def test_provider_timings_are_kept(self):
        provider = FakeProvider(usage=UsageMetrics(latency_ms=250, generation_time_ms=900))
        on_complete = AsyncMock()

        await collect(StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), on_complete))

        usage = on_complete.await_args.args[1]
        assert usage.latency_ms == 250
        assert usage.generation_time_ms == 900

    @pytest.mark.asyncio
    async def test_empty_answer_still_completes(self):
        provider = FakeProvider(chunks=[])
        on_complete = AsyncMock()

        frames = await collect(StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), on_complete))

        assert [f.type for f in frames] == ["start", "end"]
        assert on_complete.await_args.args[0] == ""
        assert on_complete.await_args.args[1].latency_ms is None

    @pytest.mark.asyncio
    async def test_mid_stream_failure(self):
        """Two chunks then a provider error: error frame, no completion."""
        provider = FakeProvider(chunks=["one ", "two ", "three"]).fail_with(
            ProviderError("Stream error: upstream reset"), after=2
        )
        on_complete = AsyncMock()

        frames = await collect(StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), on_complete))

        assert [f.type for f in frames] == ["start", "chunk", "chunk", "error"]
        assert frames[-1].message == "Stream error: upstream reset"
        on_complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_before_first_chunk(self):
        provider = FakeProvider().fail_with(ProviderTimeoutError("OpenRouter stream timed out"))
        on_complete = AsyncMock()

        frames = await collect(StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), on_complete))

        assert [f.type for f in frames] == ["start", "error"]
        assert frames[-1].message == "OpenRouter stream timed out"
        on_complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error_frame(self):
        provider = FakeProvider(chunks=["a", "b"]).fail_with(RuntimeError("socket closed"), after=1)
        on_complete = AsyncMock()

        frames = await collect(StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), on_complete))

        assert [f.type for f in frames] == ["start", "chunk", "error"]
        assert frames[-1].message == "Streaming failed: socket closed"
        on_complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exactly_one_terminal_frame(self):
        provider = FakeProvider(chunks=["x"] * 20)

        frames = await collect(StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), AsyncMock()))

        assert sum(1 for f in frames if f.is_terminal) == 1
        assert frames[-1].is_terminal

    @pytest.mark.asyncio
    async def test_closing_stream_cancels_provider(self):
        """A consumer that goes away stops the provider call and records nothing."""
        provider = FakeProvider(chunks=["first", "second", "third"])
        provider.block_after = 1
        on_complete = AsyncMock()

        frames = StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), on_complete)
        assert (await anext(frames)).type == "start"
        assert (await anext(frames)).content == "first"
        await frames.aclose()

        assert provider.cancelled
        on_complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_not_started_until_iterated(self):
        provider = FakeProvider()

        frames = StreamingOrchestrator(provider).stream_turn(MESSAGES, CompletionOptions(), AsyncMock())
        await asyncio.sleep(0)

        assert provider.calls == []
        await frames.aclose()


class TestCompleteTurn:
    """Test cases for non-streaming turns."""

    @pytest.mark.asyncio
    async def test_returns_text_and_usage(self):
        provider = FakeProvider(chunks=["Hello", " there"])

        result = await StreamingOrchestrator(provider).complete_turn(MESSAGES, CompletionOptions(model="m"))

        assert result.text == "Hello there"
        assert result.usage.generation_id == "gen-123"
        assert result.usage.latency_ms is not None

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self):
        provider = FakeProvider().fail_with(ProviderTimeoutError())

        with pytest.raises(ProviderTimeoutError):
            await StreamingOrchestrator(provider).complete_turn(MESSAGES, CompletionOptions())

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_wrapped(self):
        provider = FakeProvider().fail_with(KeyError("choices"))

        with pytest.raises(ProviderError) as exc_info:
            await StreamingOrchestrator(provider).complete_turn(MESSAGES, CompletionOptions())

        assert exc_info.value.message.startswith("Completion failed:")
        assert exc_info.value.status_code == 502
