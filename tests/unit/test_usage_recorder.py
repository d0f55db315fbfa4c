"""Unit tests for UsageRecorder."""

import uuid
from unittest.mock import MagicMock

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from app.domains.chat.repository import ConversationRepository
from app.domains.chat.usage import UsageRecorder
from app.exceptions.ai import ProviderUnavailableError
from app.services.llm import UsageMetrics
from app.services.llm.openrouter import OpenRouterProvider
from models import MessageRole

from tests.factories import FakeProvider, create_conversation_with_messages

STREAMED = UsageMetrics(
    generation_id="gen-abc",
    prompt_tokens=10,
    completion_tokens=5,
    total_tokens=15,
    latency_ms=120,
    generation_time_ms=800,
)


@pytest.fixture
def recorder(session_factory):
    return UsageRecorder(session_factory, max_attempts=3, min_wait=0, max_wait=0)


async def stored_messages(session_factory, conversation_id):
    async with session_factory() as session:
        return await ConversationRepository(session).list_messages(conversation_id)


class TestRecord:
    """Test cases for persisting assistant messages."""

    @pytest.mark.asyncio
    async def test_records_streamed_usage(self, recorder, test_db, test_user, session_factory):
        conversation, _ = await create_conversation_with_messages(test_db, test_user.id, ["Hi"])
        provider = FakeProvider()

        message = await recorder.record(conversation.id, "Hello!", STREAMED, "openai/gpt-4o-mini", 0.7, provider)

        assert message is not None
        stored = (await stored_messages(session_factory, conversation.id))[-1]
        assert stored.id == message.id
        assert stored.role == MessageRole.ASSISTANT
        assert stored.content == "Hello!"
        assert stored.model == "openai/gpt-4o-mini"
        assert stored.temperature == 0.7
        assert stored.provider == "fake"
        assert stored.generation_id == "gen-abc"
        assert stored.total_tokens == 15
        assert stored.latency_ms == 120
        assert stored.total_cost is None

    @pytest.mark.asyncio
    async def test_generation_stats_override_streamed_values(self, recorder, test_db, test_user, session_factory):
        conversation, _ = await create_conversation_with_messages(test_db, test_user.id, ["Hi"])
        provider = FakeProvider()
        provider.stats = UsageMetrics(
            generation_id="gen-abc", prompt_tokens=11, completion_tokens=6, total_tokens=17, total_cost=0.00042
        )

        await recorder.record(conversation.id, "Hello!", STREAMED, "openai/gpt-4o-mini", None, provider)

        stored = (await stored_messages(session_factory, conversation.id))[-1]
        assert stored.prompt_tokens == 11
        assert stored.total_tokens == 17
        assert stored.total_cost == pytest.approx(0.00042)
        assert stored.latency_ms == 120
        assert stored.generation_time_ms == 800

    @pytest.mark.asyncio
    async def test_updates_conversation_activity(self, recorder, test_db, test_user, session_factory):
        conversation, messages = await create_conversation_with_messages(test_db, test_user.id, ["Hi"])

        message = await recorder.record(conversation.id, "Hello!", STREAMED, "m", None, FakeProvider())

        async with session_factory() as session:
            stored = await ConversationRepository(session).get_conversation(conversation.id)
        assert stored.updated_at == message.created_at
        assert message.created_at > messages[-1].created_at

    @pytest.mark.asyncio
    async def test_empty_content_is_not_recorded(self, recorder, test_db, test_user, session_factory):
        conversation, _ = await create_conversation_with_messages(test_db, test_user.id, ["Hi"])

        assert await recorder.record(conversation.id, "", STREAMED, "m", None, FakeProvider()) is None
        assert len(await stored_messages(session_factory, conversation.id)) == 1

    @pytest.mark.asyncio
    async def test_deleted_conversation(self, recorder, test_db, test_user):
        assert await recorder.record(uuid.uuid4(), "Hello!", STREAMED, "m", None, FakeProvider()) is None

    @pytest.mark.asyncio
    async def test_storage_failure_is_not_raised(self, test_user):
        session = MagicMock()
        session.__aenter__.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        recorder = UsageRecorder(MagicMock(return_value=session), min_wait=0, max_wait=0)

        assert await recorder.record(uuid.uuid4(), "Hello!", STREAMED, "m", None, FakeProvider()) is None


class TestFetchGenerationStats:
    """Test cases for the retried generation statistics lookup."""

    @pytest.mark.asyncio
    async def test_retries_until_ready(self, recorder):
        provider = FakeProvider()
        provider.stats = UsageMetrics(total_cost=0.01)
        provider.stats_not_ready = 2

        stats = await recorder.fetch_generation_stats(provider, "gen-1")

        assert stats.total_cost == 0.01
        assert provider.stats_lookups == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, recorder):
        provider = FakeProvider()
        provider.stats = UsageMetrics(total_cost=0.01)
        provider.stats_not_ready = 5

        assert await recorder.fetch_generation_stats(provider, "gen-1") is None
        assert provider.stats_lookups == 3

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self, recorder):
        provider = FakeProvider()
        provider.stats_error = ProviderUnavailableError()

        assert await recorder.fetch_generation_stats(provider, "gen-1") is None
        assert provider.stats_lookups == 1

    @pytest.mark.asyncio
    async def test_without_generation_id(self, recorder):
        provider = FakeProvider()

        assert await recorder.fetch_generation_stats(provider, None) is None
        assert provider.stats_lookups == 0

    @pytest.mark.asyncio
    async def test_stats_failure_keeps_streamed_usage(self, recorder, test_db, test_user, session_factory):
        conversation, _ = await create_conversation_with_messages(test_db, test_user.id, ["Hi"])
        provider = FakeProvider()
        provider.stats_not_ready = 10

        await recorder.record(conversation.id, "Hello!", STREAMED, "m", None, provider)

        stored = (await stored_messages(session_factory, conversation.id))[-1]
        assert stored.prompt_tokens == 10
        assert stored.total_cost is None

    @pytest.mark.asyncio
    async def test_unexpected_stats_error_keeps_streamed_usage(self, recorder, test_db, test_user, session_factory):
        conversation, _ = await create_conversation_with_messages(test_db, test_user.id, ["Hi"])
        provider = FakeProvider()
        provider.stats_error = KeyError("data")

        message = await recorder.record(conversation.id, "Hello!", STREAMED, "m", None, provider)

        assert message is not None
        stored = (await stored_messages(session_factory, conversation.id))[-1]
        assert stored.content == "Hello!"
        assert stored.total_tokens == 15

    @pytest.mark.asyncio
    async def test_invalid_stats_body_still_records_message(self, recorder, test_db, test_user, session_factory):
        conversation, _ = await create_conversation_with_messages(test_db, test_user.id, ["Hi"])
        provider = OpenRouterProvider(
            api_key="sk-test",
            default_model="openai/gpt-4o-mini",
            base_url="https://openrouter.test/api/v1",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>")),
        )

        message = await recorder.record(
            conversation.id, "Hello!", UsageMetrics(generation_id="gen-1"), "openai/gpt-4o-mini", None, provider
        )

        assert message is not None
        stored = await stored_messages(session_factory, conversation.id)
        assert [(m.role, m.content) for m in stored] == [(MessageRole.USER, "Hi"), (MessageRole.ASSISTANT, "Hello!")]
        assert stored[-1].provider == "openrouter"
        assert stored[-1].generation_id == "gen-1"
