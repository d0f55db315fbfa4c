# app/domains/chat/usage.py
"""Persists assistant messages together with their usage figures."""
import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.domains.chat.repository import ConversationRepository
from app.exceptions.ai import GenerationNotReadyError, ProviderError
from app.services.llm import LLMProvider, UsageMetrics
from models import Message, MessageRole

logger = logging.getLogger(__name__)


class UsageRecorder:
    """
    Writes the assistant message of a finished turn.

    Runs in its own session from ``session_factory`` because a streamed
    response outlives the request's session. Failures are logged and never
    raised: the caller has already delivered the answer.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int = 3,
        min_wait: float = 0.5,
        max_wait: float = 2.0,
    ):
        self.session_factory = session_factory
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait

    async def record(
        self,
        conversation_id: UUID,
        content: str,
        metrics: UsageMetrics,
        model: str,
        temperature: float | None,
        provider: LLMProvider,
    ) -> Message | None:
        """Persist the assistant message; returns it, or ``None`` when nothing was written."""
        if not content:
            logger.warning("Empty assistant response, nothing recorded", extra={"conversation_id": str(conversation_id)})
            return None

        usage = metrics.merged_with(await self.fetch_generation_stats(provider, metrics.generation_id))

        try:
            async with self.session_factory() as session:
                repository = ConversationRepository(session)
                conversation = await repository.get_conversation(conversation_id)
                if conversation is None:
                    logger.warning(
                        "Conversation removed before the answer was recorded",
                        extra={"conversation_id": str(conversation_id)},
                    )
                    return None

                message = await repository.add_message(
                    conversation,
                    MessageRole.ASSISTANT,
                    content,
                    model=model,
                    temperature=temperature,
                    provider=provider.provider_name,
                    generation_id=usage.generation_id,
                    prompt_tokens=usage.prompt_tokens,
                    completion_tokens=usage.completion_tokens,
                    total_tokens=usage.total_tokens,
                    total_cost=usage.total_cost,
                    latency_ms=usage.latency_ms,
                    generation_time_ms=usage.generation_time_ms,
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(
                f"Error saving assistant message: {str(e)}",
                extra={"conversation_id": str(conversation_id)},
            )
            return None

        logger.info(
            "Recorded assistant message",
            extra={
                "conversation_id": str(conversation_id),
                "message_id": str(message.id),
                "total_tokens": usage.total_tokens,
                "total_cost": usage.total_cost,
            },
        )
        return message

    async def fetch_generation_stats(self, provider: LLMProvider, generation_id: str | None) -> UsageMetrics | None:
        """Authoritative usage from the provider, retried while it is not published yet."""
        if not generation_id:
            return None

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(GenerationNotReadyError),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.min_wait, min=self.min_wait, max=self.max_wait),
                before_sleep=before_sleep_log(logger, logging.INFO),
            ):
                with attempt:
                    return await provider.fetch_generation_stats(generation_id)
        except (RetryError, ProviderError) as e:
            logger.warning(
                f"Generation stats unavailable, keeping streamed usage: {str(e)}",
                extra={"generation_id": generation_id},
            )
        except Exception:
            logger.exception(
                "Unexpected generation stats failure, keeping streamed usage",
                extra={"generation_id": generation_id},
            )
        return None
