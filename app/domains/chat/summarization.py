# app/domains/chat/summarization.py
"""Compacts conversation history into summaries."""
import logging
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domains.chat.repository import ConversationRepository
from app.domains.chat.streaming import StreamingOrchestrator
from app.exceptions.base import StorageError
from app.exceptions.chat import NothingToSummarizeError
from app.services.llm import CompletionOptions, LLMProvider
from models import Conversation, ConversationSummary

logger = logging.getLogger(__name__)


class SummarizationEngine:
    """Creates summaries on request and keeps their usage counters."""

    def __init__(self, db: AsyncSession, summarization_prompt: str):
        """Initialize the engine.

        Args:
            db: Async database session; summaries are committed on it
            summarization_prompt: The only system prompt of summarization calls
        """
        self.db = db
        self.repository = ConversationRepository(db)
        self.summarization_prompt = summarization_prompt

    async def summarize(
        self,
        conversation: Conversation,
        provider: LLMProvider,
        model: str | None = None,
        temperature: float | None = None,
    ) -> ConversationSummary:
        """Summarize everything the active summary does not cover yet.

        The previous summary, if any, is folded in as a leading assistant
        message. The new summary covers up to the latest message and becomes
        the active one; older summaries are kept.

        Raises:
            NothingToSummarizeError: No message after the active summary
            ProviderError: The summarization call failed, nothing was written
            StorageError: The summary could not be saved, nothing was written
        """
        try:
            previous, pending = await self.repository.load_unsummarized(conversation)
            last_message_id = await self.repository.last_message_id(conversation.id)
        except SQLAlchemyError as e:
            logger.error(f"Error reading conversation for summarization: {str(e)}")
            raise StorageError("Failed to read conversation history") from e

        if not pending:
            raise NothingToSummarizeError(conversation.id)

        messages = [{"role": "system", "content": self.summarization_prompt}]
        if previous is not None:
            messages.append({"role": "assistant", "content": f"Previous summary:\n{previous.summary_content}"})
        messages.extend({"role": message.role.value, "content": message.content} for message in pending)

        logger.info(
            "Calling LLM to generate summary",
            extra={
                "conversation_id": str(conversation.id),
                "message_count": len(pending),
                "incremental": previous is not None,
            },
        )
        options = CompletionOptions(model=model, temperature=temperature)
        result = await StreamingOrchestrator(provider).complete_turn(messages, options)

        try:
            summary = await self.repository.create_summary(conversation.id, result.text, last_message_id)
            await self.repository.set_active_summary(conversation, summary.id)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error saving summary: {str(e)}")
            raise StorageError("Failed to save summary") from e

        logger.info(
            "Generated summary",
            extra={"conversation_id": str(conversation.id), "summary_chars": len(result.text)},
        )
        return summary

    async def increment_usage(self, summary_id: UUID) -> None:
        """Count one more turn that used the summary. Never raises."""
        try:
            await self.repository.increment_summary_usage(summary_id)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Failed to increment summary usage count: {str(e)}")

    async def list_summaries(self, conversation: Conversation) -> list[ConversationSummary]:
        return await self.repository.list_all_summaries(conversation.id)

