# app/domains/chat/repository.py
"""Data access for conversations, messages and summaries.

Lookups return ``None`` for missing rows; SQLAlchemy errors propagate so the
callers can tell a missing row apart from a storage failure. Writes are added
and flushed only, the caller owns the transaction.
"""
from datetime import timedelta
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import Conversation, ConversationSummary, Message, MessageRole
from models.base import utcnow


class ConversationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ===== Conversations =====

    async def get_conversation(self, conversation_id: UUID, user_id: UUID | None = None) -> Conversation | None:
        """Get a conversation, optionally restricted to its owner."""
        query = select(Conversation).where(Conversation.id == conversation_id)
        if user_id is not None:
            query = query.where(Conversation.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def create_conversation(
        self,
        user_id: UUID,
        title: str,
        response_format: str,
        response_schema: str | None,
    ) -> Conversation:
        conversation = Conversation(
            user_id=user_id,
            title=title,
            response_format=response_format,
            response_schema=response_schema,
        )
        self.db.add(conversation)
        await self.db.flush()
        return conversation

    async def list_conversations_for_user(
        self, user_id: UUID, offset: int = 0, limit: int = 20
    ) -> tuple[list[tuple[Conversation, int, UUID | None]], int]:
        """
        Return one page of a user's conversations, most recently updated first, and the total.

        Each row is ``(conversation, message_count, summarized_up_to_message_id)``,
        the last value taken from the active summary.
        """
        total = await self.db.scalar(
            select(func.count(Conversation.id)).where(Conversation.user_id == user_id)
        )

        message_count = (
            select(func.count(Message.id))
            .where(Message.conversation_id == Conversation.id)
            .correlate(Conversation)
            .scalar_subquery()
        )
        summarized_up_to = (
            select(ConversationSummary.summarized_up_to_message_id)
            .where(ConversationSummary.id == Conversation.active_summary_id)
            .correlate(Conversation)
            .scalar_subquery()
        )
        result = await self.db.execute(
            select(Conversation, message_count, summarized_up_to)
            .where(Conversation.user_id == user_id)
            .order_by(Conversation.updated_at.desc(), Conversation.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return [(row[0], row[1], row[2]) for row in result.all()], total or 0

    async def delete_conversation(self, conversation: Conversation) -> None:
        # Break the conversation -> summary reference before the cascade runs
        conversation.active_summary_id = None
        await self.db.flush()
        await self.db.execute(
            delete(ConversationSummary).where(ConversationSummary.conversation_id == conversation.id)
        )
        await self.db.execute(delete(Message).where(Message.conversation_id == conversation.id))
        await self.db.delete(conversation)
        await self.db.flush()

    # ===== Messages =====

    async def add_message(
        self,
        conversation: Conversation,
        role: MessageRole,
        content: str,
        **generation,
    ) -> Message:
        """
        Append a message to a conversation.

        ``created_at`` is kept strictly increasing within the conversation:
        a timestamp equal to or older than the latest one is bumped by one
        microsecond past it. The conversation's ``updated_at`` follows.
        """
        created_at = utcnow()
        latest = await self.db.scalar(
            select(func.max(Message.created_at)).where(Message.conversation_id == conversation.id)
        )
        if latest is not None and created_at <= latest:
            created_at = latest + timedelta(microseconds=1)

        message = Message(
            conversation_id=conversation.id,
            role=role,
            content=content,
            created_at=created_at,
            **generation,
        )
        self.db.add(message)
        conversation.updated_at = created_at
        await self.db.flush()
        return message

    async def get_message(self, message_id: UUID) -> Message | None:
        result = await self.db.execute(select(Message).where(Message.id == message_id))
        return result.scalar_one_or_none()

    async def list_messages(self, conversation_id: UUID) -> list[Message]:
        result = await self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at, Message.id)
        )
        return list(result.scalars().all())

    async def list_messages_after(self, conversation_id: UUID, message_id: UUID) -> list[Message] | None:
        """Messages created after ``message_id``; ``None`` when that message no longer exists."""
        anchor = await self.get_message(message_id)
        if anchor is None or anchor.conversation_id != conversation_id:
            return None

        result = await self.db.execute(
            select(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.created_at > anchor.created_at,
            )
            .order_by(Message.created_at, Message.id)
        )
        return list(result.scalars().all())

    async def last_message_id(self, conversation_id: UUID) -> UUID | None:
        return await self.db.scalar(
            select(Message.id)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
        )

    # ===== Summaries =====

    async def get_active_summary(self, conversation: Conversation) -> ConversationSummary | None:
        if conversation.active_summary_id is None:
            return None
        result = await self.db.execute(
            select(ConversationSummary).where(ConversationSummary.id == conversation.active_summary_id)
        )
        return result.scalar_one_or_none()

    async def create_summary(
        self,
        conversation_id: UUID,
        summary_content: str,
        summarized_up_to_message_id: UUID | None,
    ) -> ConversationSummary:
        summary = ConversationSummary(
            conversation_id=conversation_id,
            summary_content=summary_content,
            summarized_up_to_message_id=summarized_up_to_message_id,
            usage_count=0,
        )
        self.db.add(summary)
        await self.db.flush()
        return summary

    async def set_active_summary(self, conversation: Conversation, summary_id: UUID) -> None:
        conversation.active_summary_id = summary_id
        await self.db.flush()

    async def list_all_summaries(self, conversation_id: UUID) -> list[ConversationSummary]:
        result = await self.db.execute(
            select(ConversationSummary)
            .where(ConversationSummary.conversation_id == conversation_id)
            .order_by(ConversationSummary.created_at, ConversationSummary.id)
        )
        return list(result.scalars().all())

    async def increment_summary_usage(self, summary_id: UUID) -> None:
        await self.db.execute(
            update(ConversationSummary)
            .where(ConversationSummary.id == summary_id)
            .values(usage_count=ConversationSummary.usage_count + 1)
        )

    async def load_unsummarized(
        self, conversation: Conversation
    ) -> tuple[ConversationSummary | None, list[Message]]:
        """
        Return the active summary and the messages it does not cover.

        Without a summary, or when the summary's "summarized up to" message is
        null or gone, every message of the conversation is returned.
        """
        summary = await self.get_active_summary(conversation)
        if summary is not None and summary.summarized_up_to_message_id is not None:
            after = await self.list_messages_after(conversation.id, summary.summarized_up_to_message_id)
            if after is not None:
                return summary, after
        return summary, await self.list_messages(conversation.id)
