"""
Conversation model: one multi-turn chat owned by a user.
"""

from sqlalchemy import Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel, utcnow


class Conversation(BaseModel):
    """
    Represents a chat conversation.

    ``response_format`` and ``response_schema`` are fixed when the row is
    created. ``active_summary_id`` points at the summary currently used to
    compact context for new turns; older summaries stay in
    ``conversation_summaries``.
    """

    __tablename__ = "conversations"

    user_id = Column(UUID(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=True)  # First user message, truncated
    response_format = Column(String(10), nullable=False, default="text")
    response_schema = Column(Text, nullable=True)
    active_summary_id = Column(
        UUID(),
        ForeignKey(
            "conversation_summaries.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_conversations_active_summary_id",
        ),
        nullable=True,
    )
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )
    summaries = relationship(
        "ConversationSummary",
        back_populates="conversation",
        cascade="all, delete-orphan",
        foreign_keys="ConversationSummary.conversation_id",
        order_by="ConversationSummary.created_at",
    )
