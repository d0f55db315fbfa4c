"""
Conversation summary model: compacted history of a conversation.
"""

from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship

from .base import UUID, BaseModel


class ConversationSummary(BaseModel):
    """
    A summary of a conversation up to (and including) one message.

    ``summarized_up_to_message_id`` is a non-owning reference: deleting the
    message nulls it and the summary text stays valid. Only ``usage_count``
    changes after creation.
    """

    __tablename__ = "conversation_summaries"

    conversation_id = Column(
        UUID(), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    summary_content = Column(Text, nullable=False)
    summarized_up_to_message_id = Column(
        UUID(), ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    usage_count = Column(Integer, nullable=False, default=0)

    # Relationships
    conversation = relationship(
        "Conversation", back_populates="summaries", foreign_keys=[conversation_id]
    )
