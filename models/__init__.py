"""
Models package initialization.
"""

from .base import Base, BaseModel
from .conversation import Conversation
from .conversation_summary import ConversationSummary
from .message import Message, MessageRole
from .user import User

__all__ = [
    "Base",
    "BaseModel",
    "User",
    # Chat models
    "Conversation",
    "Message",
    "MessageRole",
    "ConversationSummary",
]
