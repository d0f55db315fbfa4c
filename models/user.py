"""
Provides the User model for the chat backend.

Users are not registered here: the bearer token issued by the external
identity service carries the username in its ``sub`` claim and the row is
created the first time that user calls the API.

Attributes
----------
username : sqlalchemy.Column
    Unique username taken from the token subject.
email : sqlalchemy.Column
    Optional email address copied from the token payload.
is_active : sqlalchemy.Column
    Inactive users are rejected by the authentication dependency.

Relationships
-------------
conversations : sqlalchemy.orm.relationship
    One-to-many relationship with ``Conversation``, cascade-deleted.
"""

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from .base import BaseModel, utcnow


class User(BaseModel):
    """
    Represents an authenticated caller of the chat API.

    :ivar username: Username from the token subject. Unique.
    :type username: str
    :ivar email: Email address of the user. Optional.
    :type email: str
    :ivar is_active: Indicates whether the user account is active.
    :type is_active: bool
    """

    __tablename__ = "users"

    username = Column(String(255), unique=True, nullable=False)
    email = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    conversations = relationship("Conversation", back_populates="user", cascade="all, delete-orphan")
