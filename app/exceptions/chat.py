# ruff: noqa: D107
"""Chat engine exceptions."""

from typing import Any

from .base import BaseAppException, NotFoundError, StorageError, ValidationError


class InvalidFormatError(ValidationError):
    """Response format is not one of text, json or xml."""

    def __init__(self, response_format: str):
        super().__init__(
            f"Invalid response format '{response_format}'. Must be one of: text, json, xml",
            details={"response_format": response_format},
            error_code="INVALID_FORMAT",
        )


class SchemaRequiredError(ValidationError):
    """A structured format was requested without a schema."""

    def __init__(self, response_format: str):
        super().__init__(
            f"A response schema is required for format '{response_format}'",
            details={"response_format": response_format},
            error_code="SCHEMA_REQUIRED",
        )


class FormatLockedError(ValidationError):
    """A turn asked for a format or schema different from the conversation's."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details=details, error_code="FORMAT_LOCKED")


class ConversationNotFoundError(NotFoundError):
    """Conversation does not exist or belongs to another user."""

    def __init__(self, conversation_id: Any = None):
        super().__init__(
            "Conversation not found",
            details={"conversation_id": str(conversation_id)} if conversation_id else None,
        )


class NothingToSummarizeError(BaseAppException):
    """Every message of the conversation is already covered by the active summary."""

    def __init__(self, conversation_id: Any = None):
        super().__init__(
            "No new messages to summarize",
            status_code=409,
            error_code="NOTHING_TO_SUMMARIZE",
            details={"conversation_id": str(conversation_id)} if conversation_id else None,
        )


class ContextUnavailableError(StorageError):
    """Conversation history could not be read while assembling context."""

    def __init__(
        self,
        message: str = "Conversation context is temporarily unavailable",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message, details=details, status_code=503, error_code="CONTEXT_UNAVAILABLE"
        )
