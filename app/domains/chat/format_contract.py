# app/domains/chat/format_contract.py
"""Response format rules of a conversation.

A conversation answers in ``text``, ``json`` or ``xml``. The format and its
schema are chosen when the conversation is created and never change
afterwards.
"""
from app.exceptions.chat import FormatLockedError, InvalidFormatError, SchemaRequiredError
from models import Conversation

TEXT = "text"
JSON = "json"
XML = "xml"
VALID_FORMATS = (TEXT, JSON, XML)

_STRUCTURED_INSTRUCTION = (
    "You must respond ONLY with valid {label} that matches this exact schema. "
    "Do not include any explanatory text, markdown formatting, or code blocks - just the raw {label}.\n\n"
    "Schema:\n{schema}\n\n"
    "Remember: Your entire response must be valid {label} matching this schema."
)


class FormatContract:
    """Validates format requests and renders the instruction sent to the model."""

    @staticmethod
    def validate_new_conversation(
        response_format: str | None, response_schema: str | None
    ) -> tuple[str, str | None]:
        """Normalize the format and schema of a conversation being created.

        Args:
            response_format: Requested format, ``None`` meaning text
            response_schema: Schema text, required for json and xml

        Returns:
            The ``(format, schema)`` pair to store. Text conversations never
            keep a schema.

        Raises:
            InvalidFormatError: Format is not text, json or xml
            SchemaRequiredError: Structured format without a schema
        """
        response_format = response_format or TEXT
        if response_format not in VALID_FORMATS:
            raise InvalidFormatError(response_format)

        if response_format == TEXT:
            return TEXT, None

        if not response_schema or not response_schema.strip():
            raise SchemaRequiredError(response_format)
        return response_format, response_schema

    @staticmethod
    def validate_turn(
        conversation: Conversation,
        requested_format: str | None,
        requested_schema: str | None = None,
    ) -> None:
        """Reject a turn that asks an existing conversation for another format or schema."""
        if requested_format and requested_format != conversation.response_format:
            raise FormatLockedError(
                f"Conversation format is locked to '{conversation.response_format}'",
                details={
                    "conversation_format": conversation.response_format,
                    "requested_format": requested_format,
                },
            )
        if requested_schema and requested_schema != conversation.response_schema:
            raise FormatLockedError(
                "Conversation response schema cannot be changed",
                details={"conversation_format": conversation.response_format},
            )

    @staticmethod
    def format_instruction(conversation: Conversation) -> str | None:
        if conversation.response_format not in (JSON, XML) or not conversation.response_schema:
            return None
        return _STRUCTURED_INSTRUCTION.format(
            label=conversation.response_format.upper(), schema=conversation.response_schema
        )
