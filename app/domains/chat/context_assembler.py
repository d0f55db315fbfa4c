# app/domains/chat/context_assembler.py
"""Builds the message list sent to the model for one turn."""
import logging
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from app.domains.chat.format_contract import FormatContract
from app.domains.chat.repository import ConversationRepository
from app.exceptions.base import ValidationError
from app.exceptions.chat import ContextUnavailableError
from models import Conversation, ConversationSummary

logger = logging.getLogger(__name__)

SUMMARY_LABEL = "Previous conversation summary:"


@dataclass(frozen=True)
class SupplementaryContext:
    """A large background text that turns may include a prefix of."""

    title: str
    text: str

    @classmethod
    def load(cls, path: str | None, title: str) -> "SupplementaryContext | None":
        """Read the source file once; a missing file only disables the feature."""
        if not path:
            return None
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Supplementary context not loaded from {path}: {str(e)}")
            return None
        logger.info("Loaded supplementary context", extra={"path": path, "characters": len(text)})
        return cls(title=title, text=text)

    def prefix(self, percent: int) -> str:
        """First ``floor(len * percent / 100)`` characters of the source."""
        if percent < 0 or percent > 100:
            raise ValidationError(
                "Supplementary context percent must be between 0 and 100",
                details={"supplementary_context_percent": percent},
            )
        return self.text[: len(self.text) * percent // 100]


@dataclass
class AssembledContext:
    messages: list[dict[str, str]] = field(default_factory=list)
    summary: ConversationSummary | None = None


class ContextAssembler:
    """
    Produces the ordered ``{"role", "content"}`` list for a turn.

    The list starts with a single system entry made of, in order and separated
    by blank lines: the default system prompt, the caller's system prompt, the
    format instruction, the active summary and the supplementary context
    prefix. The messages not covered by the active summary follow in
    chronological order, then the new user message. Nothing is written.
    """

    def __init__(
        self,
        repository: ConversationRepository,
        default_system_prompt: str,
        supplementary: SupplementaryContext | None = None,
    ):
        self.repository = repository
        self.default_system_prompt = default_system_prompt
        self.supplementary = supplementary

    async def assemble(
        self,
        conversation: Conversation,
        new_message: str,
        custom_system_prompt: str | None = None,
        supplementary_percent: int | None = None,
    ) -> AssembledContext:
        try:
            summary, history = await self.repository.load_unsummarized(conversation)
        except SQLAlchemyError as e:
            logger.error(f"Error reading conversation history: {str(e)}")
            raise ContextUnavailableError(details={"conversation_id": str(conversation.id)}) from e

        sections = [self.default_system_prompt, custom_system_prompt, FormatContract.format_instruction(conversation)]
        if summary is not None:
            sections.append(f"{SUMMARY_LABEL}\n{summary.summary_content}")
        sections.append(self._supplementary_section(supplementary_percent))

        system_prompt = "\n\n".join(section for section in sections if section)
        messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
        messages.extend({"role": message.role.value, "content": message.content} for message in history)
        messages.append({"role": "user", "content": new_message})

        logger.debug(
            "Assembled context",
            extra={
                "conversation_id": str(conversation.id),
                "summary_id": str(summary.id) if summary else None,
                "history_messages": len(history),
                "system_prompt_chars": len(system_prompt),
            },
        )
        return AssembledContext(messages=messages, summary=summary)

    def _supplementary_section(self, percent: int | None) -> str | None:
        if percent is None:
            return None
        if percent < 0 or percent > 100:
            raise ValidationError(
                "Supplementary context percent must be between 0 and 100",
                details={"supplementary_context_percent": percent},
            )
        if self.supplementary is None:
            logger.warning("Supplementary context requested but not loaded")
            return None
        text = self.supplementary.prefix(percent)
        if not text:
            return None
        return f"{self.supplementary.title}:\n{text}"
