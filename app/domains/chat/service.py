"""Chat service layer: runs conversation turns end to end."""

import logging
from collections.abc import AsyncIterator
from dataclasses import asdict, dataclass
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.domains.chat.context_assembler import ContextAssembler, SupplementaryContext
from app.domains.chat.format_contract import FormatContract
from app.domains.chat.repository import ConversationRepository
from app.domains.chat.streaming import Frame, StreamingOrchestrator
from app.domains.chat.summarization import SummarizationEngine
from app.domains.chat.usage import UsageRecorder
from app.exceptions.base import StorageError, ValidationError
from app.exceptions.chat import ConversationNotFoundError
from app.schemas.chat import (
    ChatRequest,
    ChatResponse,
    ConversationDetailResponse,
    ConversationListResponse,
    ConversationResponse,
    MessageResponse,
    ModelListResponse,
    SummarizeRequest,
    SummaryListResponse,
    SummaryResponse,
    UsageResponse,
)
from app.services.llm import CompletionOptions, LLMProvider, ProviderRegistry, UsageMetrics
from models import Conversation, MessageRole

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 100


@dataclass
class PreparedTurn:
    conversation_id: UUID
    provider: LLMProvider
    model: str
    messages: list[dict[str, str]]
    options: CompletionOptions


@dataclass
class StreamingTurn:
    """A turn whose frames are produced lazily while the response is sent."""

    conversation_id: UUID
    model: str
    frames: AsyncIterator[Frame]


class ChatService:
    """Service class for chat turns, conversations and summaries."""

    def __init__(
        self,
        db: AsyncSession,
        registry: ProviderRegistry,
        session_factory: async_sessionmaker[AsyncSession],
        config: Settings,
        supplementary: SupplementaryContext | None = None,
    ):
        """Initialize chat service.

        Args:
            db: Async database session of the current request
            registry: Provider lookup
            session_factory: Used for work that outlives the request session
            config: Application settings
            supplementary: Loaded supplementary context, if configured
        """
        self.db = db
        self.registry = registry
        self.config = config
        self.repository = ConversationRepository(db)
        self.assembler = ContextAssembler(self.repository, config.default_system_prompt, supplementary)
        self.summarizer = SummarizationEngine(db, config.summarization_prompt)
        self.recorder = UsageRecorder(
            session_factory,
            max_attempts=config.generation_stats_max_attempts,
            min_wait=config.generation_stats_min_wait,
            max_wait=config.generation_stats_max_wait,
        )

    # ===== Turns =====

    async def send_message(self, request: ChatRequest, user_id: UUID) -> ChatResponse:
        """Run a non-streaming turn.

        Returns:
            The answer with its usage; the assistant message is persisted
        """
        turn = await self._prepare_turn(request, user_id)
        result = await StreamingOrchestrator(turn.provider).complete_turn(turn.messages, turn.options)

        message = await self.recorder.record(
            turn.conversation_id,
            result.text,
            result.usage,
            turn.model,
            request.temperature,
            turn.provider,
        )
        return ChatResponse(
            conversation_id=turn.conversation_id,
            response=result.text,
            model=turn.model,
            provider=turn.provider.provider_name,
            message_id=message.id if message else None,
            usage=UsageResponse(**asdict(result.usage)),
        )

    async def stream_message(self, request: ChatRequest, user_id: UUID) -> StreamingTurn:
        """Prepare a streamed turn.

        Validation, context assembly and the user message happen here; the
        provider is only called once the returned frames are iterated.
        """
        turn = await self._prepare_turn(request, user_id)
        provider = turn.provider

        async def on_complete(text: str, usage: UsageMetrics) -> None:
            await self.recorder.record(
                turn.conversation_id, text, usage, turn.model, request.temperature, provider
            )

        frames = StreamingOrchestrator(provider).stream_turn(turn.messages, turn.options, on_complete)
        return StreamingTurn(conversation_id=turn.conversation_id, model=turn.model, frames=frames)

    async def _prepare_turn(self, request: ChatRequest, user_id: UUID) -> PreparedTurn:
        provider = self.registry.get(request.provider)
        model = self._resolve_model(request.model, provider)
        conversation = await self._get_or_create_conversation(request, user_id)

        percent = request.supplementary_context_percent if request.use_supplementary_context else None
        context = await self.assembler.assemble(conversation, request.message, request.system_prompt, percent)

        options = CompletionOptions(
            model=model,
            temperature=request.temperature,
            response_format=conversation.response_format,
            response_schema=conversation.response_schema,
        )
        conversation_id = conversation.id

        try:
            await self.repository.add_message(conversation, MessageRole.USER, request.message)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error saving user message: {str(e)}")
            raise StorageError("Failed to save message") from e

        if context.summary is not None:
            await self.summarizer.increment_usage(context.summary.id)

        logger.info(
            "Prepared chat turn",
            extra={
                "conversation_id": str(conversation_id),
                "provider": provider.provider_name,
                "model": model,
                "context_messages": len(context.messages),
            },
        )
        return PreparedTurn(
            conversation_id=conversation_id,
            provider=provider,
            model=model,
            messages=context.messages,
            options=options,
        )

    def _resolve_model(self, requested: str | None, provider: LLMProvider) -> str:
        if requested and requested not in self.config.available_models_list:
            raise ValidationError(
                f"Invalid model '{requested}'",
                details={"model": requested, "available": self.config.available_models_list},
            )
        return provider.resolve_model(requested)

    async def _get_or_create_conversation(self, request: ChatRequest, user_id: UUID) -> Conversation:
        if request.conversation_id:
            conversation = await self._get_owned_conversation(request.conversation_id, user_id)
            FormatContract.validate_turn(conversation, request.response_format, request.response_schema)
            return conversation

        response_format, response_schema = FormatContract.validate_new_conversation(
            request.response_format, request.response_schema
        )
        conversation = await self.repository.create_conversation(
            user_id=user_id,
            title=request.message[:TITLE_MAX_CHARS],
            response_format=response_format,
            response_schema=response_schema,
        )
        logger.info(
            "Created conversation",
            extra={"conversation_id": str(conversation.id), "response_format": response_format},
        )
        return conversation

    async def _get_owned_conversation(self, conversation_id: UUID, user_id: UUID) -> Conversation:
        try:
            conversation = await self.repository.get_conversation(conversation_id, user_id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading conversation: {str(e)}")
            raise StorageError("Failed to load conversation") from e
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    # ===== Conversations =====

    async def list_conversations(self, user_id: UUID, page: int = 1, size: int = 20) -> ConversationListResponse:
        """Get a page of the user's conversations, most recently active first."""
        rows, total = await self.repository.list_conversations_for_user(
            user_id, offset=(page - 1) * size, limit=size
        )
        conversations = [
            ConversationResponse(
                id=conversation.id,
                title=conversation.title,
                response_format=conversation.response_format,
                response_schema=conversation.response_schema,
                active_summary_id=conversation.active_summary_id,
                summarized_up_to_message_id=summarized_up_to,
                message_count=message_count,
                created_at=conversation.created_at,
                updated_at=conversation.updated_at,
            )
            for conversation, message_count, summarized_up_to in rows
        ]
        return ConversationListResponse(
            conversations=conversations,
            total=total,
            page=page,
            size=size,
            has_next=page * size < total,
            has_prev=page > 1,
        )

    async def get_conversation(self, conversation_id: UUID, user_id: UUID) -> ConversationDetailResponse:
        conversation = await self._get_owned_conversation(conversation_id, user_id)
        messages = await self.repository.list_messages(conversation.id)
        summary = await self.repository.get_active_summary(conversation)

        return ConversationDetailResponse(
            id=conversation.id,
            title=conversation.title,
            response_format=conversation.response_format,
            response_schema=conversation.response_schema,
            active_summary_id=conversation.active_summary_id,
            summarized_up_to_message_id=summary.summarized_up_to_message_id if summary else None,
            message_count=len(messages),
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            messages=[MessageResponse.model_validate(message) for message in messages],
        )

    async def delete_conversation(self, conversation_id: UUID, user_id: UUID) -> None:
        conversation = await self._get_owned_conversation(conversation_id, user_id)
        try:
            await self.repository.delete_conversation(conversation)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Error deleting conversation: {str(e)}")
            raise StorageError("Failed to delete conversation") from e
        logger.info("Deleted conversation", extra={"conversation_id": str(conversation_id)})

    # ===== Summaries =====

    async def summarize(self, conversation_id: UUID, user_id: UUID, request: SummarizeRequest) -> SummaryResponse:
        conversation = await self._get_owned_conversation(conversation_id, user_id)
        provider = self.registry.get(request.provider)
        model = self._resolve_model(request.model, provider)

        summary = await self.summarizer.summarize(
            conversation, provider, model=model, temperature=request.temperature
        )
        return SummaryResponse.model_validate(summary)

    async def list_summaries(self, conversation_id: UUID, user_id: UUID) -> SummaryListResponse:
        conversation = await self._get_owned_conversation(conversation_id, user_id)
        summaries = await self.summarizer.list_summaries(conversation)
        return SummaryListResponse(
            conversation_id=conversation.id,
            active_summary_id=conversation.active_summary_id,
            summaries=[SummaryResponse.model_validate(summary) for summary in summaries],
        )

    # ===== Models =====

    def list_models(self) -> ModelListResponse:
        return ModelListResponse(
            default_model=self.config.default_model,
            models=self.config.available_models_list,
            providers=self.registry.names,
        )

