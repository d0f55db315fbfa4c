"""Chat schemas for request/response serialization."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import ConfigDict, Field

from models.message import MessageRole

from .base import BaseSchema


class ChatRequest(BaseSchema):
    """Schema for one chat turn."""

    message: str = Field(..., min_length=1, max_length=100000, description="User message")
    conversation_id: UUID | None = Field(None, description="Existing conversation ID, null for new")
    system_prompt: str | None = Field(None, description="Custom system prompt added to the default one")
    response_format: str | None = Field(None, description="text, json or xml (new conversations only)")
    response_schema: str | None = Field(None, description="Schema for json/xml responses")
    model: str | None = Field(None, description="Model id from the configured catalog")
    temperature: float | None = Field(None, ge=0, le=2, description="Sampling temperature")
    provider: str | None = Field(None, description="Provider selector (openrouter or gemini)")
    use_supplementary_context: bool = Field(default=False, description="Include the supplementary context")
    supplementary_context_percent: int = Field(
        default=100, ge=0, le=100, description="Share of the supplementary context to include"
    )


class SummarizeRequest(BaseSchema):
    """Schema for a summarization request."""

    model: str | None = Field(None, description="Model id from the configured catalog")
    temperature: float | None = Field(None, ge=0, le=2, description="Sampling temperature")
    provider: str | None = Field(None, description="Provider selector (openrouter or gemini)")


class UsageResponse(BaseSchema):
    """Token, cost and timing figures of an assistant message."""

    generation_id: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    total_cost: float | None = None
    latency_ms: int | None = None
    generation_time_ms: int | None = None


class MessageResponse(BaseSchema):
    """Schema for a stored message."""

    id: UUID
    conversation_id: UUID
    role: MessageRole
    content: str
    model: str | None = None
    temperature: float | None = None
    provider: str | None = None
    generation_id: str | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    total_cost: float | None = None
    latency_ms: int | None = None
    generation_time_ms: int | None = None
    created_at: datetime


class ChatResponse(BaseSchema):
    """Schema for a non-streaming chat turn."""

    conversation_id: UUID
    response: str
    model: str
    provider: str
    message_id: UUID | None = None
    usage: UsageResponse


class ConversationResponse(BaseSchema):
    """Schema for a conversation in listings."""

    id: UUID
    title: str | None
    response_format: str
    response_schema: str | None = None
    active_summary_id: UUID | None = None
    summarized_up_to_message_id: UUID | None = None
    message_count: int = Field(default=0, description="Number of messages in conversation")
    created_at: datetime
    updated_at: datetime


class ConversationDetailResponse(ConversationResponse):
    """Schema for a conversation with its messages."""

    messages: list[MessageResponse] = Field(default_factory=list, description="Conversation messages")


class ConversationListResponse(BaseSchema):
    """Schema for the paginated conversation history."""

    conversations: list[ConversationResponse]
    total: int
    page: int
    size: int
    has_next: bool
    has_prev: bool


class SummaryResponse(BaseSchema):
    """Schema for a conversation summary."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    summary_content: str
    summarized_up_to_message_id: UUID | None = None
    usage_count: int
    created_at: datetime


class SummaryListResponse(BaseSchema):
    conversation_id: UUID
    active_summary_id: UUID | None = None
    summaries: list[SummaryResponse]


class ModelListResponse(BaseSchema):
    default_model: str
    models: list[str]
    providers: list[str]


# Update forward references if needed
ConversationDetailResponse.model_rebuild()
ConversationListResponse.model_rebuild()
SummaryListResponse.model_rebuild()
