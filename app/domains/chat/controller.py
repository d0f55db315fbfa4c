"""Chat API controller with FastAPI endpoints."""

import logging
from collections.abc import AsyncIterator
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Path, Query, Request
from fastapi.responses import StreamingResponse

from app.core.dependencies import get_chat_service, get_current_user, validate_token
from app.domains.chat.service import ChatService
from app.domains.chat.streaming import Frame
from app.schemas.base import ResponseSchema
from app.schemas.chat import ChatRequest, ModelListResponse, SummarizeRequest
from models.user import User

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/chat",
    tags=["chat"],
    dependencies=[Depends(validate_token)],  # Global token validation for all routes
)


async def _encode_frames(frames: AsyncIterator[Frame]) -> AsyncIterator[str]:
    async for frame in frames:
        yield frame.to_sse()


@router.post("/message", response_model=ResponseSchema, status_code=201)
async def send_chat_message(
    _request: Request,
    chat_request: ChatRequest = Body(...),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Send a message and wait for the complete answer.

    Args:
        chat_request: Chat request with message and optional conversation ID
        current_user: Current authenticated user
        service: Chat service bound to the request session

    Returns:
        Answer, conversation id and usage figures
    """
    result = await service.send_message(request=chat_request, user_id=current_user.id)

    return ResponseSchema(
        status="success",
        message="Message sent successfully",
        data=result.model_dump(mode="json"),
    )


@router.post("/stream")
async def stream_chat_message(
    _request: Request,
    chat_request: ChatRequest = Body(...),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Send a message and receive the answer as Server-Sent Events.

    Request problems (validation, unknown conversation, storage) are returned
    as regular JSON errors before the stream opens; provider failures arrive
    as an ``error`` event inside the stream.
    """
    turn = await service.stream_message(request=chat_request, user_id=current_user.id)

    return StreamingResponse(
        _encode_frames(turn.frames),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            "X-Conversation-ID": str(turn.conversation_id),
            "X-Model": turn.model,
        },
    )


@router.get("/conversations", response_model=ResponseSchema)
async def get_conversations(
    _request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Page size"),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Get all conversations for the current user."""
    result = await service.list_conversations(user_id=current_user.id, page=page, size=size)

    return ResponseSchema(
        status="success",
        message="Conversations retrieved successfully",
        data=result.model_dump(mode="json"),
    )


@router.get("/conversations/{conversation_id}", response_model=ResponseSchema)
async def get_conversation(
    _request: Request,
    conversation_id: UUID = Path(..., description="Conversation ID"),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Get a specific conversation with all messages."""
    result = await service.get_conversation(conversation_id=conversation_id, user_id=current_user.id)

    return ResponseSchema(
        status="success",
        message="Conversation retrieved successfully",
        data=result.model_dump(mode="json"),
    )


@router.delete("/conversations/{conversation_id}", response_model=ResponseSchema)
async def delete_conversation(
    _request: Request,
    conversation_id: UUID = Path(..., description="Conversation ID"),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Delete a conversation with its messages and summaries."""
    await service.delete_conversation(conversation_id=conversation_id, user_id=current_user.id)

    return ResponseSchema(
        status="success",
        message="Conversation deleted successfully",
        data=None,
    )


@router.post("/conversations/{conversation_id}/summarize", response_model=ResponseSchema, status_code=201)
async def summarize_conversation(
    _request: Request,
    conversation_id: UUID = Path(..., description="Conversation ID"),
    summarize_request: SummarizeRequest | None = Body(None),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Compact the conversation history into a new active summary.

    Returns:
        The created summary
    """
    summary = await service.summarize(
        conversation_id=conversation_id,
        user_id=current_user.id,
        request=summarize_request or SummarizeRequest(),
    )

    return ResponseSchema(
        status="success",
        message="Conversation summarized successfully",
        data=summary.model_dump(mode="json"),
    )


@router.get("/conversations/{conversation_id}/summaries", response_model=ResponseSchema)
async def get_summaries(
    _request: Request,
    conversation_id: UUID = Path(..., description="Conversation ID"),
    current_user: User = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    """Get every summary of a conversation, oldest first."""
    result = await service.list_summaries(conversation_id=conversation_id, user_id=current_user.id)

    return ResponseSchema(
        status="success",
        message="Summaries retrieved successfully",
        data=result.model_dump(mode="json"),
    )


@router.get("/models", response_model=ModelListResponse)
async def get_models(service: ChatService = Depends(get_chat_service)):
    """List the models accepted in chat requests."""
    return service.list_models()
