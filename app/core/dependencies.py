# app/core/dependencies.py
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.database import get_db, get_session_factory
from app.domains.chat.context_assembler import SupplementaryContext
from app.domains.chat.service import ChatService
from app.domains.user.service import UserService
from app.services.llm import ProviderRegistry
from models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_provider_registry(request: Request) -> ProviderRegistry:
    return request.app.state.provider_registry


def get_supplementary_context(request: Request) -> SupplementaryContext | None:
    return request.app.state.supplementary_context


async def validate_token(
    request: Request,
    token: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Validate and decode the bearer token.

    Returns:
        dict: Decoded token payload

    Raises:
        HTTPException: If token is missing, invalid or expired
    """
    if not token or not token.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token is required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = request.app.state.authenticator.verify_token(token.credentials)
    request.state.token_subject = payload.get("sub")
    return payload


async def get_current_user(
    request: Request,
    payload: dict = Depends(validate_token),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get current authenticated user from JWT payload.

    Returns:
        User: Current authenticated user

    Raises:
        HTTPException: If user is inactive or cannot be loaded
    """
    try:
        username = payload.get("sub")
        user = await UserService(db).get_or_create_user(username, payload)
    except Exception as e:
        logger.error("User authentication error: %s", str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication service error",
        ) from e

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    # Add user info to request state for logging
    request.state.user_id = user.id
    return user


def get_chat_service(
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    config: Settings = Depends(get_settings),
    supplementary: SupplementaryContext | None = Depends(get_supplementary_context),
) -> ChatService:
    return ChatService(db, registry, session_factory, config, supplementary)
