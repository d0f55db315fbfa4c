"""Streaming Chat API - Main Application Module.

This module initializes the FastAPI application with proper configuration,
middleware, routing, and lifecycle management for the streaming chat
backend.
"""

import logging
import sys
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

# Add the project root to Python path if running directly
if __name__ == "__main__":
    project_root = Path(__file__).parent.parent
    sys.path.insert(0, str(project_root))

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import ConfigValidator, Settings, get_config_summary, settings
from app.core.logging import configure_logging
from app.core.security import TokenAuthenticator
from app.database import build_engine, build_session_factory, resolve_database_url
from app.domains.chat.context_assembler import SupplementaryContext
from app.services.llm import ProviderRegistry
from models import Base

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle events."""
    # Startup
    config = app.state.settings
    ConfigValidator.validate_required_settings(config)
    logger.info("Starting %s", config.app_name, extra={"config": get_config_summary(config)})

    # Development mode: auto-create tables if they don't exist
    if config.is_development:
        async with app.state.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created/verified")

    yield

    # Shutdown
    logger.info("Shutting down %s", config.app_name)
    await app.state.engine.dispose()


def create_app(config: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or settings
    configure_logging(config)

    app = FastAPI(
        title=config.app_name,
        description="Multi-turn LLM chat with streamed answers, history summarization and usage tracking",
        version=config.version,
        lifespan=lifespan,
        docs_url="/docs" if config.is_development else None,
        redoc_url="/redoc" if config.is_development else None,
    )

    setup_state(app, config)

    # Add middleware
    setup_middleware(app, config)

    # Add exception handlers
    setup_exception_handlers(app)

    # Include routers
    setup_routers(app)

    return app


def setup_state(app: FastAPI, config: Settings):
    """Build the shared collaborators once per application."""
    engine = build_engine(resolve_database_url(config), echo=config.debug)
    app.state.settings = config
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.authenticator = TokenAuthenticator(config.secret_key, config.algorithm)
    app.state.provider_registry = ProviderRegistry(config)
    app.state.supplementary_context = SupplementaryContext.load(
        config.supplementary_context_path, config.supplementary_context_title
    )


def setup_middleware(app: FastAPI, config: Settings):
    """Configure application middleware."""
    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Conversation-ID", "X-Model", "X-Request-ID"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


def setup_exception_handlers(app: FastAPI):
    """Configure global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # Handle custom exceptions that have structured detail
        if isinstance(exc.detail, dict) and "message" in exc.detail:
            message = exc.detail["message"]
            error_code = exc.detail.get("error_code", "HTTP_ERROR")
            details = exc.detail.get("details")
        else:
            message = str(exc.detail) if exc.detail else "An error occurred"
            error_code = "HTTP_ERROR"
            details = None

        if exc.status_code >= 500:
            logger.error(
                f"Request failed: {message}",
                extra={"error_code": error_code, "path": request.url.path},
            )

        return JSONResponse(
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
            content={
                "status": "error",
                "message": message,
                "error_code": error_code,
                "details": details,
                "timestamp": _timestamp(),
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        # Convert errors to JSON-serializable format
        errors = []
        for error in exc.errors():
            error_dict = {
                "loc": error.get("loc", []),
                "msg": str(error.get("msg", "Validation error")),
                "type": error.get("type", "value_error"),
            }
            if "input" in error:
                error_dict["input"] = str(error["input"])
            errors.append(error_dict)

        return JSONResponse(
            status_code=422,
            content={
                "status": "error",
                "message": "Validation error",
                "error_code": "VALIDATION_ERROR",
                "details": errors,
                "timestamp": _timestamp(),
                "request_id": getattr(request.state, "request_id", None),
            },
        )


def setup_routers(app: FastAPI):
    """Configure application routers."""
    from app.domains.chat.controller import router as chat_router

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        config = request.app.state.settings
        db_status = "healthy"
        try:
            async with request.app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning(f"Database health check failed: {str(e)}")
            db_status = "unhealthy"

        features = ConfigValidator.get_feature_status(config)
        llm_status = "healthy" if features["openrouter_enabled"] or features["gemini_enabled"] else "not_configured"

        body = {
            "status": "healthy" if db_status == "healthy" else "degraded",
            "version": config.version,
            "environment": config.environment,
            "timestamp": _timestamp(),
            "services": {
                "database": db_status,
                "llm_provider": llm_status,
            },
        }
        return JSONResponse(status_code=200 if db_status == "healthy" else 503, content=body)

    @app.get("/")
    async def root(request: Request):
        """Root endpoint with API information."""
        config = request.app.state.settings
        return {
            "name": config.app_name,
            "version": config.version,
            "description": "Streaming LLM chat with summarization and usage tracking",
            "docs_url": "/docs" if config.is_development else None,
        }

    app.include_router(chat_router)


def main():
    """Entry point for running the application directly."""
    import uvicorn

    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    main()
