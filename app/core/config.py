# app/core/config.py
"""Configuration settings for the chat backend.

Uses Pydantic BaseSettings for environment variable management.
"""
import secrets
from enum import Enum

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SUMMARIZATION_PROMPT = """You are a conversation summarizer. Your task is to create a concise, comprehensive summary of the conversation that captures:
1. The main topics discussed
2. Key questions asked and answers provided
3. Important decisions or conclusions reached
4. Any action items or next steps mentioned

Format the summary in a clear, structured way that can be used as context for continuing the conversation. Keep the summary neutral and focused, and avoid unnecessary details while preserving essential facts and decisions."""


class EnvironmentEnum(str, Enum):
    development = "development"
    testing = "testing"
    staging = "staging"
    production = "production"


class LogLevelEnum(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormatEnum(str, Enum):
    simple = "simple"
    json = "json"


class Settings(BaseSettings):
    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Application Settings =====
    app_name: str = Field(default="Streaming Chat API", description="Application name")
    environment: EnvironmentEnum = Field(
        default=EnvironmentEnum.development, description="Environment type"
    )
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # ===== Security Settings =====
    secret_key: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32),
        description="Secret key used to verify bearer tokens",
    )
    algorithm: str = Field(default="HS256", description="JWT algorithm")

    # ===== Database Settings =====
    database_url: str | None = Field(default=None, description="Database connection URL")
    test_database_url: str | None = Field(default=None, description="Test database URL")

    # ===== LLM Provider (OpenRouter) =====
    openrouter_api_key: str | None = Field(default=None, description="OpenRouter API key")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1", description="OpenRouter API base URL"
    )
    openrouter_referer: str = Field(
        default="http://localhost:3000", description="HTTP-Referer header sent to OpenRouter"
    )
    openrouter_app_title: str = Field(default="Chat App", description="X-Title header sent to OpenRouter")
    default_model: str = Field(default="openai/gpt-4o-mini", description="Default model id")
    available_models: str = Field(
        default="openai/gpt-4o-mini,anthropic/claude-3.5-haiku,google/gemini-2.0-flash-001",
        description="Model ids accepted in chat requests (comma-separated)",
    )
    text_top_p: float = Field(default=0.9, description="top_p for text responses")
    text_top_k: int = Field(default=40, description="top_k for text responses")
    structured_top_p: float = Field(default=0.8, description="top_p for json/xml responses")
    structured_top_k: int = Field(default=20, description="top_k for json/xml responses")
    llm_request_timeout: int = Field(default=120, description="Provider HTTP timeout in seconds")

    # ===== LLM Provider (Gemini) =====
    gemini_api_key: str | None = Field(default=None, description="Google Gemini API key")
    gemini_model: str = Field(default="gemini-1.5-flash", description="Gemini model to use")
    gemini_max_tokens: int = Field(default=4096, description="Maximum output tokens for Gemini")

    # ===== Prompts & Context =====
    default_system_prompt: str = Field(
        default="You are a helpful assistant.", description="Global system prompt"
    )
    summarization_prompt: str = Field(
        default=DEFAULT_SUMMARIZATION_PROMPT, description="System prompt for summarization calls"
    )
    supplementary_context_path: str | None = Field(
        default=None, description="Path to the supplementary context text file"
    )
    supplementary_context_title: str = Field(
        default="Supplementary context", description="Label placed before the supplementary text"
    )

    # ===== Usage Tracking =====
    generation_stats_max_attempts: int = Field(
        default=3, description="Attempts when fetching generation statistics"
    )
    generation_stats_min_wait: float = Field(
        default=0.5, description="First retry delay for generation statistics (seconds)"
    )
    generation_stats_max_wait: float = Field(
        default=2.0, description="Maximum retry delay for generation statistics (seconds)"
    )

    # ===== CORS Settings =====
    allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000",
        description="Allowed CORS origins (comma-separated)",
    )

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def available_models_list(self) -> list[str]:
        """Parse the model catalog from comma-separated string."""
        models = [model.strip() for model in self.available_models.split(",") if model.strip()]
        if self.default_model not in models:
            models.insert(0, self.default_model)
        return models

    # ===== Monitoring & Logging =====
    log_level: LogLevelEnum = Field(default=LogLevelEnum.INFO, description="Logging level")
    log_format: LogFormatEnum = Field(default=LogFormatEnum.json, description="Log format")

    # ===== Server Settings =====
    host: str = Field(default="127.0.0.1", description="Host to bind the server")
    port: int = Field(default=8000, description="Port to bind the server")

    # ===== Computed Properties =====
    @property
    def is_development(self) -> bool:
        return self.environment == EnvironmentEnum.development

    @property
    def is_production(self) -> bool:
        return self.environment == EnvironmentEnum.production

    @property
    def is_testing(self) -> bool:
        return self.environment == EnvironmentEnum.testing

    @property
    def has_openrouter(self) -> bool:
        return bool(self.openrouter_api_key)

    @property
    def has_gemini(self) -> bool:
        return bool(self.gemini_api_key)

    # ===== Validation Methods =====
    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        if v and isinstance(v, str):
            lv = v.lower()
            if lv in ["dev", "develop"]:
                return "development"
            if lv in ["prod"]:
                return "production"
            return lv
        return v

    @field_validator("text_top_p", "structured_top_p")
    @classmethod
    def validate_top_p(cls, v):
        if not 0 < v <= 1:
            raise ValueError("top_p must be in (0, 1]")
        return v

    @field_validator("generation_stats_max_attempts")
    @classmethod
    def validate_attempts(cls, v):
        if v < 1:
            raise ValueError("generation_stats_max_attempts must be at least 1")
        return v

    @model_validator(mode="after")
    def set_computed_fields(self):
        if not self.test_database_url and self.database_url and "chatapp" in self.database_url:
            self.test_database_url = self.database_url.replace("chatapp", "chatapp_test")
        return self


settings = Settings()


class ConfigValidator:
    @staticmethod
    def validate_required_settings(config: Settings | None = None):
        config = config or settings
        errors = []
        if not config.database_url:
            errors.append("DATABASE_URL is required")
        if config.is_production and len(config.secret_key) < 32:
            errors.append("SECRET_KEY must be at least 32 characters in production")
        if config.is_production and not (config.openrouter_api_key or config.gemini_api_key):
            errors.append("OPENROUTER_API_KEY or GEMINI_API_KEY is required in production")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @staticmethod
    def get_feature_status(config: Settings | None = None) -> dict:
        config = config or settings
        return {
            "openrouter_enabled": config.has_openrouter,
            "gemini_enabled": config.has_gemini,
            "supplementary_context": bool(config.supplementary_context_path),
            "environment": config.environment,
        }


def get_config_summary(config: Settings | None = None) -> dict:
    config = config or settings
    return {
        "app_name": config.app_name,
        "version": config.version,
        "environment": config.environment,
        "debug": config.debug,
        "features": ConfigValidator.get_feature_status(config),
        "database_configured": bool(config.database_url),
        "default_model": config.default_model,
    }


__all__ = [
    "settings",
    "Settings",
    "ConfigValidator",
    "get_config_summary",
    "EnvironmentEnum",
    "LogLevelEnum",
    "LogFormatEnum",
    "DEFAULT_SUMMARIZATION_PROMPT",
]
