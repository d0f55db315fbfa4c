"""Unit tests for provider selection and the Gemini provider."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.exceptions.ai import ProviderConfigurationError, ProviderError, ProviderRateLimitError, ProviderTimeoutError
from app.exceptions.base import ValidationError
from app.services.llm import DEFAULT_PROVIDER, CompletionOptions, ProviderRegistry
from app.services.llm.gemini import GeminiProvider
from app.services.llm.openrouter import OpenRouterProvider

from tests.factories import FakeProvider

MESSAGES = [
    {"role": "system", "content": "Be nice."},
    {"role": "user", "content": "Hi"},
    {"role": "assistant", "content": "Hello!"},
    {"role": "user", "content": "How are you?"},
]


class TestProviderRegistry:
    """Test cases for ProviderRegistry."""

    def test_default_provider(self, test_settings):
        registry = ProviderRegistry(test_settings)

        provider = registry.get()

        assert DEFAULT_PROVIDER == "openrouter"
        assert isinstance(provider, OpenRouterProvider)
        assert provider.default_model == test_settings.default_model

    def test_providers_are_reused(self, test_settings):
        registry = ProviderRegistry(test_settings)

        assert registry.get("openrouter") is registry.get("OpenRouter")

    def test_unknown_provider(self, test_settings):
        with pytest.raises(ValidationError) as exc_info:
            ProviderRegistry(test_settings).get("acme")

        assert exc_info.value.details["available"] == ["openrouter", "gemini"]

    def test_unconfigured_provider(self, test_settings):
        registry = ProviderRegistry(test_settings)

        with pytest.raises(ProviderConfigurationError) as exc_info:
            registry.get("gemini")

        assert exc_info.value.status_code == 503

    def test_custom_builders(self, test_settings):
        fake = FakeProvider()
        registry = ProviderRegistry(test_settings, builders={"openrouter": lambda config: fake})

        assert registry.get() is fake
        assert registry.names == ["openrouter"]


class TestGeminiProvider:
    """Test cases for GeminiProvider with the SDK mocked."""

    @pytest.fixture
    def mock_genai(self):
        """Mock google.generativeai module."""
        with patch("app.services.llm.gemini.genai") as mock:
            yield mock

    @pytest.fixture
    def provider(self, mock_genai):
        return GeminiProvider(api_key="test_api_key", default_model="gemini-1.5-flash")

    def test_requires_api_key(self, mock_genai):
        with pytest.raises(ProviderConfigurationError):
            GeminiProvider(api_key=None, default_model="gemini-1.5-flash")

    def test_resolve_model(self, provider):
        assert provider.resolve_model("google/gemini-2.0-flash-001") == "gemini-2.0-flash-001"
        assert provider.resolve_model("gemini-1.5-pro") == "gemini-1.5-pro"
        assert provider.resolve_model("openai/gpt-4o-mini") == "gemini-1.5-flash"
        assert provider.resolve_model(None) == "gemini-1.5-flash"

    @pytest.mark.asyncio
    async def test_stream_complete(self, provider, mock_genai):
        chunks = [MagicMock(parts=[1], text="Fine, "), MagicMock(parts=[], text=""), MagicMock(parts=[1], text="thanks")]
        response = MagicMock()
        response.__aiter__.return_value = chunks
        response.usage_metadata = MagicMock(prompt_token_count=12, candidates_token_count=3, total_token_count=15)
        model = mock_genai.GenerativeModel.return_value
        model.generate_content_async = AsyncMock(return_value=response)

        received = []

        async def sink(text):
            received.append(text)

        usage = await provider.stream_complete(MESSAGES, CompletionOptions(response_format="json"), sink)

        assert received == ["Fine, ", "thanks"]
        assert usage.total_tokens == 15
        kwargs = mock_genai.GenerativeModel.call_args.kwargs
        assert kwargs["system_instruction"] == "Be nice."
        assert kwargs["model_name"] == "gemini-1.5-flash"
        config_kwargs = mock_genai.types.GenerationConfig.call_args.kwargs
        assert config_kwargs["response_mime_type"] == "application/json"
        assert (config_kwargs["top_p"], config_kwargs["top_k"]) == (0.8, 20)
        contents = model.generate_content_async.call_args.args[0]
        assert [c["role"] for c in contents] == ["user", "model", "user"]

    @pytest.mark.asyncio
    async def test_complete(self, provider, mock_genai):
        response = MagicMock(text="All good")
        response.candidates = [MagicMock()]
        response.usage_metadata = None
        mock_genai.GenerativeModel.return_value.generate_content_async = AsyncMock(return_value=response)

        result = await provider.complete(MESSAGES, CompletionOptions())

        assert result.text == "All good"
        assert result.usage.total_tokens is None

    @pytest.mark.asyncio
    async def test_blocked_content(self, provider, mock_genai):
        response = MagicMock()
        response.candidates = []
        mock_genai.GenerativeModel.return_value.generate_content_async = AsyncMock(return_value=response)

        with pytest.raises(ProviderError, match="blocked or empty"):
            await provider.complete(MESSAGES, CompletionOptions())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message,error_class",
        [
            ("429 Quota exceeded. Please retry in 7.5s", ProviderRateLimitError),
            ("Deadline exceeded", ProviderTimeoutError),
            ("Internal error", ProviderError),
        ],
    )
    async def test_sdk_errors_are_mapped(self, provider, mock_genai, message, error_class):
        mock_genai.GenerativeModel.return_value.generate_content_async = AsyncMock(side_effect=Exception(message))

        with pytest.raises(error_class):
            await provider.stream_complete(MESSAGES, CompletionOptions(), AsyncMock())

    def test_rate_limit_retry_after(self):
        error = GeminiProvider._map_error(Exception("429 Quota exceeded. Please retry in 7.5s"))

        assert isinstance(error, ProviderRateLimitError)
        assert error.details["retry_after"] == 8
