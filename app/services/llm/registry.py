"""Provider selection."""

import logging
from collections.abc import Callable

from app.core.config import Settings
from app.exceptions.base import ValidationError

from .base import LLMProvider
from .gemini import GeminiProvider
from .openrouter import OpenRouterProvider

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "openrouter"


def _build_openrouter(config: Settings) -> LLMProvider:
    return OpenRouterProvider(
        api_key=config.openrouter_api_key,
        default_model=config.default_model,
        base_url=config.openrouter_base_url,
        timeout=config.llm_request_timeout,
        text_sampling=(config.text_top_p, config.text_top_k),
        structured_sampling=(config.structured_top_p, config.structured_top_k),
        referer=config.openrouter_referer,
        app_title=config.openrouter_app_title,
    )


def _build_gemini(config: Settings) -> LLMProvider:
    return GeminiProvider(
        api_key=config.gemini_api_key,
        default_model=config.gemini_model,
        max_output_tokens=config.gemini_max_tokens,
        text_sampling=(config.text_top_p, config.text_top_k),
        structured_sampling=(config.structured_top_p, config.structured_top_k),
    )


class ProviderRegistry:
    """
    Resolves a provider selector to a provider instance.

    Providers are built lazily on first use and reused afterwards. Tests
    register their own builders.
    """

    def __init__(self, config: Settings, builders: dict[str, Callable[[Settings], LLMProvider]] | None = None):
        self.config = config
        self._builders = builders if builders is not None else {
            "openrouter": _build_openrouter,
            "gemini": _build_gemini,
        }
        self._instances: dict[str, LLMProvider] = {}

    @property
    def names(self) -> list[str]:
        return list(self._builders)

    def get(self, name: str | None = None) -> LLMProvider:
        """
        Return the provider for ``name`` (the default provider when empty).

        Raises:
            ValidationError: Unknown provider name
            ProviderConfigurationError: Provider is known but not configured
        """
        name = (name or DEFAULT_PROVIDER).lower()
        if name not in self._builders:
            raise ValidationError(
                f"Unknown provider '{name}'",
                details={"provider": name, "available": self.names},
            )
        if name not in self._instances:
            logger.info("Creating %s provider", name)
            self._instances[name] = self._builders[name](self.config)
        return self._instances[name]
