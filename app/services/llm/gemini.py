"""
Google Gemini LLM provider implementation.
Uses the google-generativeai SDK; system entries of the assembled context
become the model's system instruction.
"""

import logging
import re
from typing import Any

import google.generativeai as genai
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from app.exceptions.ai import (
    ProviderConfigurationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)

from .base import ChunkSink, CompletionOptions, CompletionResult, LLMProvider, UsageMetrics

logger = logging.getLogger(__name__)

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
}


class GeminiProvider(LLMProvider):
    """Google Gemini provider."""

    provider_name = "gemini"

    def __init__(
        self,
        api_key: str | None,
        default_model: str,
        max_output_tokens: int = 4096,
        text_sampling: tuple[float, int] = (0.9, 40),
        structured_sampling: tuple[float, int] = (0.8, 20),
    ):
        super().__init__(default_model)
        if not api_key:
            raise ProviderConfigurationError("Gemini API key not configured")
        self.max_output_tokens = max_output_tokens
        self.text_sampling = text_sampling
        self.structured_sampling = structured_sampling
        genai.configure(api_key=api_key)

    def resolve_model(self, model: str | None) -> str:
        """Accept catalog ids such as ``google/gemini-2.0-flash-001``; other vendors fall back to the default."""
        if model:
            name = model.split("/", 1)[-1]
            if name.startswith("gemini"):
                return name
        return self.default_model

    def _build_model(self, messages: list[dict[str, str]], options: CompletionOptions):
        top_p, top_k = self.structured_sampling if options.is_structured else self.text_sampling
        system_text = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        generation_config = genai.types.GenerationConfig(
            candidate_count=1,
            max_output_tokens=self.max_output_tokens,
            temperature=options.temperature,
            top_p=top_p,
            top_k=top_k,
            response_mime_type="application/json" if options.response_format == "json" else None,
        )
        return genai.GenerativeModel(
            model_name=self.resolve_model(options.model),
            safety_settings=SAFETY_SETTINGS,
            generation_config=generation_config,
            system_instruction=system_text or None,
        )

    @staticmethod
    def _contents(messages: list[dict[str, str]]) -> list[dict[str, Any]]:
        return [
            {"role": "model" if m["role"] == "assistant" else "user", "parts": [m["content"]]}
            for m in messages
            if m["role"] != "system"
        ]

    @staticmethod
    def _usage(response) -> UsageMetrics:
        metadata = getattr(response, "usage_metadata", None)
        if not metadata:
            return UsageMetrics()
        return UsageMetrics(
            prompt_tokens=getattr(metadata, "prompt_token_count", None),
            completion_tokens=getattr(metadata, "candidates_token_count", None),
            total_tokens=getattr(metadata, "total_token_count", None),
        )

    @staticmethod
    def _map_error(e: Exception) -> ProviderError:
        error_msg = str(e).lower()
        full_error_msg = str(e)

        if "quota" in error_msg or "429" in full_error_msg or ("rate" in error_msg and "limit" in error_msg):
            match = re.search(r"retry in (\d+(?:\.\d+)?)s", full_error_msg)
            retry_after = int(float(match.group(1))) + 1 if match else None
            logger.warning(f"Gemini rate limit hit: {full_error_msg}")
            return ProviderRateLimitError(f"Rate limit exceeded: {full_error_msg}", retry_after=retry_after)
        if "deadline" in error_msg or "timeout" in error_msg:
            return ProviderTimeoutError(f"Gemini request timed out: {full_error_msg}")
        logger.error(f"Gemini API call failed: {full_error_msg}")
        return ProviderError(f"AI generation failed: {full_error_msg}")

    async def complete(self, messages: list[dict[str, str]], options: CompletionOptions) -> CompletionResult:
        model = self._build_model(messages, options)
        try:
            response = await model.generate_content_async(self._contents(messages))
            if not response.candidates or not response.candidates[0].content.parts:
                raise ProviderError("Content was blocked or empty")
            text = response.text
        except ProviderError:
            raise
        except Exception as e:
            raise self._map_error(e) from e

        return CompletionResult(text=text, usage=self._usage(response))

    async def stream_complete(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
        chunk_sink: ChunkSink,
    ) -> UsageMetrics:
        model = self._build_model(messages, options)
        logger.info(
            "Calling Gemini API (streaming)",
            extra={"model": model.model_name, "message_count": len(messages)},
        )
        try:
            response = await model.generate_content_async(self._contents(messages), stream=True)
            async for chunk in response:
                if chunk.parts:
                    await chunk_sink(chunk.text)
        except Exception as e:
            raise self._map_error(e) from e

        return self._usage(response)
