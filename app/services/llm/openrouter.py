"""
OpenRouter LLM provider implementation.
Talks to the OpenAI-compatible chat completions API and the generation
statistics endpoint used for cost tracking.
"""

import json
import logging
from typing import Any

import httpx

from app.exceptions.ai import (
    GenerationNotReadyError,
    ProviderConfigurationError,
    ProviderError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    map_provider_error,
)

from .base import ChunkSink, CompletionOptions, CompletionResult, LLMProvider, UsageMetrics

logger = logging.getLogger(__name__)


class OpenRouterProvider(LLMProvider):
    """
    OpenRouter API provider.

    Sampling uses separate top_p/top_k pairs for free text and for structured
    (json/xml) output. ``transport`` lets tests plug in an
    ``httpx.MockTransport``.
    """

    provider_name = "openrouter"

    def __init__(
        self,
        api_key: str | None,
        default_model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 120.0,
        text_sampling: tuple[float, int] = (0.9, 40),
        structured_sampling: tuple[float, int] = (0.8, 20),
        referer: str = "http://localhost:3000",
        app_title: str = "Chat App",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(default_model)
        if not api_key:
            raise ProviderConfigurationError("OPENROUTER_API_KEY not configured")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.text_sampling = text_sampling
        self.structured_sampling = structured_sampling
        self.referer = referer
        self.app_title = app_title
        self._transport = transport

    def _get_headers(self) -> dict[str, str]:
        """Build request headers with authentication."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.referer,
            "X-Title": self.app_title,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _build_payload(self, messages: list[dict[str, str]], options: CompletionOptions, stream: bool) -> dict[str, Any]:
        top_p, top_k = self.structured_sampling if options.is_structured else self.text_sampling
        payload: dict[str, Any] = {
            "model": self.resolve_model(options.model),
            "messages": messages,
            "stream": stream,
            "top_p": top_p,
            "top_k": top_k,
            "provider": {"require_parameters": False},
        }
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        return payload

    @staticmethod
    def _usage_from(data: dict[str, Any], usage: UsageMetrics) -> UsageMetrics:
        if data.get("id") and not usage.generation_id:
            usage.generation_id = data["id"]
        reported = data.get("usage")
        if reported:
            usage.prompt_tokens = reported.get("prompt_tokens")
            usage.completion_tokens = reported.get("completion_tokens")
            usage.total_tokens = reported.get("total_tokens")
            if reported.get("cost") is not None:
                usage.total_cost = reported.get("cost")
        return usage

    async def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code == 200:
            return
        body = (await response.aread()).decode("utf-8", errors="replace")
        logger.error(
            "OpenRouter returned an error",
            extra={"status_code": response.status_code, "response_length": len(body)},
        )
        raise map_provider_error(
            response.status_code,
            f"API returned status {response.status_code}: {body[:500]}",
        )

    async def complete(self, messages: list[dict[str, str]], options: CompletionOptions) -> CompletionResult:
        """Generate a complete response from OpenRouter."""
        payload = self._build_payload(messages, options, stream=False)
        logger.info(
            "Calling OpenRouter API",
            extra={
                "model": payload["model"],
                "response_format": options.response_format,
                "message_count": len(messages),
            },
        )

        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions", headers=self._get_headers(), json=payload
                )
                await self._raise_for_status(response)
                data = response.json()
        except ProviderError:
            raise
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"OpenRouter request timed out: {e}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderUnavailableError(f"OpenRouter request failed: {e}") from e

        choices = data.get("choices") or []
        if not choices:
            raise ProviderError("No response from API")

        content = choices[0].get("message", {}).get("content") or ""
        return CompletionResult(text=content, usage=self._usage_from(data, UsageMetrics()))

    async def stream_complete(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
        chunk_sink: ChunkSink,
    ) -> UsageMetrics:
        """Stream response chunks from OpenRouter."""
        payload = self._build_payload(messages, options, stream=True)
        logger.info(
            "Calling OpenRouter API (streaming)",
            extra={
                "model": payload["model"],
                "response_format": options.response_format,
                "message_count": len(messages),
            },
        )

        usage = UsageMetrics()
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    headers=self._get_headers(),
                    json=payload,
                ) as response:
                    await self._raise_for_status(response)

                    async for line in response.aiter_lines():
                        if not line or not line.startswith("data: "):
                            continue

                        data_str = line[6:]
                        if data_str == "[DONE]":
                            break

                        try:
                            data = json.loads(data_str)
                        except ValueError:
                            logger.warning("Error parsing stream chunk")
                            continue

                        if data.get("error"):
                            raise ProviderError(
                                f"Stream error: {data['error'].get('message', data['error'])}"
                            )

                        self._usage_from(data, usage)
                        choices = data.get("choices") or []
                        content = choices[0].get("delta", {}).get("content") if choices else None
                        if content:
                            await chunk_sink(content)
        except ProviderError:
            raise
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"OpenRouter stream timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"OpenRouter stream failed: {e}") from e

        logger.debug("OpenRouter stream finished", extra={"generation_id": usage.generation_id})
        return usage

    async def fetch_generation_stats(self, generation_id: str) -> UsageMetrics | None:
        """
        Fetch cost and token figures for a finished generation.

        Raises:
            GenerationNotReadyError: OpenRouter has not published the data yet (404)
            ProviderError: Any other failure
        """
        if not generation_id:
            return None

        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.base_url}/generation",
                    params={"id": generation_id},
                    headers=self._get_headers(),
                )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Generation lookup timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"Generation lookup failed: {e}") from e

        if response.status_code == 404:
            raise GenerationNotReadyError(details={"generation_id": generation_id})
        if response.status_code != 200:
            raise map_provider_error(
                response.status_code, f"API returned status {response.status_code}: {response.text[:500]}"
            )

        try:
            data = response.json().get("data") or {}
        except (ValueError, AttributeError) as e:
            raise ProviderUnavailableError(f"Generation lookup returned an invalid body: {e}") from e
        prompt_tokens = data.get("native_tokens_prompt") or data.get("tokens_prompt")
        completion_tokens = data.get("native_tokens_completion") or data.get("tokens_completion")
        total_tokens = None
        if prompt_tokens is not None or completion_tokens is not None:
            total_tokens = (prompt_tokens or 0) + (completion_tokens or 0)

        stats = UsageMetrics(
            generation_id=data.get("id") or generation_id,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            total_cost=data.get("total_cost"),
            latency_ms=data.get("latency"),
            generation_time_ms=data.get("generation_time"),
        )
        logger.info(
            "Fetched generation cost data",
            extra={
                "generation_id": stats.generation_id,
                "cost": stats.total_cost,
                "prompt_tokens": stats.prompt_tokens,
                "completion_tokens": stats.completion_tokens,
            },
        )
        return stats
