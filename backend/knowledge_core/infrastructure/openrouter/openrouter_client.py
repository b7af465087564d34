"""OpenRouter chat client: implements the ChatProvider interface.

Sends non-streaming chat completions to the OpenRouter API
(https://openrouter.ai/api/v1/chat/completions) over httpx.
"""

import logging

import httpx

from knowledge_core.application.interfaces.chat_provider import ChatProvider
from knowledge_core.domain.entities.chat_message import (
    ChatCompletionResult,
    ChatMessage,
    TokenUsage,
)
from knowledge_core.domain.exceptions import ProviderError

logger = logging.getLogger(__name__)


class OpenRouterClient(ChatProvider):
    """Infrastructure adapter that connects to the OpenRouter chat API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        app_name: str = "Knowledge Core",
        http_client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._app_name = app_name
        self._http_client = http_client

    @property
    def provider_name(self) -> str:
        return "openrouter"

    def _get_headers(self) -> dict[str, str]:
        """Standard headers for OpenRouter requests."""
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "X-Title": self._app_name,
        }

    def _build_payload(
        self,
        messages: list[ChatMessage],
        model: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict:
        payload: dict = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
        }
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        return payload

    async def _get_client(self) -> httpx.AsyncClient:
        """Return the injected client or create a new one."""
        if self._http_client is not None:
            return self._http_client
        return httpx.AsyncClient(timeout=120.0)

    async def complete(
        self,
        messages: list[ChatMessage],
        model: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatCompletionResult:
        """Send a non-streaming chat completion to OpenRouter."""
        payload = self._build_payload(
            messages, model, temperature=temperature, max_tokens=max_tokens
        )
        url = f"{self._base_url}/chat/completions"

        client = await self._get_client()
        should_close = self._http_client is None

        try:
            response = await client.post(url, headers=self._get_headers(), json=payload)
        except httpx.HTTPError as e:
            logger.error("Chat completion request failed: %s", e)
            raise ProviderError(self.provider_name, f"request failed: {e}") from e
        finally:
            if should_close:
                await client.aclose()

        if response.status_code != 200:
            self._raise_provider_error(response)

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(self.provider_name, f"malformed completion response: {e}") from e
        return self._parse_completion_response(data)

    def _parse_completion_response(self, data: dict) -> ChatCompletionResult:
        """Parse the OpenRouter JSON response into a domain entity."""
        if "error" in data:
            error = data["error"]
            raise ProviderError(
                self.provider_name,
                error.get("message", "Unknown error"),
                error.get("code", 500),
            )

        choices = data.get("choices", [])
        if not choices:
            raise ProviderError(self.provider_name, "No choices in response", 500)

        choice = choices[0]
        message = choice.get("message", {})
        usage_data = data.get("usage", {})

        return ChatCompletionResult(
            model=data.get("model", ""),
            content=message.get("content", "") or "",
            finish_reason=choice.get("finish_reason", "stop") or "stop",
            usage=TokenUsage(
                prompt_tokens=usage_data.get("prompt_tokens", 0),
                completion_tokens=usage_data.get("completion_tokens", 0),
                total_tokens=usage_data.get("total_tokens", 0),
            ),
            provider=self.provider_name,
        )

    def _raise_provider_error(self, response: httpx.Response) -> None:
        """Raise ProviderError from a non-200 httpx Response."""
        try:
            error = response.json().get("error", {})
            message = error.get("message", response.text)
        except (ValueError, AttributeError):
            message = response.text

        logger.error("Chat API error %d: %s", response.status_code, message[:500])
        raise ProviderError(self.provider_name, message, response.status_code)
