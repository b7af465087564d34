"""OpenRouter-based embedding provider: calls the /embeddings endpoint.

Default model: qwen/qwen3-embedding-8b, truncated to 1536 dimensions.
"""

import logging
from typing import Any

import httpx

from knowledge_core.application.interfaces.embedding_provider import Embedding, EmbeddingProvider
from knowledge_core.domain.exceptions import ProviderError

logger = logging.getLogger(__name__)

# nomic-embed-text models require a task prefix; other models do not.
_NOMIC_DOCUMENT_PREFIX = "search_document: "
_NOMIC_QUERY_PREFIX = "search_query: "

_PROVIDER = "openrouter"


class OpenRouterEmbeddingProvider(EmbeddingProvider):
    """Infrastructure adapter that generates embeddings via the OpenRouter /embeddings API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://openrouter.ai/api/v1",
        app_name: str = "Knowledge Core",
        model: str = "qwen/qwen3-embedding-8b",
        model_dimensions: int = 1536,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._app_name = app_name
        self._model = model
        self._dimensions = model_dimensions
        self._http_client = http_client

    @property
    def name(self) -> str:
        return _PROVIDER

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "X-Title": self._app_name,
        }

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        return httpx.AsyncClient(timeout=120.0)

    @property
    def _is_nomic(self) -> bool:
        """Whether the configured model is a nomic model requiring task prefixes."""
        return "nomic" in self._model.lower()

    async def generate_embeddings(
        self,
        texts: list[str],
        *,
        query: bool = False,
    ) -> list[Embedding]:
        """Generate embeddings for a batch of texts, in the order OpenRouter returns them.

        For nomic models, applies the appropriate task prefix automatically.
        """
        if not texts:
            return []

        if self._is_nomic:
            prefix = _NOMIC_QUERY_PREFIX if query else _NOMIC_DOCUMENT_PREFIX
            input_texts = [f"{prefix}{t}" for t in texts]
        else:
            input_texts = texts

        url = f"{self._base_url}/embeddings"
        payload: dict[str, Any] = {
            "model": self._model,
            "input": input_texts,
            "dimensions": self._dimensions,
        }

        client = await self._get_client()
        should_close = self._http_client is None

        try:
            response = await client.post(url, headers=self._get_headers(), json=payload)
        except httpx.HTTPError as e:
            logger.error("Embedding request failed: %s", e)
            raise ProviderError(_PROVIDER, f"request failed: {e}") from e
        finally:
            if should_close:
                await client.aclose()

        if response.status_code != 200:
            error_text = response.text[:500]
            logger.error("Embedding API error %d: %s", response.status_code, error_text)
            raise ProviderError(_PROVIDER, error_text, response.status_code)

        embeddings = self._parse(response)
        logger.debug(
            "Generated %d embeddings (model=%s, dims=%d)",
            len(embeddings),
            self._model,
            len(embeddings[0].vector) if embeddings else 0,
        )
        return embeddings

    @staticmethod
    def _parse(response: httpx.Response) -> list[Embedding]:
        try:
            data = response.json()
            return [
                Embedding(
                    index=int(item["index"]),
                    vector=[float(v) for v in item["embedding"]],
                )
                for item in data["data"]
            ]
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderError(_PROVIDER, f"malformed embeddings response: {e}") from e
