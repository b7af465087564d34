"""Abstract chat provider interface (port) for LLM completions."""

from abc import ABC, abstractmethod

from knowledge_core.domain.entities.chat_message import ChatCompletionResult, ChatMessage


class ChatProvider(ABC):
    """Port: what the application layer needs from a chat completion API."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[ChatMessage],
        model: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatCompletionResult:
        """Send a non-streaming chat completion request.

        Args:
            messages: The conversation so far.
            model: The model identifier (e.g. 'meta-llama/llama-3.1-8b-instruct').
            temperature: Sampling temperature (0.0–2.0).
            max_tokens: Maximum tokens in the response.

        Raises:
            ProviderError: the provider returned an error or was unreachable.
        """
        ...
