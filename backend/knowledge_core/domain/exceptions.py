"""Domain-specific exceptions: framework-independent."""


class KnowledgeError(Exception):
    """Base class for all knowledge subsystem errors."""


class ProviderError(KnowledgeError):
    """Raised when an external provider (embeddings, chat, source tree) fails.

    Provider-agnostic: works for OpenRouter, GitHub, test doubles, etc.
    """

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        prefix = f"[{provider}] {status_code}" if status_code is not None else f"[{provider}]"
        super().__init__(f"{prefix}: {message}")


class RevisionNotFoundError(ProviderError):
    """Raised when a source revision no longer exists (e.g. rewritten history)."""

    def __init__(self, provider: str, revision: str, message: str = ""):
        self.revision = revision
        super().__init__(provider, message or f"revision '{revision}' not found", 404)


class StorageError(KnowledgeError):
    """Raised when a read or write against the persistence layer fails."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}")


class ValidationError(KnowledgeError):
    """Raised for malformed configuration or arguments. Never retried."""


class RetrievalError(KnowledgeError):
    """Raised when a search cannot be served because a hard dependency failed."""

    def __init__(self, knowledge_base_id: str, message: str):
        self.knowledge_base_id = knowledge_base_id
        self.message = message
        super().__init__(f"Retrieval from '{knowledge_base_id}' failed: {message}")


class KnowledgeBaseNotFoundError(KnowledgeError):
    """Raised when a knowledge base reference does not resolve to a registered base."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Knowledge base '{reference}' is not registered")
