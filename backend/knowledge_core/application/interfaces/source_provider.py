"""Abstract interface (port) for remote source trees (e.g. a repository directory)."""

from abc import ABC, abstractmethod

from knowledge_core.domain.entities.sync import ChangedFiles


class SourceTreeProvider(ABC):
    """Port for reading a versioned tree of documents.

    Raises ProviderError on upstream failures and RevisionNotFoundError when
    asked to diff against a revision that no longer exists.
    """

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    async def current_revision(self) -> str:
        """Identifier of the latest revision touching the tree (e.g. a commit SHA)."""
        ...

    @abstractmethod
    async def diff(self, old_revision: str, new_revision: str) -> ChangedFiles:
        """Files added, modified and removed between two revisions."""
        ...

    @abstractmethod
    async def list_files(self, extensions: list[str]) -> list[str]:
        """All file paths in the tree ending in one of the given extensions."""
        ...

    @abstractmethod
    async def fetch_content(self, path: str) -> str:
        """Text content of one file at the current revision."""
        ...
