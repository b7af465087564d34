"""Knowledge base registry, loaded from a YAML file of definitions.

Example file::

    knowledge_bases:
      - id: takaro-docs
        name: Takaro documentation
        default_version: latest
        ingestion:
          source: https://github.com/gettakaro/takaro/tree/development/packages/web-docs/docs
          refresh_schedule: "0 * * * *"
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from knowledge_core.config import IngestionConfig
from knowledge_core.domain.entities.knowledge_base import KnowledgeBase
from knowledge_core.domain.exceptions import KnowledgeBaseNotFoundError, ValidationError

logger = logging.getLogger(__name__)


class KnowledgeBaseDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1, pattern=r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
    name: str = ""
    description: str = ""
    default_version: str = "latest"
    versions: list[str] = Field(default_factory=list)
    ingestion: IngestionConfig | None = None

    def to_entity(self) -> KnowledgeBase:
        return KnowledgeBase(
            id=self.id,
            name=self.name or self.id,
            description=self.description,
            default_version=self.default_version,
            versions=list(self.versions),
            ingestion=self.ingestion,
        )


class RegistryFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    knowledge_bases: list[KnowledgeBaseDefinition] = Field(default_factory=list)


class KnowledgeRegistry:
    """In-memory catalogue of knowledge bases, addressed as `kb` or `kb/version`."""

    def __init__(self, knowledge_bases: list[KnowledgeBase] | None = None):
        self._bases: dict[str, KnowledgeBase] = {}
        for kb in knowledge_bases or []:
            self.register(kb)

    def register(self, knowledge_base: KnowledgeBase) -> None:
        if knowledge_base.id in self._bases:
            raise ValidationError(f"Knowledge base '{knowledge_base.id}' is already registered")
        self._bases[knowledge_base.id] = knowledge_base

    def get(self, knowledge_base_id: str) -> KnowledgeBase:
        try:
            return self._bases[knowledge_base_id]
        except KeyError:
            raise KnowledgeBaseNotFoundError(knowledge_base_id) from None

    def resolve(self, reference: str) -> tuple[KnowledgeBase, str]:
        """Split a `kb` or `kb/version` reference into the base and a concrete version.

        Raises:
            KnowledgeBaseNotFoundError: unknown base, or a version it does not index.
        """
        kb_id, _, version = reference.partition("/")
        kb = self.get(kb_id)
        if not version:
            return kb, kb.default_version
        if version not in kb.versions:
            raise KnowledgeBaseNotFoundError(reference)
        return kb, version

    def list_ids(self) -> list[str]:
        return list(self._bases)

    def list_refs(self) -> list[str]:
        """Every addressable `kb/version` reference."""
        return [f"{kb.id}/{version}" for kb in self._bases.values() for version in kb.versions]

    def all(self) -> list[KnowledgeBase]:
        return list(self._bases.values())

    def __len__(self) -> int:
        return len(self._bases)

    def __contains__(self, knowledge_base_id: object) -> bool:
        return knowledge_base_id in self._bases


def parse_registry(data: dict | None) -> KnowledgeRegistry:
    try:
        parsed = RegistryFile.model_validate(data or {})
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid knowledge base registry: {e}") from e
    return KnowledgeRegistry([definition.to_entity() for definition in parsed.knowledge_bases])


def load_registry(path: str | Path) -> KnowledgeRegistry:
    """Read and validate a registry file. A missing file yields an empty registry."""
    path = Path(path)
    if not path.exists():
        logger.warning("Knowledge base registry %s not found, starting empty", path)
        return KnowledgeRegistry()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValidationError(f"Cannot parse {path}: {e}") from e

    registry = parse_registry(data)
    logger.info("Loaded %d knowledge bases from %s", len(registry), path)
    return registry
