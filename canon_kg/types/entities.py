"""
Entity Types

Entities represent real-world named things mentioned across documents.

Storage Models:
    - EntityMention: One extraction of a named thing from one content node
    - CanonicalEntity: The corpus-wide deduplicated representative
    - EntityKind: Classification enum

Selection Models:
    - NameCandidate: A name variant with its usage weight
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class EntityKind(str, Enum):
    """
    Entity classification.

    Resolution is scoped per kind: a Person never merges into an
    Organization even if the names match.
    """

    PERSON = "Person"
    ORGANIZATION = "Organization"
    LOCATION = "Location"
    TECHNOLOGY = "Technology"
    CONCEPT = "Concept"
    PRODUCT = "Product"
    DATE_EVENT = "DateEvent"


# Order in which kinds are resolved and reported
ENTITY_KIND_ORDER: tuple[EntityKind, ...] = (
    EntityKind.PERSON,
    EntityKind.ORGANIZATION,
    EntityKind.LOCATION,
    EntityKind.TECHNOLOGY,
    EntityKind.CONCEPT,
    EntityKind.PRODUCT,
    EntityKind.DATE_EVENT,
)


def normalize_entity_name(name: str) -> str:
    """Uniqueness key component for canonical entities."""
    return name.strip().lower()


class EntityMention(BaseModel):
    """
    A single extraction of a named entity from one content node.

    Written by the extraction pipeline; the resolution engine only adds the
    link to a canonical entity.

    Attributes:
        uuid: Unique identifier
        name: Name as it appeared in the content
        entity_kind: Classification
        confidence: Extraction confidence (0-1)
        aliases: Alternative names seen alongside this mention
        project_id: Owning project
        document_id: Owning document
        source_node_id: Content node the mention was extracted from
        attributes: Kind-specific attributes (role, website, ...)
    """

    uuid: str
    name: str
    entity_kind: EntityKind
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    aliases: list[str] = Field(default_factory=list)
    project_id: str | None = None
    document_id: str | None = None
    source_node_id: str | None = None
    attributes: dict[str, str] = Field(default_factory=dict)
    canonical_uuid: str | None = Field(
        default=None, description="Canonical entity this mention represents, once resolved"
    )

    @property
    def normalized_name(self) -> str:
        return normalize_entity_name(self.name)


class CanonicalEntity(BaseModel):
    """
    The deduplicated representative of one real-world entity.

    At most one canonical exists per (normalized_name, entity_kind); the
    store enforces this with a uniqueness constraint.
    """

    uuid: str
    name: str
    normalized_name: str
    entity_kind: EntityKind
    aliases: list[str] = Field(default_factory=list)
    project_ids: list[str] = Field(default_factory=list)
    document_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    embedding: list[float] | None = Field(
        default=None, description="Name embedding (not loaded by every store read)"
    )
    embedding_hash: str | None = Field(
        default=None, description="Hash of the text the embedding was computed from"
    )
    embedded_at: datetime | None = None


class NameCandidate(BaseModel):
    """A name variant fed to the canonical form selector."""

    name: str
    usage_count: int = 0
