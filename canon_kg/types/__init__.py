"""
Type Definitions

Pydantic models for all data structures.

Registry Models (persisted in the graph store):
    - EntityMention, CanonicalEntity, EntityKind - Entities
    - Tag, TagCategory - Thematic labels
    - DocumentRecord, NodeRecord - Processing lifecycle

Oracle Models (semantic matching contract):
    - EntityMatch, EntityMatchResponse
    - TagGroup, TagGroupResponse

Result Models:
    - EntityResolutionResult, CanonicalMergeResult, TagResolutionResult
    - EmbeddingResult, EmbeddingStats
    - SearchOptions, SearchResult
    - RetryResult
"""

from canon_kg.types.entities import (
    ENTITY_KIND_ORDER,
    CanonicalEntity,
    EntityKind,
    EntityMention,
    NameCandidate,
    normalize_entity_name,
)
from canon_kg.types.lifecycle import (
    DocumentRecord,
    DocumentState,
    LifecycleErrorType,
    NodeRecord,
    NodeState,
)
from canon_kg.types.oracle import (
    EntityMatch,
    EntityMatchResponse,
    TagGroup,
    TagGroupResponse,
)
from canon_kg.types.results import (
    CanonicalMergeResult,
    EmbeddingResult,
    EmbeddingStats,
    EntityResolutionResult,
    KindResolutionStats,
    MatchSource,
    NodeType,
    RetryResult,
    SearchOptions,
    SearchResult,
    TagResolutionResult,
)
from canon_kg.types.tags import Tag, TagCategory, normalize_tag_name

__all__ = [
    # Entities
    "ENTITY_KIND_ORDER",
    "CanonicalEntity",
    "EntityKind",
    "EntityMention",
    "NameCandidate",
    "normalize_entity_name",
    # Tags
    "Tag",
    "TagCategory",
    "normalize_tag_name",
    # Lifecycle
    "DocumentRecord",
    "DocumentState",
    "LifecycleErrorType",
    "NodeRecord",
    "NodeState",
    # Oracle
    "EntityMatch",
    "EntityMatchResponse",
    "TagGroup",
    "TagGroupResponse",
    # Results
    "CanonicalMergeResult",
    "EmbeddingResult",
    "EmbeddingStats",
    "EntityResolutionResult",
    "KindResolutionStats",
    "MatchSource",
    "NodeType",
    "RetryResult",
    "SearchOptions",
    "SearchResult",
    "TagResolutionResult",
]
