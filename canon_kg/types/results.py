"""
Result Types

Structured objects returned by resolution, search, embedding and lifecycle
operations.
"""

from enum import Enum

from pydantic import BaseModel, Field

from canon_kg.types.entities import EntityKind
from canon_kg.types.tags import TagCategory


class NodeType(str, Enum):
    """Registry node types that are embedded and searched."""

    CANONICAL_ENTITY = "CanonicalEntity"
    TAG = "Tag"


class MatchSource(str, Enum):
    """Which search mode produced a result."""

    SEMANTIC = "semantic"
    LEXICAL = "lexical"
    HYBRID = "hybrid"


# -----------------------------------------------------------------------------
# Resolution
# -----------------------------------------------------------------------------


class KindResolutionStats(BaseModel):
    """Per-kind counters for one resolution run."""

    mentions: int = 0
    merged: int = 0
    created: int = 0
    unresolved: int = 0


class EntityResolutionResult(BaseModel):
    """
    Outcome of one cross-document entity resolution run.

    Attributes:
        merged: Mentions linked to an existing canonical entity
        created: Mentions that produced a new canonical entity
        processed: Mentions loaded for this run
        unresolved: Mentions left without a canonical link
        skipped_batches: Batches whose oracle response was unusable
        aborted: True when the oracle became unreachable mid-run
        elapsed_ms: Wall time of the run
    """

    merged: int = 0
    created: int = 0
    processed: int = 0
    unresolved: int = 0
    skipped_batches: int = 0
    aborted: bool = False
    dry_run: bool = False
    elapsed_ms: int = 0
    by_kind: dict[str, KindResolutionStats] = Field(default_factory=dict)


class CanonicalMergeResult(BaseModel):
    """Outcome of the duplicate-canonical cleanup pass."""

    merged: int = 0


class TagResolutionResult(BaseModel):
    """
    Outcome of one tag resolution run.

    Attributes:
        normalized: Tags whose stale normalized name was recomputed
        merged: Tags removed by exact normalized-name merging
        llm_merged: Tags removed by semantic grouping
    """

    normalized: int = 0
    merged: int = 0
    llm_merged: int = 0
    dry_run: bool = False
    elapsed_ms: int = 0


# -----------------------------------------------------------------------------
# Embeddings
# -----------------------------------------------------------------------------


class EmbeddingResult(BaseModel):
    """Counts from one embedding maintenance pass."""

    entities_embedded: int = 0
    tags_embedded: int = 0
    skipped: int = Field(default=0, description="Records whose content hash was unchanged")
    elapsed_ms: int = 0

    @property
    def total_embedded(self) -> int:
        return self.entities_embedded + self.tags_embedded


class EmbeddingStats(BaseModel):
    """Embedding coverage of the registry."""

    total_entities: int = 0
    entities_with_embedding: int = 0
    total_tags: int = 0
    tags_with_embedding: int = 0


# -----------------------------------------------------------------------------
# Search
# -----------------------------------------------------------------------------


class SearchOptions(BaseModel):
    """
    Options for registry search.

    Attributes:
        entity_kinds: Restrict canonical results to these kinds; include the
            literal "Tag" to keep tags when filtering. None searches everything.
        use_semantic: Run vector search (otherwise lexical only)
        use_hybrid: Fuse vector and lexical results (requires use_semantic)
        limit: Maximum results
        min_score: Minimum fused score
        project_ids: Keep only results present in one of these projects
    """

    entity_kinds: list[str] | None = None
    use_semantic: bool = True
    use_hybrid: bool = True
    limit: int = Field(default=20, ge=1)
    min_score: float = Field(default=0.3, ge=0.0)
    project_ids: list[str] | None = None


class SearchResult(BaseModel):
    """One ranked registry search hit."""

    node_type: NodeType
    uuid: str
    name: str
    entity_kind: EntityKind | None = None
    category: TagCategory | None = None
    aliases: list[str] = Field(default_factory=list)
    score: float
    document_count: int = Field(
        default=0, description="Documents mentioning the entity, or usage count for tags"
    )
    project_ids: list[str] = Field(default_factory=list)
    match_source: MatchSource = MatchSource.SEMANTIC


# -----------------------------------------------------------------------------
# Lifecycle
# -----------------------------------------------------------------------------


class RetryResult(BaseModel):
    """Documents moved back to pending by a bulk retry or stuck reset."""

    reset: int = 0
    document_ids: list[str] = Field(default_factory=list)
