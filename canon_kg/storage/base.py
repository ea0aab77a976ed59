"""
Abstract Graph Store Interface

Defines the contract the resolution, search and lifecycle engines use to
reach the property graph.

Concurrency:
    The store is the only shared mutable resource. Every write that can
    race (canonical creation, tag creation, lifecycle transitions) is a
    single atomic store operation keyed on a uniqueness constraint or a
    compare-and-set on the current state. Engines never hold a lock across
    oracle or embedding calls.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from canon_kg.types import (
        CanonicalEntity,
        DocumentRecord,
        DocumentState,
        EmbeddingStats,
        EntityKind,
        EntityMention,
        NodeRecord,
        NodeState,
        NodeType,
        SearchResult,
        Tag,
        TagCategory,
    )


class GraphStore(ABC):
    """
    Abstract interface for graph stores.

    Lifecycle:
        store = Neo4jGraphStore(uri, user, password)
        await store.initialize()
        # ... operations ...
        await store.close()

    Or using context manager:
        async with MemoryGraphStore() as store:
            await store.add_mentions(mentions)
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Connect and create uniqueness constraints."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close storage and release resources."""
        ...

    async def __aenter__(self) -> "GraphStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @abstractmethod
    async def ensure_search_indexes(self, dimensions: int) -> None:
        """Create the vector and full-text indexes used by registry search."""
        ...

    # -------------------------------------------------------------------------
    # Entity Mentions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_mentions(self, mentions: list["EntityMention"]) -> None:
        """Write entity mentions produced by extraction."""
        ...

    @abstractmethod
    async def get_unresolved_mentions(
        self,
        min_confidence: float,
        limit: int,
        kinds: list["EntityKind"] | None = None,
    ) -> list["EntityMention"]:
        """
        Mentions without a canonical link and with confidence >= min_confidence.

        Ordered by entity kind, then name.
        """
        ...

    @abstractmethod
    async def get_mention(self, uuid: str) -> "EntityMention | None":
        """Get a mention by UUID, including its canonical link."""
        ...

    # -------------------------------------------------------------------------
    # Canonical Entities
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_canonical_entities(
        self,
        kinds: list["EntityKind"] | None = None,
        limit: int | None = None,
    ) -> list["CanonicalEntity"]:
        """Canonical entities ordered by kind, then name. Embedding vectors are not loaded."""
        ...

    @abstractmethod
    async def get_canonical(self, uuid: str) -> "CanonicalEntity | None":
        ...

    @abstractmethod
    async def upsert_canonical(
        self,
        candidate: "CanonicalEntity",
        mention_uuid: str,
    ) -> tuple["CanonicalEntity", bool]:
        """
        Create-if-absent keyed on (normalized_name, entity_kind), then link the mention.

        A created canonical lists its own name among its aliases, so the alias
        set holds every surface name that reached it.

        When a canonical already exists for the key, its aliases gain the
        candidate name and its project/document sets gain the candidate's.

        Returns:
            (resulting canonical, True if this call created it)

        Raises:
            ConstraintViolationError: A concurrent writer created the key
                between this call's read and write
        """
        ...

    @abstractmethod
    async def augment_canonical(
        self,
        normalized_name: str,
        kind: "EntityKind",
        name: str,
        project_id: str | None,
        document_id: str | None,
        mention_uuid: str,
    ) -> "CanonicalEntity | None":
        """Add name/project/document to an existing canonical and link the mention."""
        ...

    @abstractmethod
    async def merge_mention_into_canonical(
        self,
        canonical_uuid: str,
        mention_uuid: str,
        name: str,
        normalized_name: str,
        aliases: list[str],
        project_id: str | None,
        document_id: str | None,
    ) -> "CanonicalEntity":
        """
        Rename the canonical, replace its aliases, union in project/document, link mention.

        Raises:
            ConstraintViolationError: normalized_name belongs to another canonical
        """
        ...

    @abstractmethod
    async def find_duplicate_canonicals(
        self,
    ) -> list[tuple["CanonicalEntity", "CanonicalEntity"]]:
        """
        Pairs of canonicals sharing (normalized_name, entity_kind).

        Each pair is (older, younger) by creation time, then UUID.
        """
        ...

    @abstractmethod
    async def merge_canonical_pair(
        self,
        keep_uuid: str,
        drop_uuid: str,
        name: str,
        aliases: list[str],
    ) -> None:
        """Move mention links from drop to keep, union sets, rename keep, delete drop."""
        ...

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    @abstractmethod
    async def upsert_tag(
        self,
        name: str,
        normalized_name: str,
        category: "TagCategory",
        project_id: str | None = None,
        source_id: str | None = None,
    ) -> tuple["Tag", bool]:
        """
        Create-if-absent keyed on normalized_name, count one usage, link the source node.

        Returns:
            (resulting tag, True if this call created it)
        """
        ...

    @abstractmethod
    async def get_tags(self, limit: int | None = None) -> list["Tag"]:
        """Tags ordered by creation time, then UUID. Embedding vectors are not loaded."""
        ...

    @abstractmethod
    async def get_tag(self, uuid: str) -> "Tag | None":
        ...

    @abstractmethod
    async def get_tagged_sources(self, tag_uuid: str) -> list[str]:
        """Source node ids carrying the tag."""
        ...

    @abstractmethod
    async def normalize_tags(self) -> int:
        """
        Recompute stale normalized names.

        A tag whose recomputed form is already taken by another tag keeps its
        stale value; exact merging reconciles it.

        Returns:
            Number of tags updated
        """
        ...

    @abstractmethod
    async def merge_tags(
        self,
        target_uuid: str,
        variant_uuids: list[str],
        name: str,
        normalized_name: str,
        category: "TagCategory",
        aliases: list[str],
    ) -> int:
        """
        Fold variant tags into the target.

        HAS_TAG links move to the target unless already present, usage counts
        are summed, project sets unioned, variants deleted, then the target
        takes the given name, normalized name, category and aliases.

        Returns:
            Number of variant tags deleted
        """
        ...

    # -------------------------------------------------------------------------
    # Embeddings and Search
    # -------------------------------------------------------------------------

    @abstractmethod
    async def set_embeddings(
        self,
        node_type: "NodeType",
        items: list[tuple[str, list[float], str]],
        embedded_at: datetime,
    ) -> int:
        """Store (uuid, vector, content hash) triples. Returns records updated."""
        ...

    @abstractmethod
    async def embedding_stats(self) -> "EmbeddingStats":
        ...

    @abstractmethod
    async def vector_search(
        self,
        node_type: "NodeType",
        vector: list[float],
        top_k: int,
    ) -> list["SearchResult"]:
        """Nearest neighbors by cosine score, best first."""
        ...

    @abstractmethod
    async def fulltext_search(
        self,
        node_type: "NodeType",
        expression: str,
        limit: int,
    ) -> list["SearchResult"]:
        """
        Lexical query over name, normalized name and aliases.

        The expression uses whitespace-separated terms, each optionally
        suffixed with "~1" for edit-distance-1 matching and with special
        characters backslash-escaped. Scores are raw relevance, best first.
        """
        ...

    # -------------------------------------------------------------------------
    # Document Lifecycle
    # -------------------------------------------------------------------------

    @abstractmethod
    async def initialize_document(
        self,
        document_id: str,
        project_id: str | None,
        content_hash: str | None,
        now: datetime,
    ) -> "DocumentRecord":
        """
        Create a pending record, or return the existing one.

        An existing record whose content hash differs is reset to pending with
        cleared error fields, retry count and stage timestamps.
        """
        ...

    @abstractmethod
    async def get_document(self, document_id: str) -> "DocumentRecord | None":
        ...

    @abstractmethod
    async def update_document(
        self,
        document_id: str,
        expected_state: "DocumentState",
        changes: dict[str, Any],
    ) -> "DocumentRecord | None":
        """
        Compare-and-set: apply changes only if the record is still in expected_state.

        Returns:
            The updated record, or None if the record is missing or moved on
        """
        ...

    @abstractmethod
    async def list_documents(
        self,
        states: list["DocumentState"],
        limit: int | None = None,
        project_id: str | None = None,
    ) -> list["DocumentRecord"]:
        """Documents in any of the states, oldest state change first."""
        ...

    @abstractmethod
    async def count_documents_by_state(
        self, project_id: str | None = None
    ) -> dict[str, int]:
        ...

    # -------------------------------------------------------------------------
    # Content Node Lifecycle
    # -------------------------------------------------------------------------

    @abstractmethod
    async def add_content_nodes(self, nodes: list["NodeRecord"]) -> None:
        ...

    @abstractmethod
    async def update_nodes(
        self,
        document_id: str,
        from_states: list["NodeState"],
        changes: dict[str, Any],
        increment_retry: bool = False,
    ) -> int:
        """
        Apply changes to the document's nodes currently in from_states.

        increment_retry adds one to each node's retry count.

        Returns:
            Number of nodes updated
        """
        ...

    @abstractmethod
    async def list_nodes(
        self,
        states: list["NodeState"],
        document_id: str | None = None,
        limit: int | None = None,
    ) -> list["NodeRecord"]:
        ...

    @abstractmethod
    async def count_nodes_by_state(
        self, document_id: str | None = None
    ) -> dict[str, int]:
        ...

    @abstractmethod
    async def set_node_embeddings(
        self,
        items: list[tuple[str, list[float]]],
        provider: str,
        model: str,
        now: datetime,
    ) -> int:
        """Store content-node vectors and mark those nodes ready. Returns count."""
        ...
