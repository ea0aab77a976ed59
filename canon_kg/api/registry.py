"""
CanonRegistry - Primary Entry Point

The CanonRegistry wires a graph store, an LLM-backed semantic matcher and an
embedding provider into the resolution, search and lifecycle components.

Components are created lazily from KGConfig on first use; any of them can be
injected instead (tests pass a MemoryGraphStore and mocked providers).

Example:
    >>> async with CanonRegistry() as registry:
    ...     await registry.resolve_entities()
    ...     await registry.resolve_tags()
    ...     await registry.generate_embeddings()
    ...     results = await registry.search("machine learning")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from canon_kg.config.settings import KGConfig
    from canon_kg.lifecycle.tracker import LifecycleTracker
    from canon_kg.oracle.base import SemanticMatcher
    from canon_kg.providers.base import EmbeddingProvider, LLMProvider
    from canon_kg.resolution.entity_resolver import EntityResolver
    from canon_kg.resolution.tag_resolver import TagResolver
    from canon_kg.search.embeddings import EmbeddingMaintainer
    from canon_kg.search.hybrid import HybridSearchEngine
    from canon_kg.storage.base import GraphStore
    from canon_kg.types import (
        CanonicalMergeResult,
        DocumentRecord,
        DocumentState,
        EmbeddingResult,
        EmbeddingStats,
        EntityKind,
        EntityMention,
        EntityResolutionResult,
        LifecycleErrorType,
        NodeRecord,
        NodeState,
        RetryResult,
        SearchResult,
        Tag,
        TagCategory,
        TagResolutionResult,
    )

logger = logging.getLogger(__name__)


class CanonRegistry:
    """
    Cross-document entity and tag registry.

    Args:
        config: Optional configuration. Uses defaults (and environment) if not provided.
        store: Graph store to use instead of the configured backend
        llm_provider: LLM provider for the default semantic matcher
        embedding_provider: Embedding provider for embeddings and search
        matcher: Semantic matcher to use instead of the LLM-backed one
    """

    def __init__(
        self,
        config: "KGConfig | None" = None,
        *,
        store: "GraphStore | None" = None,
        llm_provider: "LLMProvider | None" = None,
        embedding_provider: "EmbeddingProvider | None" = None,
        matcher: "SemanticMatcher | None" = None,
    ) -> None:
        if config is None:
            from canon_kg.config import KGConfig
            config = KGConfig()
        self._config = config

        self._store = store
        self._owns_store = store is None
        self._llm = llm_provider
        self._embeddings = embedding_provider
        self._matcher = matcher

        self._entity_resolver: "EntityResolver | None" = None
        self._tag_resolver: "TagResolver | None" = None
        self._maintainer: "EmbeddingMaintainer | None" = None
        self._search_engine: "HybridSearchEngine | None" = None
        self._tracker: "LifecycleTracker | None" = None
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        """Lazy initialization of store and components on first use."""
        if self._initialized:
            return

        if self._store is None:
            self._store = self._create_store()
        await self._store.initialize()

        if self._matcher is None:
            if self._llm is None and self._config.openai_api_key:
                self._llm = self._create_llm_provider()
            if self._llm is not None:
                from canon_kg.oracle.llm import LLMSemanticMatcher
                self._matcher = LLMSemanticMatcher(
                    self._llm, temperature=self._config.llm_temperature
                )
            else:
                logger.warning("No LLM configured; similarity-based merging is disabled")

        if self._embeddings is None and self._config.openai_api_key:
            self._embeddings = self._create_embedding_provider()

        self._build_components()
        self._initialized = True

    def _create_store(self) -> "GraphStore":
        """Create graph store based on config."""
        backend = self._config.store_backend.lower()

        if backend == "neo4j":
            from canon_kg.storage.neo4j import Neo4jGraphStore
            return Neo4jGraphStore(
                uri=self._config.neo4j_uri,
                user=self._config.neo4j_user,
                password=self._config.neo4j_password or "",
                database=self._config.neo4j_database,
                max_connection_pool_size=self._config.neo4j_max_pool_size,
            )
        elif backend == "memory":
            from canon_kg.storage.memory import MemoryGraphStore
            return MemoryGraphStore()
        else:
            raise ValueError(f"Unknown store backend: {backend}")

    def _create_llm_provider(self) -> "LLMProvider":
        """Create LLM provider based on config."""
        provider = self._config.llm_provider.lower()

        if provider == "openai":
            from canon_kg.providers.llm.openai import OpenAILLMProvider
            return OpenAILLMProvider(
                api_key=self._config.openai_api_key,
                model=self._config.llm_model,
                timeout=self._config.llm_timeout,
                max_retries=self._config.llm_max_retries,
            )
        else:
            raise ValueError(f"Unknown LLM provider: {provider}")

    def _create_embedding_provider(self) -> "EmbeddingProvider":
        """Create embedding provider based on config."""
        provider = self._config.embedding_provider.lower()

        if provider == "openai":
            from canon_kg.providers.embedding.openai import OpenAIEmbeddingProvider
            return OpenAIEmbeddingProvider(
                api_key=self._config.openai_api_key,
                model=self._config.embedding_model,
                dimensions=self._config.embedding_dimensions,
                timeout=self._config.embedding_timeout,
            )
        else:
            raise ValueError(f"Unknown embedding provider: {provider}")

    def _build_components(self) -> None:
        from canon_kg.lifecycle.tracker import LifecycleTracker
        from canon_kg.resolution.entity_resolver import EntityResolver
        from canon_kg.resolution.tag_resolver import TagResolver
        from canon_kg.search.embeddings import EmbeddingMaintainer
        from canon_kg.search.hybrid import HybridSearchEngine

        config = self._config
        assert self._store is not None
        self._entity_resolver = EntityResolver(
            self._store,
            self._matcher,
            min_confidence=config.resolution_min_confidence,
            max_entities=config.resolution_max_entities,
            batch_size=config.resolution_batch_size,
            min_similarity=config.resolution_min_similarity,
            create_unmatched=config.resolution_create_unmatched,
            kind_concurrency=config.resolution_kind_concurrency,
        )
        self._tag_resolver = TagResolver(
            self._store,
            self._matcher,
            max_tags=config.resolution_max_entities,
        )
        if self._embeddings is not None:
            self._maintainer = EmbeddingMaintainer(
                self._store,
                self._embeddings,
                batch_size=config.embedding_batch_size,
                scan_limit=config.embedding_scan_limit,
            )
        self._search_engine = HybridSearchEngine(
            self._store,
            self._embeddings,
            boost_factor=config.search_boost_factor,
            lexical_divisor=config.search_lexical_divisor,
            max_candidates=config.search_max_candidates,
            lexical_only_slots=config.search_lexical_only_slots,
        )
        self._tracker = LifecycleTracker(
            self._store,
            stuck_threshold_minutes=config.lifecycle_stuck_threshold_minutes,
            max_retries=config.lifecycle_max_retries,
        )

    # === Lifecycle ===

    async def __aenter__(self) -> "CanonRegistry":
        """Async context manager entry."""
        await self._ensure_initialized()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Release the store connection if this registry created it."""
        if self._store is not None and self._initialized and self._owns_store:
            await self._store.close()
            self._store = None
        self._initialized = False

    # === Properties ===

    @property
    def config(self) -> "KGConfig":
        """Current configuration."""
        return self._config

    @property
    def store(self) -> "GraphStore | None":
        return self._store

    # === Resolution ===

    async def add_mentions(self, mentions: list["EntityMention"]) -> None:
        """Write extracted entity mentions to the store."""
        await self._ensure_initialized()
        assert self._store is not None
        await self._store.add_mentions(mentions)

    async def resolve_entities(
        self,
        entity_kinds: list["EntityKind"] | None = None,
        dry_run: bool = False,
    ) -> "EntityResolutionResult":
        """Link unresolved mentions to canonical entities."""
        await self._ensure_initialized()
        assert self._entity_resolver is not None
        return await self._entity_resolver.resolve_entities(entity_kinds, dry_run=dry_run)

    async def merge_canonicals(self) -> "CanonicalMergeResult":
        """Merge canonicals left duplicated by concurrent writers."""
        await self._ensure_initialized()
        assert self._entity_resolver is not None
        return await self._entity_resolver.merge_canonicals()

    async def resolve_tags(self, dry_run: bool = False) -> "TagResolutionResult":
        """Normalize and merge duplicate tags."""
        await self._ensure_initialized()
        assert self._tag_resolver is not None
        return await self._tag_resolver.resolve_tags(dry_run=dry_run)

    async def tag_node(
        self,
        source_id: str,
        name: str,
        category: "TagCategory | str | None" = None,
        project_id: str | None = None,
    ) -> "Tag":
        """Attach a tag to a content node, creating the tag if needed."""
        from canon_kg.types import TagCategory

        await self._ensure_initialized()
        assert self._tag_resolver is not None
        return await self._tag_resolver.tag_node(
            source_id, name, TagCategory(category or TagCategory.OTHER), project_id
        )

    # === Embeddings and Search ===

    def _require_maintainer(self) -> "EmbeddingMaintainer":
        if self._maintainer is None:
            from canon_kg.errors import EmbeddingError
            raise EmbeddingError(
                "No embedding provider configured. Set OPENAI_API_KEY or pass embedding_provider."
            )
        return self._maintainer

    async def generate_embeddings(self) -> "EmbeddingResult":
        """Embed canonical entities and tags whose text changed."""
        await self._ensure_initialized()
        return await self._require_maintainer().generate_embeddings()

    async def ensure_search_indexes(self) -> None:
        await self._ensure_initialized()
        await self._require_maintainer().ensure_indexes()

    async def embedding_stats(self) -> "EmbeddingStats":
        await self._ensure_initialized()
        assert self._store is not None
        return await self._store.embedding_stats()

    async def search(
        self,
        query: str,
        *,
        entity_kinds: list[str] | None = None,
        use_semantic: bool = True,
        use_hybrid: bool = True,
        limit: int | None = None,
        min_score: float | None = None,
        project_ids: list[str] | None = None,
    ) -> list["SearchResult"]:
        """
        Search canonical entities and tags.

        Args:
            query: Free-text query
            entity_kinds: Restrict to these kinds ("Tag" keeps tags)
            use_semantic: Use vector search (lexical only if False)
            use_hybrid: Fuse vector and lexical results
            limit: Maximum results (config default if None)
            min_score: Minimum score (config default if None)
            project_ids: Keep only results present in these projects
        """
        from canon_kg.types import SearchOptions

        await self._ensure_initialized()
        assert self._search_engine is not None
        options = SearchOptions(
            entity_kinds=entity_kinds,
            use_semantic=use_semantic,
            use_hybrid=use_hybrid,
            limit=limit if limit is not None else self._config.search_limit,
            min_score=min_score if min_score is not None else self._config.search_min_score,
            project_ids=project_ids,
        )
        return await self._search_engine.search(query, options)

    # === Document Lifecycle ===

    @property
    def lifecycle(self) -> "LifecycleTracker":
        """Lifecycle tracker (available after initialization)."""
        if self._tracker is None:
            raise RuntimeError("Registry not initialized; use 'async with' or call an operation first")
        return self._tracker

    async def initialize_document(
        self,
        document_id: str,
        project_id: str | None = None,
        content_hash: str | None = None,
    ) -> "DocumentRecord":
        await self._ensure_initialized()
        return await self.lifecycle.initialize_document(document_id, project_id, content_hash)

    async def transition(
        self,
        document_id: str,
        target: "DocumentState | str",
        error_type: "LifecycleErrorType | str | None" = None,
        error_message: str | None = None,
    ) -> "DocumentRecord":
        await self._ensure_initialized()
        return await self.lifecycle.transition(document_id, target, error_type, error_message)

    async def count_by_state(self, project_id: str | None = None) -> dict[str, int]:
        await self._ensure_initialized()
        return await self.lifecycle.count_by_state(project_id)

    async def get_documents_in_state(
        self,
        states: "list[DocumentState] | DocumentState",
        limit: int = 100,
        project_id: str | None = None,
    ) -> list["DocumentRecord"]:
        await self._ensure_initialized()
        return await self.lifecycle.get_documents_in_state(states, limit, project_id)

    async def retry_errors(self, max_retries: int | None = None) -> "RetryResult":
        await self._ensure_initialized()
        return await self.lifecycle.retry_errors(max_retries)

    async def reset_stuck_documents(
        self, threshold_minutes: float | None = None
    ) -> "RetryResult":
        await self._ensure_initialized()
        return await self.lifecycle.reset_stuck_documents(threshold_minutes)

    async def count_nodes_by_state(self, document_id: str | None = None) -> dict[str, int]:
        await self._ensure_initialized()
        return await self.lifecycle.count_nodes_by_state(document_id)

    async def get_nodes_needing_embedding(self, limit: int = 50) -> list["NodeRecord"]:
        await self._ensure_initialized()
        return await self.lifecycle.get_nodes_needing_embedding(limit)

    async def transition_nodes(
        self,
        document_id: str,
        target: "NodeState | str",
        from_states: list["NodeState"] | None = None,
        embedding_model: str | None = None,
    ) -> int:
        await self._ensure_initialized()
        return await self.lifecycle.transition_nodes(
            document_id, target, from_states, embedding_model
        )

    async def embed_content_nodes(
        self, document_id: str | None = None, limit: int = 50
    ) -> int:
        """Embed linked content nodes and mark them ready."""
        await self._ensure_initialized()
        return await self._require_maintainer().embed_content_nodes(document_id, limit)
