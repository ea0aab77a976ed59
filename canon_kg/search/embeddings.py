"""
Embedding Maintenance

Keeps registry embeddings in step with registry content.

Each pass reads canonical entities and tags, builds their embedding text,
and only sends records whose content hash changed (or that were never
embedded) to the embedding provider, in batches.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from canon_kg.errors import EmbeddingError
from canon_kg.search.cache_gate import (
    build_entity_text,
    build_tag_text,
    hash_content,
    needs_embedding,
    select_stale,
)
from canon_kg.types import (
    CanonicalEntity,
    EmbeddingResult,
    EmbeddingStats,
    NodeState,
    NodeType,
    Tag,
)

if TYPE_CHECKING:
    from canon_kg.providers.base import EmbeddingProvider
    from canon_kg.storage.base import GraphStore

logger = logging.getLogger(__name__)


class EmbeddingMaintainer:
    """
    Generates and refreshes embeddings for canonical entities and tags.

    Args:
        store: Graph store holding the registry
        embedding_provider: Provider used for all vectors
        batch_size: Texts per provider call
        scan_limit: Records read per node type per pass
    """

    def __init__(
        self,
        store: "GraphStore",
        embedding_provider: "EmbeddingProvider",
        *,
        batch_size: int = 100,
        scan_limit: int = 1000,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.embeddings = embedding_provider
        self.batch_size = batch_size
        self.scan_limit = scan_limit

    async def ensure_indexes(self) -> None:
        """Create vector and full-text indexes sized for the provider."""
        await self.store.ensure_search_indexes(self.embeddings.dimensions)

    async def generate_embeddings(self) -> EmbeddingResult:
        """
        Embed every canonical entity and tag whose text changed.

        Raises:
            EmbeddingError: The provider failed; batches stored before the
                failure are kept
        """
        start = time.perf_counter_ns()
        result = EmbeddingResult()

        entities = await self.store.get_canonical_entities(limit=self.scan_limit)
        stale_entities, fresh_entities = select_stale(entities, build_entity_text)
        result.entities_embedded = await self._embed_stale(
            NodeType.CANONICAL_ENTITY, stale_entities
        )

        tags = await self.store.get_tags(limit=self.scan_limit)
        stale_tags, fresh_tags = select_stale(tags, build_tag_text)
        result.tags_embedded = await self._embed_stale(NodeType.TAG, stale_tags)

        result.skipped = fresh_entities + fresh_tags
        result.elapsed_ms = (time.perf_counter_ns() - start) // 1_000_000
        logger.info(
            f"Embeddings: {result.entities_embedded} entities, {result.tags_embedded} tags, "
            f"{result.skipped} unchanged, {result.elapsed_ms}ms"
        )
        return result

    async def _embed_texts(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = await self.embeddings.embed(texts)
        except Exception as e:
            raise EmbeddingError(f"Embedding provider failed: {e}") from e
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors

    async def _embed_stale(
        self,
        node_type: NodeType,
        stale: list[tuple[CanonicalEntity, str, str]] | list[tuple[Tag, str, str]],
    ) -> int:
        embedded = 0
        for offset in range(0, len(stale), self.batch_size):
            batch = stale[offset:offset + self.batch_size]
            vectors = await self._embed_texts([text for _, text, _ in batch])
            items = [
                (record.uuid, vector, content_hash)
                for (record, _, content_hash), vector in zip(batch, vectors)
            ]
            embedded += await self.store.set_embeddings(
                node_type, items, datetime.now(timezone.utc)
            )
            logger.debug(f"Embedded {len(items)} {node_type.value} nodes")
        return embedded

    async def embed_single_entity(self, uuid: str) -> bool:
        """
        Embed one canonical entity if its text changed.

        Returns:
            True if a new vector was stored
        """
        entity = await self.store.get_canonical(uuid)
        if entity is None:
            return False
        return await self._embed_one(NodeType.CANONICAL_ENTITY, entity, build_entity_text(entity))

    async def embed_single_tag(self, uuid: str) -> bool:
        """Embed one tag if its text changed."""
        tag = await self.store.get_tag(uuid)
        if tag is None:
            return False
        return await self._embed_one(NodeType.TAG, tag, build_tag_text(tag))

    async def _embed_one(
        self,
        node_type: NodeType,
        record: CanonicalEntity | Tag,
        text: str,
    ) -> bool:
        content_hash = hash_content(text)
        if not needs_embedding(content_hash, record.embedding_hash):
            return False
        try:
            vector = await self.embeddings.embed_single(text)
        except Exception as e:
            raise EmbeddingError(f"Embedding provider failed: {e}") from e
        updated = await self.store.set_embeddings(
            node_type, [(record.uuid, vector, content_hash)], datetime.now(timezone.utc)
        )
        return updated > 0

    async def get_stats(self) -> EmbeddingStats:
        return await self.store.embedding_stats()

    # -------------------------------------------------------------------------
    # Content Nodes
    # -------------------------------------------------------------------------

    async def embed_content_nodes(
        self,
        document_id: str | None = None,
        limit: int = 50,
    ) -> int:
        """
        Embed linked content nodes and mark them ready.

        Nodes without content are left in place.

        Returns:
            Number of nodes embedded
        """
        nodes = await self.store.list_nodes([NodeState.LINKED], document_id, limit)
        pending = [n for n in nodes if n.content and n.content.strip()]
        if not pending:
            return 0

        embedded = 0
        for offset in range(0, len(pending), self.batch_size):
            batch = pending[offset:offset + self.batch_size]
            vectors = await self._embed_texts([n.content or "" for n in batch])
            embedded += await self.store.set_node_embeddings(
                [(n.uuid, v) for n, v in zip(batch, vectors)],
                self.embeddings.provider_name,
                self.embeddings.model_name,
                datetime.now(timezone.utc),
            )
        logger.info(f"Embedded {embedded} content nodes")
        return embedded
