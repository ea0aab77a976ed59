"""
Hybrid Registry Search

Searches canonical entities and tags by meaning and by spelling.

Modes:
    - Lexical: escaped, fuzzy (edit distance 1) full-text query; raw
      relevance divided by a constant to land near 0-1
    - Semantic: the query is embedded once and run against each vector
      index; results are filtered by minimum score and project
    - Hybrid (default): both run concurrently with a widened candidate pool.
      Semantic hits that also appear lexically are boosted by
      score * (1 + boost / sqrt(lexical_rank)); a few lexical-only hits are
      appended with descending synthetic scores

If the query cannot be embedded, semantic and hybrid searches fall back to
lexical results.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from canon_kg.types import (
    EntityKind,
    MatchSource,
    NodeType,
    SearchOptions,
    SearchResult,
)

if TYPE_CHECKING:
    from canon_kg.providers.base import EmbeddingProvider
    from canon_kg.storage.base import GraphStore

logger = logging.getLogger(__name__)

_LEXICAL_SPECIAL = re.compile(r'([+\-&|!(){}\[\]^"~*?:\\/])')

# Synthetic scores for lexical-only hits appended during fusion
_LEXICAL_ONLY_BASE = 0.4
_LEXICAL_ONLY_STEP = 0.05

# Relaxed semantic floor used to gather hybrid candidates
_SEMANTIC_FLOOR = 0.1

_TAG_KIND = "Tag"


def escape_lexical(text: str) -> str:
    """Backslash-escape full-text query operators."""
    return _LEXICAL_SPECIAL.sub(r"\\\1", text)


def build_fulltext_expression(query: str) -> str:
    """
    Turn free text into a fuzzy full-text expression.

    Example:
        >>> build_fulltext_expression("machine learning")
        'machine~1 learning~1'
    """
    return " ".join(f"{word}~1" for word in escape_lexical(query).split())


@dataclass(frozen=True)
class _Targets:
    """Node types to query and the entity kinds to keep."""

    node_types: tuple[NodeType, ...]
    kinds: frozenset[EntityKind] | None


def _resolve_targets(entity_kinds: list[str] | None) -> _Targets:
    if not entity_kinds:
        return _Targets((NodeType.CANONICAL_ENTITY, NodeType.TAG), None)
    kinds = frozenset(EntityKind(k) for k in entity_kinds if k != _TAG_KIND)
    node_types: list[NodeType] = []
    if kinds:
        node_types.append(NodeType.CANONICAL_ENTITY)
    if _TAG_KIND in entity_kinds:
        node_types.append(NodeType.TAG)
    return _Targets(tuple(node_types), kinds or None)


def _keep(result: SearchResult, targets: _Targets, project_ids: list[str] | None) -> bool:
    if (
        targets.kinds is not None
        and result.node_type == NodeType.CANONICAL_ENTITY
        and result.entity_kind not in targets.kinds
    ):
        return False
    if project_ids and not set(project_ids).intersection(result.project_ids):
        return False
    return True


def _by_score(results: list[SearchResult]) -> list[SearchResult]:
    return sorted(results, key=lambda r: -r.score)


class HybridSearchEngine:
    """
    Ranked search over the canonical registry.

    Args:
        store: Graph store with vector and full-text indexes
        embedding_provider: Embeds queries; None means lexical only
        boost_factor: Boost for semantic hits corroborated lexically
        lexical_divisor: Divides raw full-text relevance
        max_candidates: Cap on candidates fetched per index
        lexical_only_slots: Lexical-only hits appended during fusion

    Example:
        >>> engine = HybridSearchEngine(store, embeddings)
        >>> results = await engine.search("openai", SearchOptions(limit=5))
    """

    def __init__(
        self,
        store: "GraphStore",
        embedding_provider: "EmbeddingProvider | None" = None,
        *,
        boost_factor: float = 0.3,
        lexical_divisor: float = 10.0,
        max_candidates: int = 100,
        lexical_only_slots: int = 3,
    ) -> None:
        self.store = store
        self.embeddings = embedding_provider
        self.boost_factor = boost_factor
        self.lexical_divisor = lexical_divisor
        self.max_candidates = max_candidates
        self.lexical_only_slots = lexical_only_slots

    async def search(
        self,
        query: str,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """
        Search canonical entities and tags.

        Args:
            query: Free-text query
            options: Mode, filters and limits (defaults: hybrid, 20 results,
                minimum score 0.3)

        Returns:
            Results sorted by descending score
        """
        options = options or SearchOptions()
        query = query.strip()
        if not query:
            return []
        targets = _resolve_targets(options.entity_kinds)
        if not targets.node_types:
            return []

        if not options.use_semantic:
            return await self._lexical(query, targets, options.limit, options.project_ids)

        if not options.use_hybrid:
            vector = await self._embed_query(query)
            if vector is None:
                return await self._lexical(query, targets, options.limit, options.project_ids)
            return await self._semantic(
                vector, targets, options.limit, options.min_score, options.project_ids
            )

        return await self._hybrid(query, targets, options)

    async def semantic_search(
        self,
        query: str,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Vector-only search. Returns [] if the query cannot be embedded."""
        options = options or SearchOptions()
        targets = _resolve_targets(options.entity_kinds)
        vector = await self._embed_query(query)
        if vector is None or not targets.node_types:
            return []
        return await self._semantic(
            vector, targets, options.limit, options.min_score, options.project_ids
        )

    async def lexical_search(
        self,
        query: str,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Full-text-only search. No minimum score is applied."""
        options = options or SearchOptions()
        targets = _resolve_targets(options.entity_kinds)
        if not targets.node_types:
            return []
        return await self._lexical(query, targets, options.limit, options.project_ids)

    # -------------------------------------------------------------------------
    # Modes
    # -------------------------------------------------------------------------

    async def _embed_query(self, query: str) -> list[float] | None:
        if self.embeddings is None:
            return None
        try:
            return await self.embeddings.embed_single(query)
        except Exception as e:
            logger.warning(f"Query embedding failed, using lexical search: {e}")
            return None

    async def _semantic(
        self,
        vector: list[float],
        targets: _Targets,
        limit: int,
        min_score: float,
        project_ids: list[str] | None,
    ) -> list[SearchResult]:
        top_k = min(limit * 2, self.max_candidates)
        per_type = await asyncio.gather(
            *(self.store.vector_search(nt, vector, top_k) for nt in targets.node_types)
        )
        results = [
            r for hits in per_type for r in hits
            if r.score >= min_score and _keep(r, targets, project_ids)
        ]
        return _by_score(results)[:limit]

    async def _lexical(
        self,
        query: str,
        targets: _Targets,
        limit: int,
        project_ids: list[str] | None,
    ) -> list[SearchResult]:
        expression = build_fulltext_expression(query)
        if not expression:
            return []
        filtered = targets.kinds is not None or bool(project_ids)
        fetch = max(limit, self.max_candidates) if filtered else limit
        per_type = await asyncio.gather(
            *(self.store.fulltext_search(nt, expression, fetch) for nt in targets.node_types)
        )
        results = [
            r.model_copy(
                update={
                    "score": r.score / self.lexical_divisor,
                    "match_source": MatchSource.LEXICAL,
                }
            )
            for hits in per_type for r in hits
            if _keep(r, targets, project_ids)
        ]
        return _by_score(results)[:limit]

    async def _hybrid(
        self,
        query: str,
        targets: _Targets,
        options: SearchOptions,
    ) -> list[SearchResult]:
        candidate_limit = min(options.limit * 3, self.max_candidates)
        floor = max(options.min_score * 0.5, _SEMANTIC_FLOOR)

        async def semantic() -> list[SearchResult] | None:
            vector = await self._embed_query(query)
            if vector is None:
                return None
            return await self._semantic(
                vector, targets, candidate_limit, floor, options.project_ids
            )

        semantic_results, lexical_results = await asyncio.gather(
            semantic(),
            self._lexical(query, targets, candidate_limit, options.project_ids),
        )
        if semantic_results is None:
            return lexical_results[:options.limit]

        logger.debug(
            f"Hybrid search: {len(semantic_results)} semantic, "
            f"{len(lexical_results)} lexical candidates"
        )
        return self.fuse(semantic_results, lexical_results, options.limit, options.min_score)

    def fuse(
        self,
        semantic: list[SearchResult],
        lexical: list[SearchResult],
        limit: int,
        min_score: float,
    ) -> list[SearchResult]:
        """
        Boost semantic hits by lexical rank and append lexical-only hits.

        Args:
            semantic: Semantic results, best first
            lexical: Lexical results, best first
            limit: Maximum results
            min_score: Minimum fused score

        Returns:
            Fused results sorted by descending score
        """
        lexical_rank: dict[str, int] = {}
        for rank, result in enumerate(lexical, start=1):
            lexical_rank.setdefault(result.uuid, rank)

        fused: list[SearchResult] = []
        seen: set[str] = set()
        for result in semantic:
            seen.add(result.uuid)
            rank = lexical_rank.get(result.uuid)
            if rank is None:
                fused.append(result)
                continue
            fused.append(
                result.model_copy(
                    update={
                        "score": result.score * (1 + self.boost_factor / math.sqrt(rank)),
                        "match_source": MatchSource.HYBRID,
                    }
                )
            )

        appended = 0
        for result in lexical:
            if appended >= self.lexical_only_slots:
                break
            if result.uuid in seen:
                continue
            seen.add(result.uuid)
            fused.append(
                result.model_copy(
                    update={
                        "score": _LEXICAL_ONLY_BASE - appended * _LEXICAL_ONLY_STEP,
                        "match_source": MatchSource.LEXICAL,
                    }
                )
            )
            appended += 1

        return [r for r in _by_score(fused) if r.score >= min_score][:limit]
