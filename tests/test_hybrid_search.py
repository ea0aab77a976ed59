"""
Tests for hybrid registry search.

Tests cover:
- Query escaping and fuzzy expressions
- Score fusion (boost, lexical-only append, thresholds)
- End-to-end search modes against the in-memory store
- Fallback to lexical search when the query cannot be embedded
"""

import asyncio
import math
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from canon_kg.providers.base import EmbeddingProvider
from canon_kg.search.hybrid import (
    HybridSearchEngine,
    build_fulltext_expression,
    escape_lexical,
)
from canon_kg.storage.memory import MemoryGraphStore
from canon_kg.types import (
    CanonicalEntity,
    EntityKind,
    MatchSource,
    NodeType,
    SearchOptions,
    SearchResult,
    Tag,
)


class KeywordEmbeddings(EmbeddingProvider):
    """Maps texts to fixed 3-d vectors by keyword."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    def _vector(self, text: str) -> list[float]:
        lowered = text.lower()
        if "openai" in lowered:
            return [1.0, 0.0, 0.0]
        if "altman" in lowered:
            return [0.0, 1.0, 0.0]
        return [0.0, 0.0, 1.0]

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("rate limited")
        return [self._vector(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    @property
    def dimensions(self) -> int:
        return 3

    @property
    def model_name(self) -> str:
        return "keyword-test"


def _result(name: str, score: float, source: MatchSource = MatchSource.SEMANTIC) -> SearchResult:
    return SearchResult(
        node_type=NodeType.CANONICAL_ENTITY,
        uuid=name,
        name=name,
        entity_kind=EntityKind.CONCEPT,
        score=score,
        match_source=source,
    )


async def _seeded_store(store: MemoryGraphStore | None = None) -> MemoryGraphStore:
    store = MemoryGraphStore() if store is None else store
    now = datetime.now(timezone.utc)
    openai = await store.add_canonical(CanonicalEntity(
        uuid=str(uuid4()),
        name="OpenAI",
        normalized_name="openai",
        entity_kind=EntityKind.ORGANIZATION,
        aliases=["Open AI"],
        project_ids=["p1"],
        document_ids=["d1", "d2"],
    ))
    altman = await store.add_canonical(CanonicalEntity(
        uuid=str(uuid4()),
        name="Sam Altman",
        normalized_name="sam altman",
        entity_kind=EntityKind.PERSON,
        project_ids=["p2"],
        document_ids=["d1"],
    ))
    tag = await store.add_tag(Tag(
        uuid=str(uuid4()),
        name="machine-learning",
        normalized_name="machine-learning",
        usage_count=4,
        project_ids=["p1"],
    ))
    await store.set_embeddings(
        NodeType.CANONICAL_ENTITY,
        [(openai.uuid, [1.0, 0.0, 0.0], "h1"), (altman.uuid, [0.0, 1.0, 0.0], "h2")],
        now,
    )
    await store.set_embeddings(NodeType.TAG, [(tag.uuid, [0.0, 0.0, 1.0], "h3")], now)
    return store


class TestQueryEscaping:
    """Tests for full-text query construction."""

    def test_operators_escaped(self):
        assert escape_lexical("C++ (lang)") == "C\\+\\+ \\(lang\\)"
        assert escape_lexical('say "hi"') == 'say \\"hi\\"'

    def test_plain_text_untouched(self):
        assert escape_lexical("machine learning") == "machine learning"

    def test_every_word_gets_edit_distance_one(self):
        assert build_fulltext_expression("machine learning") == "machine~1 learning~1"
        assert build_fulltext_expression("AT&T labs") == "AT\\&T~1 labs~1"

    def test_blank_query_gives_empty_expression(self):
        assert build_fulltext_expression("   ") == ""


class TestFusion:
    """Tests for semantic/lexical score fusion."""

    def setup_method(self):
        self.engine = HybridSearchEngine(MemoryGraphStore())

    def test_corroborated_hits_boosted_by_lexical_rank(self):
        semantic = [_result("A", 0.8), _result("B", 0.7)]
        lexical = [_result("B", 2.0, MatchSource.LEXICAL)]

        fused = self.engine.fuse(semantic, lexical, limit=10, min_score=0.0)

        assert [r.name for r in fused] == ["B", "A"]
        assert fused[0].score == pytest.approx(0.7 * 1.3)
        assert fused[0].match_source == MatchSource.HYBRID
        assert fused[1].score == pytest.approx(0.8)
        assert fused[1].match_source == MatchSource.SEMANTIC

    def test_first_lexical_occurrence_sets_rank(self):
        semantic = [_result("B", 0.6)]
        lexical = [
            _result("C", 3.0, MatchSource.LEXICAL),
            _result("B", 2.0, MatchSource.LEXICAL),
            _result("B", 1.0, MatchSource.LEXICAL),
        ]

        fused = self.engine.fuse(semantic, lexical, limit=10, min_score=0.0)

        b = next(r for r in fused if r.name == "B")
        assert b.score == pytest.approx(0.6 * (1 + 0.3 / math.sqrt(2)))

    def test_at_most_three_lexical_only_hits_appended(self):
        semantic = [_result("A", 0.9)]
        lexical = [_result(n, 1.0, MatchSource.LEXICAL) for n in "CDEF"]

        fused = self.engine.fuse(semantic, lexical, limit=10, min_score=0.0)

        assert [r.name for r in fused] == ["A", "C", "D", "E"]
        assert [r.score for r in fused[1:]] == pytest.approx([0.4, 0.35, 0.3])
        assert all(r.match_source == MatchSource.LEXICAL for r in fused[1:])

    def test_min_score_and_limit_applied_after_sorting(self):
        semantic = [_result("A", 0.9), _result("B", 0.45)]
        lexical = [_result("C", 1.0, MatchSource.LEXICAL)]

        assert [r.name for r in self.engine.fuse(semantic, lexical, 10, 0.42)] == ["A", "B"]
        assert [r.name for r in self.engine.fuse(semantic, lexical, 1, 0.0)] == ["A"]


class TestSearchModes:
    """End-to-end searches against the in-memory store."""

    @pytest.mark.asyncio
    async def test_hybrid_ranks_corroborated_entity_first(self):
        store = await _seeded_store()
        engine = HybridSearchEngine(store, KeywordEmbeddings())

        results = await engine.search("OpenAI")

        assert results[0].name == "OpenAI"
        assert results[0].match_source == MatchSource.HYBRID
        assert results[0].score == pytest.approx(1.3)
        assert results[0].document_count == 2
        assert {r.name for r in results[1:]} == {"Sam Altman", "machine-learning"}

    @pytest.mark.asyncio
    async def test_lexical_mode_is_fuzzy_and_scaled(self):
        store = await _seeded_store()
        engine = HybridSearchEngine(store, KeywordEmbeddings())

        results = await engine.search("opnai", SearchOptions(use_semantic=False))

        assert [r.name for r in results] == ["OpenAI"]
        assert results[0].match_source == MatchSource.LEXICAL
        raw = await store.fulltext_search(NodeType.CANONICAL_ENTITY, "opnai~1", 10)
        assert results[0].score == pytest.approx(raw[0].score / 10)

    @pytest.mark.asyncio
    async def test_semantic_only_mode(self):
        store = await _seeded_store()
        engine = HybridSearchEngine(store, KeywordEmbeddings())

        results = await engine.search(
            "Altman", SearchOptions(use_hybrid=False, min_score=0.9)
        )

        assert [r.name for r in results] == ["Sam Altman"]
        assert results[0].match_source == MatchSource.SEMANTIC

    @pytest.mark.asyncio
    async def test_kind_filter(self):
        store = await _seeded_store()
        engine = HybridSearchEngine(store, KeywordEmbeddings())

        people = await engine.search("OpenAI", SearchOptions(entity_kinds=["Person"]))
        tags = await engine.search("learning", SearchOptions(entity_kinds=["Tag"]))

        assert [r.name for r in people] == ["Sam Altman"]
        assert all(r.node_type == NodeType.TAG for r in tags)
        assert tags[0].name == "machine-learning"
        assert tags[0].document_count == 4

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self):
        engine = HybridSearchEngine(MemoryGraphStore(), KeywordEmbeddings())
        with pytest.raises(ValueError):
            await engine.search("x", SearchOptions(entity_kinds=["Spaceship"]))

    @pytest.mark.asyncio
    async def test_project_filter(self):
        store = await _seeded_store()
        engine = HybridSearchEngine(store, KeywordEmbeddings())

        results = await engine.search(
            "OpenAI", SearchOptions(project_ids=["p2"], min_score=0.0)
        )

        assert [r.name for r in results] == ["Sam Altman"]

    @pytest.mark.asyncio
    async def test_empty_query_returns_nothing(self):
        embeddings = KeywordEmbeddings()
        engine = HybridSearchEngine(await _seeded_store(), embeddings)

        assert await engine.search("   ") == []
        assert embeddings.calls == 0


class TestEmbeddingFallback:
    """Search degrades to lexical when the query cannot be embedded."""

    @pytest.mark.asyncio
    async def test_hybrid_falls_back_to_lexical(self):
        engine = HybridSearchEngine(await _seeded_store(), KeywordEmbeddings(fail=True))

        results = await engine.search("OpenAI")

        assert [r.name for r in results] == ["OpenAI"]
        assert results[0].match_source == MatchSource.LEXICAL

    @pytest.mark.asyncio
    async def test_semantic_mode_falls_back_to_lexical(self):
        engine = HybridSearchEngine(await _seeded_store(), KeywordEmbeddings(fail=True))

        results = await engine.search("OpenAI", SearchOptions(use_hybrid=False))

        assert [r.name for r in results] == ["OpenAI"]

    @pytest.mark.asyncio
    async def test_no_provider_means_lexical(self):
        engine = HybridSearchEngine(await _seeded_store(), None)

        results = await engine.search("Altman")

        assert [r.name for r in results] == ["Sam Altman"]

    @pytest.mark.asyncio
    async def test_semantic_search_returns_empty_on_failure(self):
        engine = HybridSearchEngine(await _seeded_store(), KeywordEmbeddings(fail=True))

        assert await engine.semantic_search("OpenAI") == []


class _OverlapStore(MemoryGraphStore):
    """Each search kind waits until the other one has started."""

    def __init__(self) -> None:
        super().__init__()
        self.vector_started = asyncio.Event()
        self.fulltext_started = asyncio.Event()

    async def vector_search(self, node_type, vector, top_k):
        self.vector_started.set()
        await asyncio.wait_for(self.fulltext_started.wait(), timeout=1)
        return await super().vector_search(node_type, vector, top_k)

    async def fulltext_search(self, node_type, expression, limit):
        self.fulltext_started.set()
        await asyncio.wait_for(self.vector_started.wait(), timeout=1)
        return await super().fulltext_search(node_type, expression, limit)


class TestHybridConcurrency:
    """Semantic and lexical candidates are fetched at the same time."""

    @pytest.mark.asyncio
    async def test_sub_queries_overlap(self):
        engine = HybridSearchEngine(await _seeded_store(_OverlapStore()), KeywordEmbeddings())

        results = await engine.search("OpenAI")

        assert results[0].name == "OpenAI"
        assert results[0].match_source == MatchSource.HYBRID
