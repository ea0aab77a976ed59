"""Tests for embedding maintenance and the content-hash cache gate."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from canon_kg.errors import EmbeddingError
from canon_kg.providers.base import EmbeddingProvider
from canon_kg.search.cache_gate import (
    build_entity_text,
    build_tag_text,
    hash_content,
    needs_embedding,
    select_stale,
)
from canon_kg.search.embeddings import EmbeddingMaintainer
from canon_kg.storage.memory import MemoryGraphStore
from canon_kg.types import (
    CanonicalEntity,
    EntityKind,
    NodeRecord,
    NodeState,
    Tag,
    TagCategory,
)


class CountingEmbeddings(EmbeddingProvider):
    """Returns a constant vector and records every text it embeds."""

    def __init__(self, fail: bool = False, short: bool = False) -> None:
        self.fail = fail
        self.short = short
        self.texts: list[str] = []
        self.batches: list[int] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if self.fail:
            raise RuntimeError("provider down")
        self.texts.extend(texts)
        self.batches.append(len(texts))
        vectors = [[float(len(t)), 1.0] for t in texts]
        return vectors[:-1] if self.short else vectors

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    @property
    def dimensions(self) -> int:
        return 2

    @property
    def model_name(self) -> str:
        return "counting-test"


def _entity(name: str, aliases: list[str] | None = None) -> CanonicalEntity:
    return CanonicalEntity(
        uuid=str(uuid4()),
        name=name,
        normalized_name=name.lower(),
        entity_kind=EntityKind.ORGANIZATION,
        aliases=aliases or [],
    )


def _tag(name: str) -> Tag:
    return Tag(uuid=str(uuid4()), name=name, normalized_name=name, category=TagCategory.TOPIC)


class TestCacheGate:
    """Tests for embedding text and hashing."""

    def test_entity_text_with_aliases(self):
        entity = _entity("Microsoft Corporation", ["Microsoft", "MSFT"])
        assert build_entity_text(entity) == (
            "Microsoft Corporation\nAliases: Microsoft, MSFT\nType: Organization"
        )

    def test_entity_text_without_aliases(self):
        assert build_entity_text(_entity("Contoso")) == "Contoso\nType: Organization"

    def test_tag_text(self):
        tag = _tag("machine-learning").model_copy(update={"aliases": ["ML"]})
        assert build_tag_text(tag) == "machine-learning\nAliases: ML\nCategory: topic"

    def test_hash_is_short_and_stable(self):
        assert hash_content("OpenAI") == hash_content("OpenAI")
        assert len(hash_content("OpenAI")) == 16
        assert hash_content("OpenAI") != hash_content("OpenAI\nAliases: Open AI")

    def test_needs_embedding(self):
        assert needs_embedding("abc", None)
        assert needs_embedding("abc", "def")
        assert not needs_embedding("abc", "abc")

    def test_select_stale_splits_records(self):
        fresh = _entity("Contoso")
        fresh.embedding_hash = hash_content(build_entity_text(fresh))
        stale = _entity("Fabrikam")

        selected, fresh_count = select_stale([fresh, stale], build_entity_text)

        assert fresh_count == 1
        assert [(r.uuid, text) for r, text, _ in selected] == [
            (stale.uuid, "Fabrikam\nType: Organization")
        ]


class TestGenerateEmbeddings:
    """Tests for incremental embedding generation."""

    @pytest.mark.asyncio
    async def test_second_pass_embeds_nothing(self):
        store = MemoryGraphStore()
        await store.add_canonical(_entity("OpenAI"))
        await store.add_tag(_tag("robotics"))
        provider = CountingEmbeddings()
        maintainer = EmbeddingMaintainer(store, provider)

        first = await maintainer.generate_embeddings()
        second = await maintainer.generate_embeddings()

        assert (first.entities_embedded, first.tags_embedded, first.skipped) == (1, 1, 0)
        assert (second.entities_embedded, second.tags_embedded, second.skipped) == (0, 0, 2)
        assert len(provider.texts) == 2

    @pytest.mark.asyncio
    async def test_alias_change_triggers_reembedding(self):
        store = MemoryGraphStore()
        entity = await store.add_canonical(_entity("OpenAI"))
        provider = CountingEmbeddings()
        maintainer = EmbeddingMaintainer(store, provider)
        await maintainer.generate_embeddings()

        await store.merge_mention_into_canonical(
            entity.uuid, "m1", "OpenAI", "openai", ["Open AI"], None, None
        )
        result = await maintainer.generate_embeddings()

        assert result.entities_embedded == 1
        assert provider.texts[-1] == "OpenAI\nAliases: Open AI\nType: Organization"

    @pytest.mark.asyncio
    async def test_batches_respect_batch_size(self):
        store = MemoryGraphStore()
        for name in ["A1", "B2", "C3", "D4", "E5"]:
            await store.add_canonical(_entity(name))
        provider = CountingEmbeddings()

        result = await EmbeddingMaintainer(store, provider, batch_size=2).generate_embeddings()

        assert result.entities_embedded == 5
        assert provider.batches == [2, 2, 1]
        stats = await store.embedding_stats()
        assert stats.entities_with_embedding == 5

    @pytest.mark.asyncio
    async def test_provider_failure_raises_embedding_error(self):
        store = MemoryGraphStore()
        await store.add_canonical(_entity("OpenAI"))

        with pytest.raises(EmbeddingError):
            await EmbeddingMaintainer(store, CountingEmbeddings(fail=True)).generate_embeddings()

    @pytest.mark.asyncio
    async def test_vector_count_mismatch_raises(self):
        store = MemoryGraphStore()
        await store.add_canonical(_entity("OpenAI"))
        await store.add_canonical(_entity("Contoso"))

        with pytest.raises(EmbeddingError, match="returned 1 vectors for 2 texts"):
            await EmbeddingMaintainer(store, CountingEmbeddings(short=True)).generate_embeddings()

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            EmbeddingMaintainer(MemoryGraphStore(), CountingEmbeddings(), batch_size=0)


class TestSingleRecord:
    """Tests for single-record embedding."""

    @pytest.mark.asyncio
    async def test_embed_single_entity_is_gated(self):
        store = MemoryGraphStore()
        entity = await store.add_canonical(_entity("OpenAI"))
        maintainer = EmbeddingMaintainer(store, CountingEmbeddings())

        assert await maintainer.embed_single_entity(entity.uuid) is True
        assert await maintainer.embed_single_entity(entity.uuid) is False
        assert await maintainer.embed_single_entity("missing") is False

    @pytest.mark.asyncio
    async def test_embed_single_tag(self):
        store = MemoryGraphStore()
        tag = await store.add_tag(_tag("robotics"))
        maintainer = EmbeddingMaintainer(store, CountingEmbeddings())

        assert await maintainer.embed_single_tag(tag.uuid) is True
        stats = await maintainer.get_stats()
        assert stats.tags_with_embedding == 1


class TestContentNodes:
    """Tests for content-node embedding."""

    @pytest.mark.asyncio
    async def test_linked_nodes_embedded_and_marked_ready(self):
        store = MemoryGraphStore()
        now = datetime.now(timezone.utc)
        await store.add_content_nodes([
            NodeRecord(uuid="n1", document_id="d1", content="Hello", state=NodeState.LINKED, state_changed_at=now),
            NodeRecord(uuid="n2", document_id="d1", content="  ", state=NodeState.LINKED, state_changed_at=now),
            NodeRecord(uuid="n3", document_id="d1", content="Later", state=NodeState.PENDING, state_changed_at=now),
        ])
        provider = CountingEmbeddings()

        embedded = await EmbeddingMaintainer(store, provider).embed_content_nodes("d1")

        assert embedded == 1
        assert provider.texts == ["Hello"]
        ready = await store.list_nodes([NodeState.READY])
        assert [n.uuid for n in ready] == ["n1"]
        assert ready[0].embedding_provider == "CountingEmbeddings"
        assert ready[0].embedding_model == "counting-test"
        assert [n.uuid for n in await store.list_nodes([NodeState.LINKED])] == ["n2"]
