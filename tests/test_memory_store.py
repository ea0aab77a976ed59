"""
Tests for the in-memory graph store.

Tests cover:
- Uniqueness keys and ConstraintViolationError
- Full-text expression parsing and fuzzy matching
- Vector search scoring
- Canonical duplicate detection
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from canon_kg.errors import ConstraintViolationError
from canon_kg.storage.memory import MemoryGraphStore
from canon_kg.storage.memory.backend import parse_fulltext_expression
from canon_kg.types import (
    CanonicalEntity,
    EntityKind,
    EntityMention,
    NodeType,
    Tag,
    TagCategory,
)


def _canonical(name: str, kind: EntityKind = EntityKind.ORGANIZATION, **kwargs) -> CanonicalEntity:
    return CanonicalEntity(
        uuid=str(uuid4()),
        name=name,
        normalized_name=name.strip().lower(),
        entity_kind=kind,
        **kwargs,
    )


class TestFulltextExpression:
    """Tests for the fuzzy term parser."""

    def test_terms_with_edit_distance(self):
        assert parse_fulltext_expression("machine~1 learning~1") == [
            ("machine", 1), ("learning", 1),
        ]

    def test_escaped_operators_are_literal(self):
        assert parse_fulltext_expression("AT\\&T~1 C\\+\\+~1") == [("AT&T", 1), ("C++", 1)]

    def test_bare_tilde_defaults_to_two(self):
        assert parse_fulltext_expression("graph~") == [("graph", 2)]

    def test_plain_terms(self):
        assert parse_fulltext_expression("  openai  ") == [("openai", 0)]


class TestCanonicalConstraints:
    """Tests for the (normalized_name, kind) uniqueness key."""

    @pytest.mark.asyncio
    async def test_add_canonical_rejects_taken_key(self):
        store = MemoryGraphStore()
        await store.add_canonical(_canonical("OpenAI"))

        with pytest.raises(ConstraintViolationError) as exc:
            await store.add_canonical(_canonical("openai"))

        assert exc.value.label == "CanonicalEntity"
        assert exc.value.key["normalizedName"] == "openai"

    @pytest.mark.asyncio
    async def test_same_name_different_kind_allowed(self):
        store = MemoryGraphStore()
        await store.add_canonical(_canonical("Jordan", EntityKind.PERSON))
        await store.add_canonical(_canonical("Jordan", EntityKind.LOCATION))

        assert len(await store.get_canonical_entities()) == 2

    @pytest.mark.asyncio
    async def test_upsert_returns_existing(self):
        store = MemoryGraphStore()
        await store.add_mentions([
            EntityMention(uuid="m1", name="OpenAI", entity_kind=EntityKind.ORGANIZATION),
            EntityMention(uuid="m2", name="openai", entity_kind=EntityKind.ORGANIZATION),
        ])

        first, created_first = await store.upsert_canonical(
            _canonical("OpenAI", project_ids=["p1"]), "m1"
        )
        second, created_second = await store.upsert_canonical(
            _canonical("openai", project_ids=["p2"], document_ids=["d9"]), "m2"
        )

        assert created_first is True
        assert created_second is False
        assert second.uuid == first.uuid
        assert second.aliases == ["OpenAI", "openai"]
        assert second.project_ids == ["p1", "p2"]
        assert second.document_ids == ["d9"]
        assert (await store.get_mention("m2")).canonical_uuid == first.uuid

    @pytest.mark.asyncio
    async def test_rename_onto_taken_key_rejected(self):
        store = MemoryGraphStore()
        await store.add_canonical(_canonical("Microsoft Corporation"))
        short = await store.add_canonical(_canonical("Microsoft"))

        with pytest.raises(ConstraintViolationError):
            await store.merge_mention_into_canonical(
                short.uuid, "m1", "Microsoft Corporation", "microsoft corporation",
                [], None, None,
            )

    @pytest.mark.asyncio
    async def test_duplicates_found_when_constraints_off(self):
        store = MemoryGraphStore(enforce_constraints=False)
        older = await store.add_canonical(
            _canonical("Openai", created_at=datetime.now(timezone.utc) - timedelta(days=1))
        )
        younger = await store.add_canonical(_canonical("OpenAI"))

        pairs = await store.find_duplicate_canonicals()

        assert [(a.uuid, b.uuid) for a, b in pairs] == [(older.uuid, younger.uuid)]


class TestTagConstraints:
    """Tests for the tag normalized-name key."""

    @pytest.mark.asyncio
    async def test_upsert_tag_counts_usage(self):
        store = MemoryGraphStore()

        tag, created = await store.upsert_tag("ML Ops", "ml-ops", TagCategory.TOPIC, "p1", "n1")
        again, created_again = await store.upsert_tag("mlops", "ml-ops", TagCategory.OTHER)

        assert created is True
        assert created_again is False
        assert again.uuid == tag.uuid
        assert again.usage_count == 2
        assert again.category == TagCategory.TOPIC

    @pytest.mark.asyncio
    async def test_merge_onto_foreign_key_rejected(self):
        store = MemoryGraphStore()
        holder = await store.add_tag(Tag(uuid="t1", name="ai", normalized_name="ai"))
        target = await store.add_tag(Tag(uuid="t2", name="a-i", normalized_name="a-i"))

        with pytest.raises(ConstraintViolationError):
            await store.merge_tags(target.uuid, [], "ai", "ai", TagCategory.OTHER, [])

        assert (await store.get_tag(holder.uuid)).normalized_name == "ai"


class TestSearchIndexes:
    """Tests for vector and full-text search."""

    @pytest.mark.asyncio
    async def test_vector_scores_are_normalized_cosine(self):
        store = MemoryGraphStore()
        same = await store.add_canonical(_canonical("Alpha"))
        opposite = await store.add_canonical(_canonical("Omega"))
        unembedded = await store.add_canonical(_canonical("Zeta"))
        await store.set_embeddings(
            NodeType.CANONICAL_ENTITY,
            [(same.uuid, [1.0, 0.0], "h"), (opposite.uuid, [-1.0, 0.0], "h")],
            datetime.now(timezone.utc),
        )

        results = await store.vector_search(NodeType.CANONICAL_ENTITY, [2.0, 0.0], 10)

        assert [r.uuid for r in results] == [same.uuid, opposite.uuid]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(0.0)
        assert unembedded.uuid not in {r.uuid for r in results}

    @pytest.mark.asyncio
    async def test_vector_dimension_mismatch(self):
        store = MemoryGraphStore()
        entity = await store.add_canonical(_canonical("Alpha"))
        await store.set_embeddings(
            NodeType.CANONICAL_ENTITY, [(entity.uuid, [1.0, 0.0], "h")], datetime.now(timezone.utc)
        )

        with pytest.raises(ValueError):
            await store.vector_search(NodeType.CANONICAL_ENTITY, [1.0, 0.0, 0.0], 5)

    @pytest.mark.asyncio
    async def test_fulltext_matches_aliases_and_typos(self):
        store = MemoryGraphStore()
        await store.add_canonical(_canonical("Microsoft Corporation", aliases=["MSFT"]))
        await store.add_canonical(_canonical("Contoso"))

        by_alias = await store.fulltext_search(NodeType.CANONICAL_ENTITY, "msft~1", 10)
        by_typo = await store.fulltext_search(NodeType.CANONICAL_ENTITY, "microsfot~2", 10)
        exact_only = await store.fulltext_search(NodeType.CANONICAL_ENTITY, "contos", 10)

        assert [r.name for r in by_alias] == ["Microsoft Corporation"]
        assert [r.name for r in by_typo] == ["Microsoft Corporation"]
        assert by_alias[0].score > 0
        assert exact_only == []

    @pytest.mark.asyncio
    async def test_embeddings_never_returned_by_reads(self):
        store = MemoryGraphStore()
        entity = await store.add_canonical(_canonical("Alpha"))
        await store.set_embeddings(
            NodeType.CANONICAL_ENTITY, [(entity.uuid, [1.0], "h")], datetime.now(timezone.utc)
        )

        loaded = await store.get_canonical(entity.uuid)

        assert loaded.embedding is None
        assert loaded.embedding_hash == "h"
        assert (await store.embedding_stats()).entities_with_embedding == 1
