"""Tests for TagResolver normalization and merging."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from canon_kg.errors import OracleMalformedResponse, OracleUnavailableError
from canon_kg.resolution.tag_resolver import TagResolver
from canon_kg.storage.memory import MemoryGraphStore
from canon_kg.types import Tag, TagCategory, TagGroup, TagGroupResponse


def _tag(
    name: str,
    normalized_name: str | None = None,
    usage_count: int = 1,
    minutes_ago: int = 0,
    **kwargs,
) -> Tag:
    return Tag(
        uuid=str(uuid4()),
        name=name,
        normalized_name=normalized_name if normalized_name is not None else name,
        usage_count=usage_count,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
        **kwargs,
    )


def _grouping_matcher(*groups: list[str], category: TagCategory | None = None):
    """Matcher stub grouping tags by name."""

    async def group_tags(tags):
        names = [t.name for t in tags]
        return TagGroupResponse(
            groups=[
                TagGroup(
                    canonical_tag=group[0],
                    category=category,
                    variant_indices=[names.index(n) for n in group if n in names],
                )
                for group in groups
            ]
        )

    matcher = AsyncMock()
    matcher.group_tags = AsyncMock(side_effect=group_tags)
    return matcher


class TestTagResolution:
    """Test the three resolution phases."""

    @pytest.mark.asyncio
    async def test_abbreviation_spacing_and_hyphen_variants_converge(self):
        """'ML', 'machine-learning' and 'Machine Learning' end as one tag."""
        store = MemoryGraphStore()
        ml = await store.add_tag(_tag("ML", "ml", minutes_ago=30), source_ids=["n1"])
        hyphen = await store.add_tag(
            _tag("machine-learning", minutes_ago=20), source_ids=["n2"]
        )
        await store.add_tag(
            _tag("Machine Learning", "machine learning", minutes_ago=10), source_ids=["n2", "n3"]
        )
        matcher = _grouping_matcher(["ML", "machine-learning"])

        result = await TagResolver(store, matcher).resolve_tags()

        tags = await store.get_tags()
        assert len(tags) == 1
        survivor = tags[0]
        assert survivor.uuid == hyphen.uuid
        assert survivor.name == "machine-learning"
        assert survivor.normalized_name == "machine-learning"
        assert survivor.usage_count == 3
        assert set(survivor.aliases) == {"Machine Learning", "ML"}
        assert sorted(await store.get_tagged_sources(survivor.uuid)) == ["n1", "n2", "n3"]
        assert await store.get_tag(ml.uuid) is None

        assert result.merged == 1
        assert result.llm_merged == 1

    @pytest.mark.asyncio
    async def test_stale_normalized_name_recomputed(self):
        store = MemoryGraphStore()
        await store.add_tag(_tag("Data Science", "data science"))

        result = await TagResolver(store).resolve_tags()

        assert result.normalized == 1
        tags = await store.get_tags()
        assert tags[0].normalized_name == "data-science"

    @pytest.mark.asyncio
    async def test_exact_merge_needs_no_matcher(self):
        store = MemoryGraphStore()
        older = await store.add_tag(_tag("python", usage_count=2, minutes_ago=5))
        await store.add_tag(_tag("Python", "Python", usage_count=3))

        result = await TagResolver(store, None).resolve_tags()

        assert result.merged == 1
        tags = await store.get_tags()
        assert [t.uuid for t in tags] == [older.uuid]
        assert tags[0].usage_count == 5
        assert tags[0].aliases == ["Python"]

    @pytest.mark.asyncio
    async def test_semantic_survivor_is_most_used(self):
        store = MemoryGraphStore()
        await store.add_tag(_tag("js", usage_count=9, minutes_ago=10))
        javascript = await store.add_tag(_tag("javascript", usage_count=2))
        js_uuid = (await store.get_tags())[0].uuid
        matcher = _grouping_matcher(["js", "javascript"], category=TagCategory.TECHNOLOGY)

        await TagResolver(store, matcher).resolve_tags()

        tags = await store.get_tags()
        assert len(tags) == 1
        assert tags[0].uuid == js_uuid
        assert tags[0].uuid != javascript.uuid
        assert tags[0].name == "javascript"
        assert tags[0].category == TagCategory.TECHNOLOGY
        assert tags[0].usage_count == 11
        assert "js" in tags[0].aliases

    @pytest.mark.asyncio
    async def test_single_variant_groups_ignored(self):
        store = MemoryGraphStore()
        await store.add_tag(_tag("react", minutes_ago=1))
        await store.add_tag(_tag("vue"))
        matcher = _grouping_matcher(["react"], ["vue", "missing"])

        result = await TagResolver(store, matcher).resolve_tags()

        assert result.llm_merged == 0
        assert len(await store.get_tags()) == 2

    @pytest.mark.asyncio
    async def test_dry_run_counts_without_writing(self):
        store = MemoryGraphStore()
        await store.add_tag(_tag("ML", "ml", minutes_ago=30))
        await store.add_tag(_tag("machine-learning", minutes_ago=20))
        await store.add_tag(_tag("Machine Learning", "machine learning", minutes_ago=10))
        matcher = _grouping_matcher(["ML", "machine-learning"])

        result = await TagResolver(store, matcher).resolve_tags(dry_run=True)

        assert result.dry_run is True
        assert result.normalized == 1
        assert result.merged == 1
        assert result.llm_merged == 1
        assert len(await store.get_tags()) == 3


class TestOracleFailures:
    """Semantic grouping is best-effort."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [OracleMalformedResponse("bad"), OracleUnavailableError("down")]
    )
    async def test_failure_yields_zero_semantic_merges(self, error):
        store = MemoryGraphStore()
        await store.add_tag(_tag("ml", minutes_ago=1))
        await store.add_tag(_tag("machine-learning"))
        matcher = AsyncMock()
        matcher.group_tags = AsyncMock(side_effect=error)

        result = await TagResolver(store, matcher).resolve_tags()

        assert result.llm_merged == 0
        assert len(await store.get_tags()) == 2


class TestTagNode:
    """Test race-safe tagging of content nodes."""

    @pytest.mark.asyncio
    async def test_variants_share_one_tag(self):
        store = MemoryGraphStore()
        resolver = TagResolver(store)

        first = await resolver.tag_node("n1", "Machine Learning", TagCategory.TOPIC, "p1")
        second = await resolver.tag_node("n2", "machine-learning", project_id="p2")
        again = await resolver.tag_node("n1", "machine learning", project_id="p1")

        assert first.uuid == second.uuid == again.uuid
        assert again.usage_count == 3
        assert again.name == "Machine Learning"
        assert set(again.project_ids) == {"p1", "p2"}
        assert sorted(await store.get_tagged_sources(first.uuid)) == ["n1", "n2"]

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self):
        with pytest.raises(ValueError):
            await TagResolver(MemoryGraphStore()).tag_node("n1", "   ")
