"""
Tag Resolution

Deduplicates thematic tags, cheapest phase first:
    1. Normalize: recompute stale normalized names
    2. Exact merge: tags sharing a normalized name fold into the oldest
    3. Semantic merge: the matcher groups near-duplicates ("ML",
       "machine-learning"); each group folds into its most used tag

Semantic merging is best-effort. An unusable or unreachable matcher yields
zero semantic merges and a log line, never an exception.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from canon_kg.errors import ConstraintViolationError, OracleError
from canon_kg.resolution.canonical_form import pick_canonical_tag
from canon_kg.types import (
    Tag,
    TagCategory,
    TagResolutionResult,
    normalize_tag_name,
)
from canon_kg.utils.text import unique_names

if TYPE_CHECKING:
    from canon_kg.oracle.base import SemanticMatcher
    from canon_kg.storage.base import GraphStore

logger = logging.getLogger(__name__)


def _survivor_key(tag: Tag) -> tuple:
    # Highest usage, then oldest, then UUID
    created = tag.created_at.timestamp() if tag.created_at else 0.0
    return (-tag.usage_count, created, tag.uuid)


class TagResolver:
    """
    Normalizes and merges duplicate tags.

    Args:
        store: Graph store holding tags
        matcher: Semantic matcher for the grouping phase (skipped if None)
        max_tags: Maximum tags sent to the matcher in one call
    """

    def __init__(
        self,
        store: "GraphStore",
        matcher: "SemanticMatcher | None" = None,
        *,
        max_tags: int = 500,
    ) -> None:
        self.store = store
        self.matcher = matcher
        self.max_tags = max_tags

    async def resolve_tags(self, dry_run: bool = False) -> TagResolutionResult:
        """
        Run all three phases.

        Args:
            dry_run: Count what would change without writing

        Returns:
            TagResolutionResult with normalized, merged and llm_merged counts
        """
        start = time.perf_counter_ns()
        result = TagResolutionResult(dry_run=dry_run)

        tags = await self.store.get_tags()
        if dry_run:
            result.normalized = sum(
                1 for t in tags if t.normalized_name != normalize_tag_name(t.name)
            )
        else:
            result.normalized = await self.store.normalize_tags()
            if result.normalized:
                tags = await self.store.get_tags()

        result.merged, survivors = await self._merge_exact(tags, dry_run)

        if not dry_run:
            survivors = await self.store.get_tags(limit=self.max_tags)
        result.llm_merged = await self._merge_semantic(survivors[:self.max_tags], dry_run)

        result.elapsed_ms = (time.perf_counter_ns() - start) // 1_000_000
        logger.info(
            f"Tag resolution{' (dry run)' if dry_run else ''}: "
            f"{result.normalized} normalized, {result.merged} exact merges, "
            f"{result.llm_merged} semantic merges, {result.elapsed_ms}ms"
        )
        return result

    # -------------------------------------------------------------------------
    # Exact Merge
    # -------------------------------------------------------------------------

    async def _merge_exact(self, tags: list[Tag], dry_run: bool) -> tuple[int, list[Tag]]:
        """
        Fold tags sharing a normalized name into the oldest one.

        Returns:
            (tags removed, surviving tags in creation order)
        """
        groups: dict[str, list[Tag]] = {}
        for tag in tags:
            groups.setdefault(normalize_tag_name(tag.name), []).append(tag)

        removed = 0
        survivors: list[Tag] = []
        for key, group in groups.items():
            target = group[0]
            variants = group[1:]
            if not variants:
                survivors.append(target)
                continue

            aliases = unique_names(
                [*target.aliases, *(v.name for v in variants), *(a for v in variants for a in v.aliases)],
                exclude=target.name,
            )
            if dry_run:
                removed += len(variants)
            else:
                try:
                    removed += await self.store.merge_tags(
                        target.uuid,
                        [v.uuid for v in variants],
                        target.name,
                        key,
                        target.category,
                        aliases,
                    )
                except ConstraintViolationError as e:
                    logger.warning(f"Skipping exact merge of '{key}': {e}")
                    survivors.extend(group)
                    continue
            survivors.append(
                target.model_copy(
                    update={
                        "normalized_name": key,
                        "aliases": aliases,
                        "usage_count": sum(t.usage_count for t in group),
                    }
                )
            )

        if removed:
            logger.debug(f"Exact tag merge removed {removed} tags")
        return removed, survivors

    # -------------------------------------------------------------------------
    # Semantic Merge
    # -------------------------------------------------------------------------

    async def _merge_semantic(self, tags: list[Tag], dry_run: bool) -> int:
        if self.matcher is None or len(tags) < 2:
            return 0

        try:
            response = await self.matcher.group_tags(tags)
        except OracleError as e:
            logger.warning(f"Semantic tag grouping skipped: {e}")
            return 0

        used: set[int] = set()
        removed = 0
        for group in response.groups:
            indices = [
                i for i in dict.fromkeys(group.variant_indices)
                if 0 <= i < len(tags) and i not in used
            ]
            if len(indices) < 2:
                continue
            used.update(indices)
            members = [tags[i] for i in indices]

            name = pick_canonical_tag([t.name for t in members])
            if name != group.canonical_tag:
                logger.debug(f"Matcher suggested '{group.canonical_tag}', using '{name}'")

            target = min(members, key=_survivor_key)
            others = [t for t in members if t.uuid != target.uuid]
            category: TagCategory = group.category or target.category
            aliases = unique_names(
                [
                    *target.aliases,
                    target.name,
                    *(t.name for t in others),
                    *(a for t in others for a in t.aliases),
                ],
                exclude=name,
            )

            if dry_run:
                removed += len(others)
                continue
            try:
                removed += await self.store.merge_tags(
                    target.uuid,
                    [t.uuid for t in others],
                    name,
                    normalize_tag_name(name),
                    category,
                    aliases,
                )
            except ConstraintViolationError as e:
                logger.warning(f"Skipping semantic merge into '{name}': {e}")
                continue
            logger.debug(f"Merged {len(others)} tags into '{name}' ({group.reason})")

        return removed

    # -------------------------------------------------------------------------
    # Tagging
    # -------------------------------------------------------------------------

    async def tag_node(
        self,
        source_id: str,
        name: str,
        category: TagCategory = TagCategory.OTHER,
        project_id: str | None = None,
    ) -> Tag:
        """
        Attach a tag to a content node, creating the tag if absent.

        Keyed on the normalized name, so concurrent callers tagging with
        "Machine Learning" and "machine-learning" end up on one tag.
        """
        name = name.strip()
        normalized = normalize_tag_name(name)
        if not normalized:
            raise ValueError("Tag name must not be blank")
        try:
            tag, _ = await self.store.upsert_tag(name, normalized, category, project_id, source_id)
        except ConstraintViolationError:
            # Another writer created the key between read and write
            tag, _ = await self.store.upsert_tag(name, normalized, category, project_id, source_id)
        return tag
