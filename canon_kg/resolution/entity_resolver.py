"""
Cross-Document Entity Resolution

Links unresolved entity mentions to the corpus-wide canonical registry.

Per run:
    1. Load unresolved mentions above the confidence threshold (capped)
    2. Load the existing canonicals for the kinds present
    3. Per kind (kinds run concurrently, batches within a kind sequentially):
       - no canonicals yet: every mention creates a canonical, no oracle call
       - otherwise: ask the semantic matcher to match each batch against the
         current candidate list, then apply merges and creates
    4. New and updated canonicals join the candidate list, so later batches
       of the same kind can match against them

Writes go through the store's create-if-absent upsert. Losing a create race
is a normal branch: the mention links to the canonical the winner created.

Example:
    >>> resolver = EntityResolver(store, LLMSemanticMatcher(llm))
    >>> result = await resolver.resolve_entities()
    >>> print(f"{result.merged} merged, {result.created} created")
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

from canon_kg.errors import (
    ConstraintViolationError,
    OracleMalformedResponse,
    OracleUnavailableError,
)
from canon_kg.resolution.canonical_form import pick_canonical_name
from canon_kg.types import (
    ENTITY_KIND_ORDER,
    CanonicalEntity,
    CanonicalMergeResult,
    EntityKind,
    EntityMention,
    EntityResolutionResult,
    KindResolutionStats,
    NameCandidate,
    normalize_entity_name,
)
from canon_kg.utils.text import unique_names

if TYPE_CHECKING:
    from canon_kg.oracle.base import SemanticMatcher
    from canon_kg.storage.base import GraphStore

logger = logging.getLogger(__name__)

# Upsert attempts before a constraint violation is re-raised
_MAX_UPSERT_ATTEMPTS = 3


@dataclass
class _RunState:
    """Mutable state shared by the kind workers of one run."""

    dry_run: bool
    aborted: bool = False
    skipped_batches: int = 0


class EntityResolver:
    """
    Resolves entity mentions into canonical entities.

    Args:
        store: Graph store holding mentions and canonicals
        matcher: Semantic matcher; None resolves only kinds without canonicals
        min_confidence: Mentions below this confidence are ignored
        max_entities: Maximum mentions loaded per run
        batch_size: Mentions per matcher call
        min_similarity: Matches below this similarity are discarded
        create_unmatched: Create canonicals for mentions the matcher left
            unaddressed or matched below min_similarity
        kind_concurrency: Kinds resolved at the same time
    """

    def __init__(
        self,
        store: "GraphStore",
        matcher: "SemanticMatcher | None" = None,
        *,
        min_confidence: float = 0.6,
        max_entities: int = 500,
        batch_size: int = 50,
        min_similarity: float = 0.8,
        create_unmatched: bool = True,
        kind_concurrency: int = 4,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.matcher = matcher
        self.min_confidence = min_confidence
        self.max_entities = max_entities
        self.batch_size = batch_size
        self.min_similarity = min_similarity
        self.create_unmatched = create_unmatched
        self._kind_semaphore = asyncio.Semaphore(max(1, kind_concurrency))

    # -------------------------------------------------------------------------
    # Resolution Run
    # -------------------------------------------------------------------------

    async def resolve_entities(
        self,
        entity_kinds: list[EntityKind] | None = None,
        dry_run: bool = False,
    ) -> EntityResolutionResult:
        """
        Resolve unresolved mentions into canonical entities.

        Re-running after a partial failure only touches mentions that are
        still unlinked.

        Args:
            entity_kinds: Restrict the run to these kinds (all kinds if None)
            dry_run: Match and count without writing to the store

        Returns:
            EntityResolutionResult with merged/created/unresolved counts
        """
        start = time.perf_counter_ns()
        kinds = [EntityKind(k) for k in entity_kinds] if entity_kinds else None

        mentions = await self.store.get_unresolved_mentions(
            self.min_confidence, self.max_entities, kinds
        )
        result = EntityResolutionResult(processed=len(mentions), dry_run=dry_run)
        if not mentions:
            logger.info("Entity resolution: no unresolved mentions")
            return result

        by_kind: dict[EntityKind, list[EntityMention]] = {}
        for mention in mentions:
            by_kind.setdefault(mention.entity_kind, []).append(mention)
        present = [k for k in ENTITY_KIND_ORDER if k in by_kind]

        canonicals = await self.store.get_canonical_entities(kinds=present)
        candidates_by_kind: dict[EntityKind, list[CanonicalEntity]] = {}
        for canonical in canonicals:
            candidates_by_kind.setdefault(canonical.entity_kind, []).append(canonical)

        logger.info(
            f"Entity resolution: {len(mentions)} mentions across {len(present)} kinds, "
            f"{len(canonicals)} existing canonicals"
        )

        run = _RunState(dry_run=dry_run)

        async def resolve_with_semaphore(kind: EntityKind) -> KindResolutionStats:
            async with self._kind_semaphore:
                return await self._resolve_kind(
                    kind, by_kind[kind], candidates_by_kind.get(kind, []), run
                )

        kind_stats = await asyncio.gather(*(resolve_with_semaphore(k) for k in present))

        for kind, stats in zip(present, kind_stats):
            result.by_kind[kind.value] = stats
            result.merged += stats.merged
            result.created += stats.created
            result.unresolved += stats.unresolved
        result.skipped_batches = run.skipped_batches
        result.aborted = run.aborted
        result.elapsed_ms = (time.perf_counter_ns() - start) // 1_000_000

        logger.info(
            f"Entity resolution{' (dry run)' if dry_run else ''}: "
            f"{result.merged} merged, {result.created} created, "
            f"{result.unresolved} unresolved, {result.elapsed_ms}ms"
        )
        return result

    async def _resolve_kind(
        self,
        kind: EntityKind,
        mentions: list[EntityMention],
        existing: list[CanonicalEntity],
        run: _RunState,
    ) -> KindResolutionStats:
        stats = KindResolutionStats(mentions=len(mentions))
        candidates = list(existing)

        if not candidates:
            logger.debug(f"{kind.value}: no canonicals yet, creating {len(mentions)}")
            for mention in mentions:
                await self._create(mention, candidates, stats, run)
            return stats

        for offset in range(0, len(mentions), self.batch_size):
            batch = mentions[offset:offset + self.batch_size]
            await self._resolve_batch(kind, batch, candidates, stats, run)
        return stats

    async def _resolve_batch(
        self,
        kind: EntityKind,
        batch: list[EntityMention],
        candidates: list[CanonicalEntity],
        stats: KindResolutionStats,
        run: _RunState,
    ) -> None:
        if self.matcher is None or run.aborted:
            stats.unresolved += len(batch)
            return

        # Merges replace entries in place and creates append, so indices
        # below `offered` keep pointing at the same canonical.
        offered = len(candidates)
        try:
            response = await self.matcher.match_entities(kind, batch, list(candidates))
        except OracleMalformedResponse as e:
            logger.warning(f"{kind.value}: skipping batch of {len(batch)}: {e}")
            run.skipped_batches += 1
            stats.unresolved += len(batch)
            return
        except OracleUnavailableError as e:
            logger.error(f"{kind.value}: matcher unavailable, aborting matching: {e}")
            run.aborted = True
            stats.unresolved += len(batch)
            return

        handled: set[int] = set()
        for match in response.matches:
            if not 0 <= match.mention_index < len(batch) or match.mention_index in handled:
                continue
            if not 0 <= match.canonical_index < offered:
                logger.debug(f"{kind.value}: ignoring match to unknown index {match.canonical_index}")
                continue
            if match.similarity < self.min_similarity:
                logger.debug(
                    f"{kind.value}: discarding match "
                    f"'{batch[match.mention_index].name}' -> "
                    f"'{candidates[match.canonical_index].name}' ({match.similarity:.2f})"
                )
                continue
            handled.add(match.mention_index)
            await self._merge(
                batch[match.mention_index], match.canonical_index, candidates, stats, run
            )

        for index in response.new_canonicals:
            if 0 <= index < len(batch) and index not in handled:
                handled.add(index)
                await self._create(batch[index], candidates, stats, run)

        for index, mention in enumerate(batch):
            if index in handled:
                continue
            if self.create_unmatched:
                await self._create(mention, candidates, stats, run)
            else:
                stats.unresolved += 1

    # -------------------------------------------------------------------------
    # Create Path
    # -------------------------------------------------------------------------

    async def _create(
        self,
        mention: EntityMention,
        candidates: list[CanonicalEntity],
        stats: KindResolutionStats,
        run: _RunState,
    ) -> None:
        name = mention.name.strip()
        candidate = CanonicalEntity(
            uuid=str(uuid4()),
            name=name,
            normalized_name=normalize_entity_name(name),
            entity_kind=mention.entity_kind,
            # Every surface name seen, the creating one included
            aliases=unique_names([name, *mention.aliases]),
            project_ids=[mention.project_id] if mention.project_id else [],
            document_ids=[mention.document_id] if mention.document_id else [],
            created_at=datetime.now(timezone.utc),
        )

        if run.dry_run:
            if any(c.normalized_name == candidate.normalized_name for c in candidates):
                stats.merged += 1
            else:
                candidates.append(candidate)
                stats.created += 1
            return

        canonical, created = await self._upsert_with_fallback(candidate, mention)
        _remember(candidates, canonical)
        if created:
            stats.created += 1
        else:
            stats.merged += 1

    async def _upsert_with_fallback(
        self,
        candidate: CanonicalEntity,
        mention: EntityMention,
    ) -> tuple[CanonicalEntity, bool]:
        """Upsert, and on a lost race link the mention to the winner's canonical."""
        last_error: ConstraintViolationError | None = None
        for _ in range(_MAX_UPSERT_ATTEMPTS):
            try:
                return await self.store.upsert_canonical(candidate, mention.uuid)
            except ConstraintViolationError as e:
                last_error = e
                logger.debug(f"Lost create race on {e.key}, linking to existing canonical")
                existing = await self.store.augment_canonical(
                    candidate.normalized_name,
                    candidate.entity_kind,
                    candidate.name,
                    mention.project_id,
                    mention.document_id,
                    mention.uuid,
                )
                if existing is not None:
                    return existing, False
        assert last_error is not None
        raise last_error

    # -------------------------------------------------------------------------
    # Merge Path
    # -------------------------------------------------------------------------

    async def _merge(
        self,
        mention: EntityMention,
        index: int,
        candidates: list[CanonicalEntity],
        stats: KindResolutionStats,
        run: _RunState,
    ) -> None:
        canonical = candidates[index]
        best = pick_canonical_name(
            canonical.entity_kind,
            [
                NameCandidate(name=canonical.name, usage_count=1),
                NameCandidate(name=mention.name, usage_count=1),
                *(NameCandidate(name=a) for a in canonical.aliases),
                *(NameCandidate(name=a) for a in mention.aliases),
            ],
        )
        aliases = unique_names(
            [*canonical.aliases, *mention.aliases, canonical.name, mention.name],
            exclude=best,
        )
        normalized = normalize_entity_name(best)

        if run.dry_run:
            candidates[index] = canonical.model_copy(
                update={"name": best, "normalized_name": normalized, "aliases": aliases}
            )
            stats.merged += 1
            return

        try:
            updated = await self.store.merge_mention_into_canonical(
                canonical.uuid,
                mention.uuid,
                best,
                normalized,
                aliases,
                mention.project_id,
                mention.document_id,
            )
        except ConstraintViolationError:
            # The better name's key belongs to another canonical; keep ours
            logger.debug(
                f"Name '{best}' is taken for {canonical.entity_kind.value}, "
                f"keeping '{canonical.name}'"
            )
            updated = await self.store.merge_mention_into_canonical(
                canonical.uuid,
                mention.uuid,
                canonical.name,
                canonical.normalized_name,
                unique_names([*aliases, best], exclude=canonical.name),
                mention.project_id,
                mention.document_id,
            )
        candidates[index] = updated
        stats.merged += 1

    # -------------------------------------------------------------------------
    # Duplicate Cleanup
    # -------------------------------------------------------------------------

    async def merge_canonicals(self) -> CanonicalMergeResult:
        """
        Merge canonicals that share (normalized_name, entity_kind).

        The younger of each pair is folded into the older: mention links
        move over, the best name of the two is kept, alias, project and
        document sets are unioned and the duplicate is deleted.
        """
        pairs = await self.store.find_duplicate_canonicals()
        removed: set[str] = set()
        merged = 0

        for older, younger in pairs:
            if older.uuid in removed or younger.uuid in removed:
                continue
            keep = await self.store.get_canonical(older.uuid)
            if keep is None:
                continue
            best = pick_canonical_name(keep.entity_kind, [keep.name, younger.name])
            aliases = unique_names(
                [*keep.aliases, *younger.aliases, keep.name, younger.name],
                exclude=best,
            )
            await self.store.merge_canonical_pair(keep.uuid, younger.uuid, best, aliases)
            removed.add(younger.uuid)
            merged += 1
            logger.debug(f"Merged duplicate canonical '{younger.name}' into '{best}'")

        if merged:
            logger.info(f"Merged {merged} duplicate canonical entities")
        return CanonicalMergeResult(merged=merged)


def _remember(candidates: list[CanonicalEntity], canonical: CanonicalEntity) -> None:
    """Replace the candidate with the same UUID, or append a new one."""
    for i, existing in enumerate(candidates):
        if existing.uuid == canonical.uuid:
            candidates[i] = canonical
            return
    candidates.append(canonical)
