"""
In-Memory Graph Store

Process-local GraphStore with the same contract as the Neo4j store. Used
for tests, notebooks and single-process pipelines.

Atomicity:
    Every mutating method runs to completion without awaiting, so on one
    event loop each call is atomic, the same way a single Cypher statement
    is atomic in the graph database. Uniqueness keys are tracked in dicts
    and violations raise ConstraintViolationError.

Search:
    - Vector search uses scipy cosine distance and reports the normalized
      score (1 + cos) / 2 that Neo4j vector indexes return.
    - Full-text search parses the fuzzy term syntax ("term~1"), expands
      terms with rapidfuzz edit distance and ranks with rank_bm25.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import numpy as np
from rank_bm25 import BM25Plus
from rapidfuzz.distance import Levenshtein
from scipy.spatial.distance import cdist

from canon_kg.errors import ConstraintViolationError
from canon_kg.storage.base import GraphStore
from canon_kg.types import (
    CanonicalEntity,
    DocumentRecord,
    DocumentState,
    EmbeddingStats,
    EntityKind,
    EntityMention,
    MatchSource,
    NodeRecord,
    NodeState,
    NodeType,
    SearchResult,
    Tag,
    TagCategory,
    normalize_tag_name,
)

_WORD = re.compile(r"\w+")

_DOCUMENT_RESET_FIELDS: dict[str, Any] = {
    "error_type": None,
    "error_message": None,
    "retry_count": 0,
    "parse_started_at": None,
    "parsed_at": None,
    "linked_at": None,
    "embedded_at": None,
}


def _union(existing: list[str], *values: str | None) -> list[str]:
    """Append values not already present, preserving order."""
    result = list(existing)
    for value in values:
        if value and value not in result:
            result.append(value)
    return result


def _sort_time(value: datetime | None) -> datetime:
    return value or datetime.min.replace(tzinfo=timezone.utc)


def parse_fulltext_expression(expression: str) -> list[tuple[str, int]]:
    """
    Split a full-text expression into (term, max_edits) pairs.

    Backslash escapes the next character; an unescaped "~N" suffix sets the
    edit distance for the term.
    """
    terms: list[tuple[str, int]] = []
    buffer: list[str] = []
    edits = 0
    i = 0

    def flush() -> None:
        nonlocal edits
        if buffer:
            terms.append(("".join(buffer), edits))
        buffer.clear()
        edits = 0

    while i < len(expression):
        char = expression[i]
        if char == "\\" and i + 1 < len(expression):
            buffer.append(expression[i + 1])
            i += 2
            continue
        if char.isspace():
            flush()
        elif char == "~":
            j = i + 1
            while j < len(expression) and expression[j].isdigit():
                j += 1
            edits = int(expression[i + 1:j]) if j > i + 1 else 2
            i = j
            continue
        else:
            buffer.append(char)
        i += 1
    flush()
    return terms


def _tokenize(*fields: str | None) -> list[str]:
    tokens: list[str] = []
    for field in fields:
        if field:
            tokens.extend(_WORD.findall(field.lower()))
    return tokens


class MemoryGraphStore(GraphStore):
    """
    In-process graph store.

    Args:
        enforce_constraints: Enforce the (normalized_name, kind) and tag
            normalized-name uniqueness keys. Disable to reproduce a graph that
            was populated before the constraints existed.
    """

    def __init__(self, enforce_constraints: bool = True) -> None:
        self.enforce_constraints = enforce_constraints
        self._mentions: dict[str, EntityMention] = {}
        self._canonicals: dict[str, CanonicalEntity] = {}
        self._canonical_keys: dict[tuple[str, EntityKind], str] = {}
        self._tags: dict[str, Tag] = {}
        self._tag_keys: dict[str, str] = {}
        self._tag_sources: dict[str, list[str]] = {}
        self._documents: dict[str, DocumentRecord] = {}
        self._nodes: dict[str, NodeRecord] = {}
        self._indexes_dimensions: int | None = None
        self._initialized = False

    async def initialize(self) -> None:
        self._initialized = True

    async def close(self) -> None:
        self._initialized = False

    async def ensure_search_indexes(self, dimensions: int) -> None:
        self._indexes_dimensions = dimensions

    # -------------------------------------------------------------------------
    # Entity Mentions
    # -------------------------------------------------------------------------

    async def add_mentions(self, mentions: list[EntityMention]) -> None:
        for mention in mentions:
            self._mentions[mention.uuid] = mention.model_copy(deep=True)

    async def get_unresolved_mentions(
        self,
        min_confidence: float,
        limit: int,
        kinds: list[EntityKind] | None = None,
    ) -> list[EntityMention]:
        unresolved = [
            m for m in self._mentions.values()
            if m.canonical_uuid is None
            and m.confidence >= min_confidence
            and (kinds is None or m.entity_kind in kinds)
        ]
        unresolved.sort(key=lambda m: (m.entity_kind.value, m.name))
        return [m.model_copy(deep=True) for m in unresolved[:limit]]

    async def get_mention(self, uuid: str) -> EntityMention | None:
        mention = self._mentions.get(uuid)
        return mention.model_copy(deep=True) if mention else None

    def _link_mention(self, mention_uuid: str, canonical_uuid: str) -> None:
        mention = self._mentions.get(mention_uuid)
        if mention is not None:
            mention.canonical_uuid = canonical_uuid

    # -------------------------------------------------------------------------
    # Canonical Entities
    # -------------------------------------------------------------------------

    def _find_canonical(self, normalized_name: str, kind: EntityKind) -> CanonicalEntity | None:
        if self.enforce_constraints:
            uuid = self._canonical_keys.get((normalized_name, kind))
            return self._canonicals.get(uuid) if uuid else None
        matches = [
            c for c in self._canonicals.values()
            if c.normalized_name == normalized_name and c.entity_kind == kind
        ]
        if not matches:
            return None
        return min(matches, key=lambda c: (_sort_time(c.created_at), c.uuid))

    def _public(self, canonical: CanonicalEntity) -> CanonicalEntity:
        return canonical.model_copy(deep=True, update={"embedding": None})

    async def add_canonical(self, canonical: CanonicalEntity) -> CanonicalEntity:
        """
        Write a canonical entity verbatim, for imports and fixtures.

        Raises:
            ConstraintViolationError: The key is taken and constraints are enforced
        """
        key = (canonical.normalized_name, canonical.entity_kind)
        if self.enforce_constraints and key in self._canonical_keys:
            raise ConstraintViolationError(
                "CanonicalEntity",
                {"normalizedName": key[0], "entityType": key[1].value},
            )
        stored = canonical.model_copy(deep=True)
        if stored.created_at is None:
            stored.created_at = datetime.now(timezone.utc)
        self._canonicals[stored.uuid] = stored
        self._canonical_keys.setdefault(key, stored.uuid)
        return self._public(stored)

    async def get_canonical_entities(
        self,
        kinds: list[EntityKind] | None = None,
        limit: int | None = None,
    ) -> list[CanonicalEntity]:
        canonicals = [
            c for c in self._canonicals.values()
            if kinds is None or c.entity_kind in kinds
        ]
        canonicals.sort(key=lambda c: (c.entity_kind.value, c.name, c.uuid))
        if limit is not None:
            canonicals = canonicals[:limit]
        return [self._public(c) for c in canonicals]

    async def get_canonical(self, uuid: str) -> CanonicalEntity | None:
        canonical = self._canonicals.get(uuid)
        return self._public(canonical) if canonical else None

    def _augment(
        self,
        canonical: CanonicalEntity,
        name: str,
        project_id: str | None,
        document_id: str | None,
    ) -> None:
        if name != canonical.name:
            canonical.aliases = _union(canonical.aliases, name)
        canonical.project_ids = _union(canonical.project_ids, project_id)
        canonical.document_ids = _union(canonical.document_ids, document_id)

    async def upsert_canonical(
        self,
        candidate: CanonicalEntity,
        mention_uuid: str,
    ) -> tuple[CanonicalEntity, bool]:
        existing = self._find_canonical(candidate.normalized_name, candidate.entity_kind)
        if existing is not None:
            self._augment(
                existing,
                candidate.name,
                candidate.project_ids[0] if candidate.project_ids else None,
                candidate.document_ids[0] if candidate.document_ids else None,
            )
            self._link_mention(mention_uuid, existing.uuid)
            return self._public(existing), False

        stored = candidate.model_copy(deep=True)
        if stored.name not in stored.aliases:
            stored.aliases = [stored.name, *stored.aliases]
        if stored.created_at is None:
            stored.created_at = datetime.now(timezone.utc)
        self._canonicals[stored.uuid] = stored
        self._canonical_keys[(stored.normalized_name, stored.entity_kind)] = stored.uuid
        self._link_mention(mention_uuid, stored.uuid)
        return self._public(stored), True

    async def augment_canonical(
        self,
        normalized_name: str,
        kind: EntityKind,
        name: str,
        project_id: str | None,
        document_id: str | None,
        mention_uuid: str,
    ) -> CanonicalEntity | None:
        existing = self._find_canonical(normalized_name, kind)
        if existing is None:
            return None
        self._augment(existing, name, project_id, document_id)
        self._link_mention(mention_uuid, existing.uuid)
        return self._public(existing)

    async def merge_mention_into_canonical(
        self,
        canonical_uuid: str,
        mention_uuid: str,
        name: str,
        normalized_name: str,
        aliases: list[str],
        project_id: str | None,
        document_id: str | None,
    ) -> CanonicalEntity:
        canonical = self._canonicals.get(canonical_uuid)
        if canonical is None:
            raise KeyError(f"Canonical entity not found: {canonical_uuid}")

        old_key = (canonical.normalized_name, canonical.entity_kind)
        new_key = (normalized_name, canonical.entity_kind)
        if new_key != old_key and self.enforce_constraints:
            holder = self._canonical_keys.get(new_key)
            if holder is not None and holder != canonical_uuid:
                raise ConstraintViolationError(
                    "CanonicalEntity",
                    {"normalizedName": normalized_name, "entityType": canonical.entity_kind.value},
                )

        canonical.name = name
        canonical.normalized_name = normalized_name
        canonical.aliases = list(aliases)
        canonical.project_ids = _union(canonical.project_ids, project_id)
        canonical.document_ids = _union(canonical.document_ids, document_id)
        if new_key != old_key:
            if self._canonical_keys.get(old_key) == canonical_uuid:
                del self._canonical_keys[old_key]
            self._canonical_keys.setdefault(new_key, canonical_uuid)
        self._link_mention(mention_uuid, canonical_uuid)
        return self._public(canonical)

    async def find_duplicate_canonicals(
        self,
    ) -> list[tuple[CanonicalEntity, CanonicalEntity]]:
        groups: dict[tuple[str, EntityKind], list[CanonicalEntity]] = {}
        for canonical in self._canonicals.values():
            groups.setdefault((canonical.normalized_name, canonical.entity_kind), []).append(canonical)

        pairs: list[tuple[CanonicalEntity, CanonicalEntity]] = []
        for members in groups.values():
            if len(members) < 2:
                continue
            members.sort(key=lambda c: (_sort_time(c.created_at), c.uuid))
            oldest = members[0]
            for younger in members[1:]:
                pairs.append((self._public(oldest), self._public(younger)))
        return pairs

    async def merge_canonical_pair(
        self,
        keep_uuid: str,
        drop_uuid: str,
        name: str,
        aliases: list[str],
    ) -> None:
        keep = self._canonicals.get(keep_uuid)
        drop = self._canonicals.get(drop_uuid)
        if keep is None or drop is None or keep_uuid == drop_uuid:
            return

        for mention in self._mentions.values():
            if mention.canonical_uuid == drop_uuid:
                mention.canonical_uuid = keep_uuid

        keep.name = name
        keep.aliases = list(aliases)
        keep.project_ids = _union(keep.project_ids, *drop.project_ids)
        keep.document_ids = _union(keep.document_ids, *drop.document_ids)

        del self._canonicals[drop_uuid]
        drop_key = (drop.normalized_name, drop.entity_kind)
        if self._canonical_keys.get(drop_key) == drop_uuid:
            self._canonical_keys[drop_key] = keep_uuid

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def _public_tag(self, tag: Tag) -> Tag:
        return tag.model_copy(deep=True, update={"embedding": None})

    async def upsert_tag(
        self,
        name: str,
        normalized_name: str,
        category: TagCategory,
        project_id: str | None = None,
        source_id: str | None = None,
    ) -> tuple[Tag, bool]:
        created = False
        uuid = self._tag_keys.get(normalized_name)
        if not self.enforce_constraints and uuid is None:
            uuid = next(
                (t.uuid for t in self._tags.values() if t.normalized_name == normalized_name),
                None,
            )
        tag = self._tags.get(uuid) if uuid else None

        if tag is None:
            tag = Tag(
                uuid=str(uuid4()),
                name=name,
                normalized_name=normalized_name,
                category=category,
                created_at=datetime.now(timezone.utc),
            )
            self._tags[tag.uuid] = tag
            self._tag_keys[normalized_name] = tag.uuid
            self._tag_sources[tag.uuid] = []
            created = True

        tag.usage_count += 1
        tag.project_ids = _union(tag.project_ids, project_id)
        if source_id:
            self._tag_sources[tag.uuid] = _union(self._tag_sources[tag.uuid], source_id)
        return self._public_tag(tag), created

    async def add_tag(self, tag: Tag, source_ids: list[str] | None = None) -> Tag:
        """
        Write a tag verbatim, for imports and fixtures.

        Raises:
            ConstraintViolationError: The normalized name is taken and constraints are enforced
        """
        if self.enforce_constraints and tag.normalized_name in self._tag_keys:
            raise ConstraintViolationError("Tag", {"normalizedName": tag.normalized_name})
        stored = tag.model_copy(deep=True)
        if stored.created_at is None:
            stored.created_at = datetime.now(timezone.utc)
        self._tags[stored.uuid] = stored
        self._tag_keys.setdefault(stored.normalized_name, stored.uuid)
        self._tag_sources[stored.uuid] = list(source_ids or [])
        return self._public_tag(stored)

    async def get_tags(self, limit: int | None = None) -> list[Tag]:
        tags = sorted(self._tags.values(), key=lambda t: (_sort_time(t.created_at), t.uuid))
        if limit is not None:
            tags = tags[:limit]
        return [self._public_tag(t) for t in tags]

    async def get_tag(self, uuid: str) -> Tag | None:
        tag = self._tags.get(uuid)
        return self._public_tag(tag) if tag else None

    async def get_tagged_sources(self, tag_uuid: str) -> list[str]:
        return list(self._tag_sources.get(tag_uuid, []))

    async def normalize_tags(self) -> int:
        updated = 0
        for tag in sorted(self._tags.values(), key=lambda t: (_sort_time(t.created_at), t.uuid)):
            fresh = normalize_tag_name(tag.name)
            if tag.normalized_name == fresh:
                continue
            holder = self._tag_keys.get(fresh)
            if self.enforce_constraints and holder is not None and holder != tag.uuid:
                continue
            if self._tag_keys.get(tag.normalized_name) == tag.uuid:
                del self._tag_keys[tag.normalized_name]
            tag.normalized_name = fresh
            self._tag_keys[fresh] = tag.uuid
            updated += 1
        return updated

    async def merge_tags(
        self,
        target_uuid: str,
        variant_uuids: list[str],
        name: str,
        normalized_name: str,
        category: TagCategory,
        aliases: list[str],
    ) -> int:
        target = self._tags.get(target_uuid)
        if target is None:
            raise KeyError(f"Tag not found: {target_uuid}")
        variants = [
            self._tags[uuid] for uuid in dict.fromkeys(variant_uuids)
            if uuid != target_uuid and uuid in self._tags
        ]

        holder = self._tag_keys.get(normalized_name)
        variant_ids = {v.uuid for v in variants}
        if (
            self.enforce_constraints
            and holder is not None
            and holder != target_uuid
            and holder not in variant_ids
        ):
            raise ConstraintViolationError("Tag", {"normalizedName": normalized_name})

        target_sources = self._tag_sources.setdefault(target_uuid, [])
        for variant in variants:
            for source in self._tag_sources.pop(variant.uuid, []):
                if source not in target_sources:
                    target_sources.append(source)
            target.usage_count += variant.usage_count
            target.project_ids = _union(target.project_ids, *variant.project_ids)
            if self._tag_keys.get(variant.normalized_name) == variant.uuid:
                del self._tag_keys[variant.normalized_name]
            del self._tags[variant.uuid]

        if self._tag_keys.get(target.normalized_name) == target_uuid:
            del self._tag_keys[target.normalized_name]
        target.name = name
        target.normalized_name = normalized_name
        target.category = category
        target.aliases = list(aliases)
        self._tag_keys[normalized_name] = target_uuid
        return len(variants)

    # -------------------------------------------------------------------------
    # Embeddings and Search
    # -------------------------------------------------------------------------

    def _nodes_of(self, node_type: NodeType) -> list[CanonicalEntity] | list[Tag]:
        if node_type == NodeType.CANONICAL_ENTITY:
            return list(self._canonicals.values())
        return list(self._tags.values())

    async def set_embeddings(
        self,
        node_type: NodeType,
        items: list[tuple[str, list[float], str]],
        embedded_at: datetime,
    ) -> int:
        registry: dict[str, Any] = (
            self._canonicals if node_type == NodeType.CANONICAL_ENTITY else self._tags
        )
        updated = 0
        for uuid, vector, content_hash in items:
            node = registry.get(uuid)
            if node is None:
                continue
            node.embedding = list(vector)
            node.embedding_hash = content_hash
            node.embedded_at = embedded_at
            updated += 1
        return updated

    async def embedding_stats(self) -> EmbeddingStats:
        return EmbeddingStats(
            total_entities=len(self._canonicals),
            entities_with_embedding=sum(
                1 for c in self._canonicals.values() if c.embedding is not None
            ),
            total_tags=len(self._tags),
            tags_with_embedding=sum(1 for t in self._tags.values() if t.embedding is not None),
        )

    def _to_result(
        self,
        node: CanonicalEntity | Tag,
        score: float,
        source: MatchSource,
    ) -> SearchResult:
        if isinstance(node, CanonicalEntity):
            return SearchResult(
                node_type=NodeType.CANONICAL_ENTITY,
                uuid=node.uuid,
                name=node.name,
                entity_kind=node.entity_kind,
                aliases=list(node.aliases),
                score=score,
                document_count=len(node.document_ids),
                project_ids=list(node.project_ids),
                match_source=source,
            )
        return SearchResult(
            node_type=NodeType.TAG,
            uuid=node.uuid,
            name=node.name,
            category=node.category,
            aliases=list(node.aliases),
            score=score,
            document_count=node.usage_count,
            project_ids=list(node.project_ids),
            match_source=source,
        )

    async def vector_search(
        self,
        node_type: NodeType,
        vector: list[float],
        top_k: int,
    ) -> list[SearchResult]:
        candidates = [n for n in self._nodes_of(node_type) if n.embedding]
        if not candidates or top_k <= 0:
            return []

        matrix = np.array([n.embedding for n in candidates], dtype=float)
        query = np.array([vector], dtype=float)
        if matrix.shape[1] != query.shape[1]:
            raise ValueError(
                f"Query has {query.shape[1]} dimensions, index has {matrix.shape[1]}"
            )
        with np.errstate(invalid="ignore", divide="ignore"):
            distances = cdist(query, matrix, metric="cosine")[0]

        scored = [
            (float(1.0 - d / 2.0), node)
            for d, node in zip(distances, candidates)
            if not np.isnan(d)
        ]
        scored.sort(key=lambda item: (-item[0], item[1].uuid))
        return [
            self._to_result(node, score, MatchSource.SEMANTIC)
            for score, node in scored[:top_k]
        ]

    async def fulltext_search(
        self,
        node_type: NodeType,
        expression: str,
        limit: int,
    ) -> list[SearchResult]:
        terms = parse_fulltext_expression(expression)
        nodes = self._nodes_of(node_type)
        if not terms or not nodes or limit <= 0:
            return []

        corpus = [
            _tokenize(n.name, n.normalized_name, *n.aliases) for n in nodes
        ]
        vocabulary = {token for tokens in corpus for token in tokens}

        expanded: list[str] = []
        for term, edits in terms:
            for part in _tokenize(term):
                expanded.extend(
                    word for word in vocabulary
                    if Levenshtein.distance(part, word, score_cutoff=edits) <= edits
                )
        if not expanded:
            return []

        wanted = set(expanded)
        bm25 = BM25Plus(corpus)
        scores = bm25.get_scores(sorted(wanted))
        hits = [
            (float(scores[i]), node)
            for i, node in enumerate(nodes)
            if wanted.intersection(corpus[i])
        ]
        hits.sort(key=lambda item: (-item[0], item[1].uuid))
        return [
            self._to_result(node, score, MatchSource.LEXICAL)
            for score, node in hits[:limit]
        ]

    # -------------------------------------------------------------------------
    # Document Lifecycle
    # -------------------------------------------------------------------------

    async def initialize_document(
        self,
        document_id: str,
        project_id: str | None,
        content_hash: str | None,
        now: datetime,
    ) -> DocumentRecord:
        record = self._documents.get(document_id)
        if record is None:
            record = DocumentRecord(
                document_id=document_id,
                project_id=project_id,
                state=DocumentState.PENDING,
                state_changed_at=now,
                content_hash=content_hash,
            )
            self._documents[document_id] = record
            return record.model_copy()

        if project_id is not None:
            record.project_id = project_id
        if content_hash is not None and record.content_hash != content_hash:
            record = record.model_copy(
                update={
                    **_DOCUMENT_RESET_FIELDS,
                    "state": DocumentState.PENDING,
                    "state_changed_at": now,
                    "content_hash": content_hash,
                }
            )
            self._documents[document_id] = record
        return record.model_copy()

    async def get_document(self, document_id: str) -> DocumentRecord | None:
        record = self._documents.get(document_id)
        return record.model_copy() if record else None

    async def update_document(
        self,
        document_id: str,
        expected_state: DocumentState,
        changes: dict[str, Any],
    ) -> DocumentRecord | None:
        record = self._documents.get(document_id)
        if record is None or record.state != expected_state:
            return None
        record = record.model_copy(update=changes)
        self._documents[document_id] = record
        return record.model_copy()

    async def list_documents(
        self,
        states: list[DocumentState],
        limit: int | None = None,
        project_id: str | None = None,
    ) -> list[DocumentRecord]:
        records = [
            r for r in self._documents.values()
            if r.state in states and (project_id is None or r.project_id == project_id)
        ]
        records.sort(key=lambda r: (r.state_changed_at, r.document_id))
        if limit is not None:
            records = records[:limit]
        return [r.model_copy() for r in records]

    async def count_documents_by_state(
        self, project_id: str | None = None
    ) -> dict[str, int]:
        counts: dict[str, int] = {}
        for record in self._documents.values():
            if project_id is None or record.project_id == project_id:
                counts[record.state.value] = counts.get(record.state.value, 0) + 1
        return counts

    # -------------------------------------------------------------------------
    # Content Node Lifecycle
    # -------------------------------------------------------------------------

    async def add_content_nodes(self, nodes: list[NodeRecord]) -> None:
        for node in nodes:
            self._nodes[node.uuid] = node.model_copy(deep=True)

    async def update_nodes(
        self,
        document_id: str,
        from_states: list[NodeState],
        changes: dict[str, Any],
        increment_retry: bool = False,
    ) -> int:
        updated = 0
        for uuid, node in list(self._nodes.items()):
            if node.document_id != document_id or node.state not in from_states:
                continue
            update = dict(changes)
            if increment_retry:
                update["retry_count"] = node.retry_count + 1
            self._nodes[uuid] = node.model_copy(update=update)
            updated += 1
        return updated

    async def list_nodes(
        self,
        states: list[NodeState],
        document_id: str | None = None,
        limit: int | None = None,
    ) -> list[NodeRecord]:
        nodes = [
            n for n in self._nodes.values()
            if n.state in states and (document_id is None or n.document_id == document_id)
        ]
        nodes.sort(key=lambda n: (n.state_changed_at, n.uuid))
        if limit is not None:
            nodes = nodes[:limit]
        return [n.model_copy(update={"embedding": None}) for n in nodes]

    async def count_nodes_by_state(
        self, document_id: str | None = None
    ) -> dict[str, int]:
        counts: dict[str, int] = {}
        for node in self._nodes.values():
            if document_id is None or node.document_id == document_id:
                counts[node.state.value] = counts.get(node.state.value, 0) + 1
        return counts

    async def set_node_embeddings(
        self,
        items: list[tuple[str, list[float]]],
        provider: str,
        model: str,
        now: datetime,
    ) -> int:
        updated = 0
        for uuid, vector in items:
            node = self._nodes.get(uuid)
            if node is None:
                continue
            self._nodes[uuid] = node.model_copy(
                update={
                    "embedding": list(vector),
                    "state": NodeState.READY,
                    "state_changed_at": now,
                    "embedded_at": now,
                    "embedding_provider": provider,
                    "embedding_model": model,
                }
            )
            updated += 1
        return updated
