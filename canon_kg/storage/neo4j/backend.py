"""
Neo4j Graph Store

GraphStore over Neo4j's native AsyncGraphDatabase driver.

Graph model:
    (:Entity)-[:CANONICAL_IS]->(:CanonicalEntity)
    (content node)-[:HAS_TAG]->(:Tag)
    (:DocumentLifecycle), (:NodeLifecycle)   processing state records

Uniqueness constraints (created by initialize):
    CanonicalEntity (normalizedName, entityType)
    Tag (normalizedName)
    Entity, CanonicalEntity, Tag, NodeLifecycle (uuid)
    DocumentLifecycle (documentId)

Creation goes through MERGE on the constrained keys. A ConstraintError from
the driver (a concurrent MERGE committed first) is raised as
ConstraintViolationError for the caller's fallback path.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from neo4j import AsyncDriver, AsyncGraphDatabase, AsyncManagedTransaction
from neo4j.exceptions import ConstraintError, ServiceUnavailable, SessionExpired

from canon_kg.errors import ConstraintViolationError, StoreUnavailableError
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

logger = logging.getLogger(__name__)


VECTOR_INDEXES = {
    NodeType.CANONICAL_ENTITY: "canonicalentity_embedding_name_vector",
    NodeType.TAG: "tag_embedding_name_vector",
}
FULLTEXT_INDEXES = {
    NodeType.CANONICAL_ENTITY: "canonicalentity_fulltext",
    NodeType.TAG: "tag_fulltext",
}

_CONSTRAINTS = [
    "CREATE CONSTRAINT canonical_entity_unique IF NOT EXISTS "
    "FOR (c:CanonicalEntity) REQUIRE (c.normalizedName, c.entityType) IS UNIQUE",
    "CREATE CONSTRAINT canonical_entity_uuid IF NOT EXISTS "
    "FOR (c:CanonicalEntity) REQUIRE c.uuid IS UNIQUE",
    "CREATE CONSTRAINT tag_unique IF NOT EXISTS "
    "FOR (t:Tag) REQUIRE t.normalizedName IS UNIQUE",
    "CREATE CONSTRAINT tag_uuid IF NOT EXISTS FOR (t:Tag) REQUIRE t.uuid IS UNIQUE",
    "CREATE CONSTRAINT entity_uuid IF NOT EXISTS FOR (e:Entity) REQUIRE e.uuid IS UNIQUE",
    "CREATE CONSTRAINT document_lifecycle_unique IF NOT EXISTS "
    "FOR (d:DocumentLifecycle) REQUIRE d.documentId IS UNIQUE",
    "CREATE CONSTRAINT node_lifecycle_unique IF NOT EXISTS "
    "FOR (n:NodeLifecycle) REQUIRE n.uuid IS UNIQUE",
]

# Map projections; embedding vectors are never returned by reads
_CANONICAL_FIELDS = (
    "{.uuid, .name, .normalizedName, .entityType, .aliases, .projectIds, "
    ".documentIds, .createdAt, .embedding_name_hash, .embeddedAt}"
)
_TAG_FIELDS = (
    "{.uuid, .name, .normalizedName, .category, .aliases, .usageCount, "
    ".projectIds, .createdAt, .embedding_name_hash, .embeddedAt}"
)
_MENTION_FIELDS = (
    "{.uuid, .name, .entityType, .confidence, .aliases, .projectId, "
    ".documentId, .sourceNodeId, .attributes}"
)

# Python field name -> graph property name
_DOCUMENT_PROPERTIES = {
    "document_id": "documentId",
    "project_id": "projectId",
    "state": "state",
    "state_changed_at": "stateChangedAt",
    "content_hash": "contentHash",
    "error_type": "errorType",
    "error_message": "errorMessage",
    "retry_count": "retryCount",
    "parse_started_at": "parseStartedAt",
    "parsed_at": "parsedAt",
    "linked_at": "linkedAt",
    "embedded_at": "embeddedAt",
}
_NODE_PROPERTIES = {
    "uuid": "uuid",
    "document_id": "documentId",
    "label": "label",
    "content": "content",
    "state": "state",
    "state_changed_at": "stateChangedAt",
    "error_type": "errorType",
    "error_message": "errorMessage",
    "retry_count": "retryCount",
    "embedded_at": "embeddedAt",
    "embedding_provider": "embeddingProvider",
    "embedding_model": "embeddingModel",
}

_DOCUMENT_FIELDS = "{" + ", ".join(f".{p}" for p in _DOCUMENT_PROPERTIES.values()) + "}"
_NODE_FIELDS = "{" + ", ".join(f".{p}" for p in _NODE_PROPERTIES.values()) + "}"

_LINK_MENTION = """
WITH c
OPTIONAL MATCH (e:Entity {uuid: $mention_uuid})
FOREACH (_ IN CASE WHEN e IS NULL THEN [] ELSE [1] END |
    MERGE (e)-[:CANONICAL_IS]->(c))
"""


def _native(value: Any) -> Any:
    """Convert neo4j.time values to Python datetimes."""
    if value is not None and hasattr(value, "to_native"):
        return value.to_native()
    return value


def _graph_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _to_properties(changes: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    return {mapping[key]: _graph_value(value) for key, value in changes.items()}


def _canonical_from_row(row: dict[str, Any]) -> CanonicalEntity:
    return CanonicalEntity(
        uuid=row["uuid"],
        name=row["name"],
        normalized_name=row["normalizedName"],
        entity_kind=EntityKind(row["entityType"]),
        aliases=row.get("aliases") or [],
        project_ids=row.get("projectIds") or [],
        document_ids=row.get("documentIds") or [],
        created_at=_native(row.get("createdAt")),
        embedding_hash=row.get("embedding_name_hash"),
        embedded_at=_native(row.get("embeddedAt")),
    )


def _tag_from_row(row: dict[str, Any]) -> Tag:
    return Tag(
        uuid=row["uuid"],
        name=row["name"],
        normalized_name=row.get("normalizedName") or normalize_tag_name(row["name"]),
        category=TagCategory(row.get("category") or TagCategory.OTHER.value),
        aliases=row.get("aliases") or [],
        usage_count=row.get("usageCount") or 0,
        project_ids=row.get("projectIds") or [],
        created_at=_native(row.get("createdAt")),
        embedding_hash=row.get("embedding_name_hash"),
        embedded_at=_native(row.get("embeddedAt")),
    )


def _mention_from_row(row: dict[str, Any], canonical_uuid: str | None = None) -> EntityMention:
    attributes = row.get("attributes")
    return EntityMention(
        uuid=row["uuid"],
        name=row["name"],
        entity_kind=EntityKind(row["entityType"]),
        confidence=row.get("confidence") if row.get("confidence") is not None else 1.0,
        aliases=row.get("aliases") or [],
        project_id=row.get("projectId"),
        document_id=row.get("documentId"),
        source_node_id=row.get("sourceNodeId"),
        attributes=json.loads(attributes) if attributes else {},
        canonical_uuid=canonical_uuid,
    )


def _from_properties(row: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    return {field: _native(row.get(prop)) for field, prop in mapping.items() if row.get(prop) is not None}


class Neo4jGraphStore(GraphStore):
    """
    Neo4j-backed graph store.

    Args:
        uri: Bolt URI
        user: Username
        password: Password
        database: Database name
        max_connection_pool_size: Driver pool size
    """

    def __init__(
        self,
        uri: str,
        user: str,
        password: str | None,
        database: str = "neo4j",
        max_connection_pool_size: int = 50,
    ) -> None:
        self._uri = uri
        self._user = user
        self._password = password
        self._database = database
        self._max_pool_size = max_connection_pool_size
        self._driver: AsyncDriver | None = None

    async def initialize(self) -> None:
        """Open the driver pool and create constraints."""
        if self._driver is not None:
            return

        self._driver = AsyncGraphDatabase.driver(
            self._uri,
            auth=(self._user, self._password or ""),
            max_connection_pool_size=self._max_pool_size,
        )
        try:
            await self._driver.verify_connectivity()
        except (ServiceUnavailable, SessionExpired) as e:
            await self._driver.close()
            self._driver = None
            raise StoreUnavailableError(f"Cannot reach Neo4j at {self._uri}: {e}") from e
        logger.info(f"Connected to Neo4j at {self._uri}")

        for statement in _CONSTRAINTS:
            await self._run(statement)

    async def close(self) -> None:
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            logger.info("Neo4j driver closed")

    @asynccontextmanager
    async def _session(
        self,
        constraint: tuple[str, dict[str, Any]] | None = None,
    ) -> AsyncIterator[Any]:
        if self._driver is None:
            raise RuntimeError("Neo4jGraphStore is not initialized; call initialize() first")
        try:
            async with self._driver.session(database=self._database) as session:
                yield session
        except ConstraintError as e:
            label, key = constraint or ("unknown", {})
            raise ConstraintViolationError(label, key, e.message) from e
        except (ServiceUnavailable, SessionExpired) as e:
            raise StoreUnavailableError(str(e)) from e

    async def _run(
        self,
        query: str,
        parameters: dict[str, Any] | None = None,
        constraint: tuple[str, dict[str, Any]] | None = None,
    ) -> list[dict[str, Any]]:
        async with self._session(constraint) as session:
            result = await session.run(query, parameters or {})
            return await result.data()

    async def ensure_search_indexes(self, dimensions: int) -> None:
        dimensions = int(dimensions)
        for node_type, index in VECTOR_INDEXES.items():
            await self._run(
                f"CREATE VECTOR INDEX {index} IF NOT EXISTS "
                f"FOR (n:{node_type.value}) ON (n.embedding_name) "
                f"OPTIONS {{indexConfig: {{`vector.dimensions`: {dimensions}, "
                f"`vector.similarity_function`: 'cosine'}}}}"
            )
        for node_type, index in FULLTEXT_INDEXES.items():
            await self._run(
                f"CREATE FULLTEXT INDEX {index} IF NOT EXISTS "
                f"FOR (n:{node_type.value}) ON EACH [n.name, n.normalizedName, n.aliases]"
            )
        logger.info(f"Search indexes ensured ({dimensions} dimensions)")

    # -------------------------------------------------------------------------
    # Entity Mentions
    # -------------------------------------------------------------------------

    async def add_mentions(self, mentions: list[EntityMention]) -> None:
        if not mentions:
            return
        rows = [
            {
                "uuid": m.uuid,
                "name": m.name,
                "normalizedName": m.normalized_name,
                "entityType": m.entity_kind.value,
                "confidence": m.confidence,
                "aliases": m.aliases,
                "projectId": m.project_id,
                "documentId": m.document_id,
                "sourceNodeId": m.source_node_id,
                "attributes": json.dumps(m.attributes) if m.attributes else None,
            }
            for m in mentions
        ]
        await self._run(
            """
            UNWIND $rows AS row
            MERGE (e:Entity {uuid: row.uuid})
            SET e += row
            """,
            {"rows": rows},
        )

    async def get_unresolved_mentions(
        self,
        min_confidence: float,
        limit: int,
        kinds: list[EntityKind] | None = None,
    ) -> list[EntityMention]:
        rows = await self._run(
            f"""
            MATCH (e:Entity)
            WHERE NOT (e)-[:CANONICAL_IS]->(:CanonicalEntity)
              AND e.confidence >= $min_confidence
              AND ($kinds IS NULL OR e.entityType IN $kinds)
            RETURN e {_MENTION_FIELDS} AS mention
            ORDER BY mention.entityType, mention.name
            LIMIT $limit
            """,
            {
                "min_confidence": min_confidence,
                "limit": int(limit),
                "kinds": [k.value for k in kinds] if kinds is not None else None,
            },
        )
        return [_mention_from_row(row["mention"]) for row in rows]

    async def get_mention(self, uuid: str) -> EntityMention | None:
        rows = await self._run(
            f"""
            MATCH (e:Entity {{uuid: $uuid}})
            OPTIONAL MATCH (e)-[:CANONICAL_IS]->(c:CanonicalEntity)
            RETURN e {_MENTION_FIELDS} AS mention, c.uuid AS canonical_uuid
            LIMIT 1
            """,
            {"uuid": uuid},
        )
        if not rows:
            return None
        return _mention_from_row(rows[0]["mention"], rows[0]["canonical_uuid"])

    # -------------------------------------------------------------------------
    # Canonical Entities
    # -------------------------------------------------------------------------

    async def get_canonical_entities(
        self,
        kinds: list[EntityKind] | None = None,
        limit: int | None = None,
    ) -> list[CanonicalEntity]:
        limit_clause = "LIMIT $limit" if limit is not None else ""
        rows = await self._run(
            f"""
            MATCH (c:CanonicalEntity)
            WHERE $kinds IS NULL OR c.entityType IN $kinds
            RETURN c {_CANONICAL_FIELDS} AS canonical
            ORDER BY canonical.entityType, canonical.name, canonical.uuid
            {limit_clause}
            """,
            {
                "kinds": [k.value for k in kinds] if kinds is not None else None,
                "limit": int(limit) if limit is not None else None,
            },
        )
        return [_canonical_from_row(row["canonical"]) for row in rows]

    async def get_canonical(self, uuid: str) -> CanonicalEntity | None:
        rows = await self._run(
            f"MATCH (c:CanonicalEntity {{uuid: $uuid}}) RETURN c {_CANONICAL_FIELDS} AS canonical",
            {"uuid": uuid},
        )
        return _canonical_from_row(rows[0]["canonical"]) if rows else None

    async def upsert_canonical(
        self,
        candidate: CanonicalEntity,
        mention_uuid: str,
    ) -> tuple[CanonicalEntity, bool]:
        key = {"normalizedName": candidate.normalized_name, "entityType": candidate.entity_kind.value}
        rows = await self._run(
            f"""
            MERGE (c:CanonicalEntity {{normalizedName: $normalized_name, entityType: $kind}})
            ON CREATE SET
                c.uuid = $uuid,
                c.name = $name,
                c.aliases = CASE WHEN $name IN $aliases THEN $aliases ELSE [$name] + $aliases END,
                c.projectIds = $project_ids,
                c.documentIds = $document_ids,
                c.createdAt = $created_at
            ON MATCH SET
                c.aliases = CASE
                    WHEN c.name = $name OR $name IN coalesce(c.aliases, []) THEN coalesce(c.aliases, [])
                    ELSE coalesce(c.aliases, []) + $name
                END,
                c.projectIds = coalesce(c.projectIds, [])
                    + [p IN $project_ids WHERE NOT p IN coalesce(c.projectIds, [])],
                c.documentIds = coalesce(c.documentIds, [])
                    + [d IN $document_ids WHERE NOT d IN coalesce(c.documentIds, [])]
            {_LINK_MENTION}
            RETURN c {_CANONICAL_FIELDS} AS canonical
            """,
            {
                "normalized_name": candidate.normalized_name,
                "kind": candidate.entity_kind.value,
                "uuid": candidate.uuid,
                "name": candidate.name,
                "aliases": candidate.aliases,
                "project_ids": candidate.project_ids,
                "document_ids": candidate.document_ids,
                "created_at": candidate.created_at,
                "mention_uuid": mention_uuid,
            },
            constraint=("CanonicalEntity", key),
        )
        canonical = _canonical_from_row(rows[0]["canonical"])
        return canonical, canonical.uuid == candidate.uuid

    async def augment_canonical(
        self,
        normalized_name: str,
        kind: EntityKind,
        name: str,
        project_id: str | None,
        document_id: str | None,
        mention_uuid: str,
    ) -> CanonicalEntity | None:
        rows = await self._run(
            f"""
            MATCH (c:CanonicalEntity {{normalizedName: $normalized_name, entityType: $kind}})
            WITH c ORDER BY c.createdAt, c.uuid LIMIT 1
            SET c.aliases = CASE
                    WHEN c.name = $name OR $name IN coalesce(c.aliases, []) THEN coalesce(c.aliases, [])
                    ELSE coalesce(c.aliases, []) + $name
                END,
                c.projectIds = CASE
                    WHEN $project_id IS NULL OR $project_id IN coalesce(c.projectIds, []) THEN coalesce(c.projectIds, [])
                    ELSE coalesce(c.projectIds, []) + $project_id
                END,
                c.documentIds = CASE
                    WHEN $document_id IS NULL OR $document_id IN coalesce(c.documentIds, []) THEN coalesce(c.documentIds, [])
                    ELSE coalesce(c.documentIds, []) + $document_id
                END
            {_LINK_MENTION}
            RETURN c {_CANONICAL_FIELDS} AS canonical
            """,
            {
                "normalized_name": normalized_name,
                "kind": kind.value,
                "name": name,
                "project_id": project_id,
                "document_id": document_id,
                "mention_uuid": mention_uuid,
            },
        )
        return _canonical_from_row(rows[0]["canonical"]) if rows else None

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
        rows = await self._run(
            f"""
            MATCH (c:CanonicalEntity {{uuid: $canonical_uuid}})
            SET c.name = $name,
                c.normalizedName = $normalized_name,
                c.aliases = $aliases,
                c.projectIds = CASE
                    WHEN $project_id IS NULL OR $project_id IN coalesce(c.projectIds, []) THEN coalesce(c.projectIds, [])
                    ELSE coalesce(c.projectIds, []) + $project_id
                END,
                c.documentIds = CASE
                    WHEN $document_id IS NULL OR $document_id IN coalesce(c.documentIds, []) THEN coalesce(c.documentIds, [])
                    ELSE coalesce(c.documentIds, []) + $document_id
                END
            {_LINK_MENTION}
            RETURN c {_CANONICAL_FIELDS} AS canonical
            """,
            {
                "canonical_uuid": canonical_uuid,
                "mention_uuid": mention_uuid,
                "name": name,
                "normalized_name": normalized_name,
                "aliases": aliases,
                "project_id": project_id,
                "document_id": document_id,
            },
            constraint=("CanonicalEntity", {"normalizedName": normalized_name}),
        )
        if not rows:
            raise KeyError(f"Canonical entity not found: {canonical_uuid}")
        return _canonical_from_row(rows[0]["canonical"])

    async def find_duplicate_canonicals(
        self,
    ) -> list[tuple[CanonicalEntity, CanonicalEntity]]:
        rows = await self._run(
            f"""
            MATCH (c:CanonicalEntity)
            WITH c ORDER BY coalesce(c.createdAt, datetime({{epochMillis: 0}})), c.uuid
            WITH c.normalizedName AS key, c.entityType AS kind, collect(c {_CANONICAL_FIELDS}) AS members
            WHERE size(members) > 1
            RETURN members
            """
        )
        pairs: list[tuple[CanonicalEntity, CanonicalEntity]] = []
        for row in rows:
            members = [_canonical_from_row(m) for m in row["members"]]
            pairs.extend((members[0], younger) for younger in members[1:])
        return pairs

    async def merge_canonical_pair(
        self,
        keep_uuid: str,
        drop_uuid: str,
        name: str,
        aliases: list[str],
    ) -> None:
        await self._run(
            """
            MATCH (keep:CanonicalEntity {uuid: $keep_uuid}), (drop:CanonicalEntity {uuid: $drop_uuid})
            WHERE keep <> drop
            OPTIONAL MATCH (e:Entity)-[:CANONICAL_IS]->(drop)
            WITH keep, drop, collect(e) AS mentions
            FOREACH (m IN mentions | MERGE (m)-[:CANONICAL_IS]->(keep))
            SET keep.name = $name,
                keep.aliases = $aliases,
                keep.projectIds = coalesce(keep.projectIds, [])
                    + [p IN coalesce(drop.projectIds, []) WHERE NOT p IN coalesce(keep.projectIds, [])],
                keep.documentIds = coalesce(keep.documentIds, [])
                    + [d IN coalesce(drop.documentIds, []) WHERE NOT d IN coalesce(keep.documentIds, [])]
            DETACH DELETE drop
            """,
            {"keep_uuid": keep_uuid, "drop_uuid": drop_uuid, "name": name, "aliases": aliases},
        )

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    async def upsert_tag(
        self,
        name: str,
        normalized_name: str,
        category: TagCategory,
        project_id: str | None = None,
        source_id: str | None = None,
    ) -> tuple[Tag, bool]:
        new_uuid = str(uuid4())
        rows = await self._run(
            f"""
            MERGE (t:Tag {{normalizedName: $normalized_name}})
            ON CREATE SET
                t.uuid = $uuid,
                t.name = $name,
                t.category = $category,
                t.aliases = [],
                t.usageCount = 0,
                t.projectIds = [],
                t.createdAt = datetime()
            SET t.usageCount = coalesce(t.usageCount, 0) + 1,
                t.projectIds = CASE
                    WHEN $project_id IS NULL OR $project_id IN coalesce(t.projectIds, []) THEN coalesce(t.projectIds, [])
                    ELSE coalesce(t.projectIds, []) + $project_id
                END
            WITH t
            OPTIONAL MATCH (n {{uuid: $source_id}})
            WHERE $source_id IS NOT NULL AND NOT n:Tag
            FOREACH (_ IN CASE WHEN n IS NULL THEN [] ELSE [1] END |
                MERGE (n)-[:HAS_TAG]->(t))
            RETURN t {_TAG_FIELDS} AS tag
            """,
            {
                "normalized_name": normalized_name,
                "uuid": new_uuid,
                "name": name,
                "category": category.value,
                "project_id": project_id,
                "source_id": source_id,
            },
            constraint=("Tag", {"normalizedName": normalized_name}),
        )
        tag = _tag_from_row(rows[0]["tag"])
        return tag, tag.uuid == new_uuid

    async def get_tags(self, limit: int | None = None) -> list[Tag]:
        limit_clause = "LIMIT $limit" if limit is not None else ""
        rows = await self._run(
            f"""
            MATCH (t:Tag)
            RETURN t {_TAG_FIELDS} AS tag
            ORDER BY t.createdAt, t.uuid
            {limit_clause}
            """,
            {"limit": int(limit) if limit is not None else None},
        )
        return [_tag_from_row(row["tag"]) for row in rows]

    async def get_tag(self, uuid: str) -> Tag | None:
        rows = await self._run(
            f"MATCH (t:Tag {{uuid: $uuid}}) RETURN t {_TAG_FIELDS} AS tag",
            {"uuid": uuid},
        )
        return _tag_from_row(rows[0]["tag"]) if rows else None

    async def get_tagged_sources(self, tag_uuid: str) -> list[str]:
        rows = await self._run(
            "MATCH (n)-[:HAS_TAG]->(t:Tag {uuid: $uuid}) RETURN n.uuid AS uuid ORDER BY uuid",
            {"uuid": tag_uuid},
        )
        return [row["uuid"] for row in rows]

    async def normalize_tags(self) -> int:
        rows = await self._run(
            "MATCH (t:Tag) RETURN t.uuid AS uuid, t.name AS name, t.normalizedName AS normalized"
        )
        updates = [
            {"uuid": row["uuid"], "normalized": normalize_tag_name(row["name"])}
            for row in rows
            if row["normalized"] != normalize_tag_name(row["name"])
        ]
        if not updates:
            return 0
        result = await self._run(
            """
            UNWIND $updates AS u
            MATCH (t:Tag {uuid: u.uuid})
            WHERE NOT EXISTS {
                MATCH (other:Tag {normalizedName: u.normalized}) WHERE other <> t
            }
            SET t.normalizedName = u.normalized
            RETURN count(t) AS updated
            """,
            {"updates": updates},
        )
        return result[0]["updated"] if result else 0

    @staticmethod
    async def _merge_tags_tx(
        tx: AsyncManagedTransaction,
        target_uuid: str,
        variant_uuids: list[str],
        properties: dict[str, Any],
    ) -> int:
        result = await tx.run(
            """
            MATCH (target:Tag {uuid: $target_uuid})
            MATCH (v:Tag) WHERE v.uuid IN $variant_uuids AND v <> target
            WITH target, collect(v) AS variants
            WITH target, variants,
                 reduce(total = 0, v IN variants | total + coalesce(v.usageCount, 0)) AS added_usage,
                 reduce(acc = [], v IN variants | acc + coalesce(v.projectIds, [])) AS added_projects
            SET target.usageCount = coalesce(target.usageCount, 0) + added_usage,
                target.projectIds = reduce(
                    acc = coalesce(target.projectIds, []), p IN added_projects |
                    CASE WHEN p IN acc THEN acc ELSE acc + p END
                )
            WITH target, variants
            UNWIND variants AS v
            OPTIONAL MATCH (n)-[:HAS_TAG]->(v)
            WITH target, v, collect(n) AS sources
            FOREACH (s IN sources | MERGE (s)-[:HAS_TAG]->(target))
            DETACH DELETE v
            RETURN count(v) AS merged
            """,
            {"target_uuid": target_uuid, "variant_uuids": variant_uuids},
        )
        record = await result.single()
        merged = record["merged"] if record else 0
        await tx.run(
            "MATCH (t:Tag {uuid: $target_uuid}) SET t += $properties",
            {"target_uuid": target_uuid, "properties": properties},
        )
        return merged

    async def merge_tags(
        self,
        target_uuid: str,
        variant_uuids: list[str],
        name: str,
        normalized_name: str,
        category: TagCategory,
        aliases: list[str],
    ) -> int:
        properties = {
            "name": name,
            "normalizedName": normalized_name,
            "category": category.value,
            "aliases": aliases,
        }
        async with self._session(("Tag", {"normalizedName": normalized_name})) as session:
            return await session.execute_write(
                self._merge_tags_tx, target_uuid, variant_uuids, properties
            )

    # -------------------------------------------------------------------------
    # Embeddings and Search
    # -------------------------------------------------------------------------

    async def set_embeddings(
        self,
        node_type: NodeType,
        items: list[tuple[str, list[float], str]],
        embedded_at: datetime,
    ) -> int:
        if not items:
            return 0
        rows = await self._run(
            f"""
            UNWIND $items AS item
            MATCH (n:{node_type.value} {{uuid: item.uuid}})
            SET n.embedding_name = item.vector,
                n.embedding_name_hash = item.hash,
                n.embeddedAt = $embedded_at
            RETURN count(n) AS updated
            """,
            {
                "items": [{"uuid": u, "vector": v, "hash": h} for u, v, h in items],
                "embedded_at": embedded_at,
            },
        )
        return rows[0]["updated"] if rows else 0

    async def embedding_stats(self) -> EmbeddingStats:
        rows = await self._run(
            """
            CALL {
                MATCH (c:CanonicalEntity)
                RETURN count(c) AS total_entities, count(c.embedding_name) AS entities_with_embedding
            }
            CALL {
                MATCH (t:Tag)
                RETURN count(t) AS total_tags, count(t.embedding_name) AS tags_with_embedding
            }
            RETURN total_entities, entities_with_embedding, total_tags, tags_with_embedding
            """
        )
        return EmbeddingStats(**rows[0]) if rows else EmbeddingStats()

    def _result_from_row(self, node_type: NodeType, row: dict[str, Any], score: float, source: MatchSource) -> SearchResult:
        if node_type == NodeType.CANONICAL_ENTITY:
            canonical = _canonical_from_row(row)
            return SearchResult(
                node_type=node_type,
                uuid=canonical.uuid,
                name=canonical.name,
                entity_kind=canonical.entity_kind,
                aliases=canonical.aliases,
                score=score,
                document_count=len(canonical.document_ids),
                project_ids=canonical.project_ids,
                match_source=source,
            )
        tag = _tag_from_row(row)
        return SearchResult(
            node_type=node_type,
            uuid=tag.uuid,
            name=tag.name,
            category=tag.category,
            aliases=tag.aliases,
            score=score,
            document_count=tag.usage_count,
            project_ids=tag.project_ids,
            match_source=source,
        )

    def _fields_for(self, node_type: NodeType) -> str:
        return _CANONICAL_FIELDS if node_type == NodeType.CANONICAL_ENTITY else _TAG_FIELDS

    async def vector_search(
        self,
        node_type: NodeType,
        vector: list[float],
        top_k: int,
    ) -> list[SearchResult]:
        rows = await self._run(
            f"""
            CALL db.index.vector.queryNodes($index, $top_k, $vector)
            YIELD node, score
            RETURN node {self._fields_for(node_type)} AS node, score
            ORDER BY score DESC
            """,
            {"index": VECTOR_INDEXES[node_type], "top_k": int(top_k), "vector": vector},
        )
        return [
            self._result_from_row(node_type, row["node"], row["score"], MatchSource.SEMANTIC)
            for row in rows
        ]

    async def fulltext_search(
        self,
        node_type: NodeType,
        expression: str,
        limit: int,
    ) -> list[SearchResult]:
        rows = await self._run(
            f"""
            CALL db.index.fulltext.queryNodes($index, $expression)
            YIELD node, score
            RETURN node {self._fields_for(node_type)} AS node, score
            ORDER BY score DESC
            LIMIT $limit
            """,
            {"index": FULLTEXT_INDEXES[node_type], "expression": expression, "limit": int(limit)},
        )
        return [
            self._result_from_row(node_type, row["node"], row["score"], MatchSource.LEXICAL)
            for row in rows
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
        rows = await self._run(
            f"""
            MERGE (d:DocumentLifecycle {{documentId: $document_id}})
            ON CREATE SET
                d.state = 'pending',
                d.stateChangedAt = $now,
                d.contentHash = $content_hash,
                d.retryCount = 0
            SET d.projectId = coalesce($project_id, d.projectId)
            WITH d
            FOREACH (_ IN CASE
                WHEN $content_hash IS NOT NULL AND coalesce(d.contentHash, '') <> $content_hash
                THEN [1] ELSE [] END |
                SET d.state = 'pending',
                    d.stateChangedAt = $now,
                    d.contentHash = $content_hash,
                    d.retryCount = 0,
                    d.errorType = null,
                    d.errorMessage = null,
                    d.parseStartedAt = null,
                    d.parsedAt = null,
                    d.linkedAt = null,
                    d.embeddedAt = null)
            RETURN d {_DOCUMENT_FIELDS} AS document
            """,
            {
                "document_id": document_id,
                "project_id": project_id,
                "content_hash": content_hash,
                "now": now,
            },
            constraint=("DocumentLifecycle", {"documentId": document_id}),
        )
        return DocumentRecord(**_from_properties(rows[0]["document"], _DOCUMENT_PROPERTIES))

    async def get_document(self, document_id: str) -> DocumentRecord | None:
        rows = await self._run(
            f"MATCH (d:DocumentLifecycle {{documentId: $document_id}}) RETURN d {_DOCUMENT_FIELDS} AS document",
            {"document_id": document_id},
        )
        if not rows:
            return None
        return DocumentRecord(**_from_properties(rows[0]["document"], _DOCUMENT_PROPERTIES))

    async def update_document(
        self,
        document_id: str,
        expected_state: DocumentState,
        changes: dict[str, Any],
    ) -> DocumentRecord | None:
        # Taking the write lock before reading state makes the check-and-set atomic
        rows = await self._run(
            f"""
            MATCH (d:DocumentLifecycle {{documentId: $document_id}})
            SET d._lock = true
            WITH d, d.state = $expected_state AS matches
            FOREACH (_ IN CASE WHEN matches THEN [1] ELSE [] END | SET d += $properties)
            REMOVE d._lock
            WITH d, matches
            WHERE matches
            RETURN d {_DOCUMENT_FIELDS} AS document
            """,
            {
                "document_id": document_id,
                "expected_state": expected_state.value,
                "properties": _to_properties(changes, _DOCUMENT_PROPERTIES),
            },
        )
        if not rows:
            return None
        return DocumentRecord(**_from_properties(rows[0]["document"], _DOCUMENT_PROPERTIES))

    async def list_documents(
        self,
        states: list[DocumentState],
        limit: int | None = None,
        project_id: str | None = None,
    ) -> list[DocumentRecord]:
        limit_clause = "LIMIT $limit" if limit is not None else ""
        rows = await self._run(
            f"""
            MATCH (d:DocumentLifecycle)
            WHERE d.state IN $states
              AND ($project_id IS NULL OR d.projectId = $project_id)
            RETURN d {_DOCUMENT_FIELDS} AS document
            ORDER BY d.stateChangedAt, d.documentId
            {limit_clause}
            """,
            {
                "states": [s.value for s in states],
                "project_id": project_id,
                "limit": int(limit) if limit is not None else None,
            },
        )
        return [
            DocumentRecord(**_from_properties(row["document"], _DOCUMENT_PROPERTIES))
            for row in rows
        ]

    async def count_documents_by_state(
        self, project_id: str | None = None
    ) -> dict[str, int]:
        rows = await self._run(
            """
            MATCH (d:DocumentLifecycle)
            WHERE $project_id IS NULL OR d.projectId = $project_id
            RETURN d.state AS state, count(*) AS count
            """,
            {"project_id": project_id},
        )
        return {row["state"]: row["count"] for row in rows}

    # -------------------------------------------------------------------------
    # Content Node Lifecycle
    # -------------------------------------------------------------------------

    async def add_content_nodes(self, nodes: list[NodeRecord]) -> None:
        if not nodes:
            return
        rows = [
            _to_properties(node.model_dump(exclude={"embedding"}, exclude_none=True), _NODE_PROPERTIES)
            for node in nodes
        ]
        await self._run(
            """
            UNWIND $rows AS row
            MERGE (n:NodeLifecycle {uuid: row.uuid})
            SET n += row
            """,
            {"rows": rows},
        )

    async def update_nodes(
        self,
        document_id: str,
        from_states: list[NodeState],
        changes: dict[str, Any],
        increment_retry: bool = False,
    ) -> int:
        rows = await self._run(
            """
            MATCH (n:NodeLifecycle {documentId: $document_id})
            WHERE n.state IN $from_states
            SET n += $properties,
                n.retryCount = CASE WHEN $increment_retry
                    THEN coalesce(n.retryCount, 0) + 1
                    ELSE coalesce(n.retryCount, 0) END
            RETURN count(n) AS updated
            """,
            {
                "document_id": document_id,
                "from_states": [s.value for s in from_states],
                "properties": _to_properties(changes, _NODE_PROPERTIES),
                "increment_retry": increment_retry,
            },
        )
        return rows[0]["updated"] if rows else 0

    async def list_nodes(
        self,
        states: list[NodeState],
        document_id: str | None = None,
        limit: int | None = None,
    ) -> list[NodeRecord]:
        limit_clause = "LIMIT $limit" if limit is not None else ""
        rows = await self._run(
            f"""
            MATCH (n:NodeLifecycle)
            WHERE n.state IN $states
              AND ($document_id IS NULL OR n.documentId = $document_id)
            RETURN n {_NODE_FIELDS} AS node
            ORDER BY n.stateChangedAt, n.uuid
            {limit_clause}
            """,
            {
                "states": [s.value for s in states],
                "document_id": document_id,
                "limit": int(limit) if limit is not None else None,
            },
        )
        return [NodeRecord(**_from_properties(row["node"], _NODE_PROPERTIES)) for row in rows]

    async def count_nodes_by_state(
        self, document_id: str | None = None
    ) -> dict[str, int]:
        rows = await self._run(
            """
            MATCH (n:NodeLifecycle)
            WHERE $document_id IS NULL OR n.documentId = $document_id
            RETURN n.state AS state, count(*) AS count
            """,
            {"document_id": document_id},
        )
        return {row["state"]: row["count"] for row in rows}

    async def set_node_embeddings(
        self,
        items: list[tuple[str, list[float]]],
        provider: str,
        model: str,
        now: datetime,
    ) -> int:
        if not items:
            return 0
        rows = await self._run(
            """
            UNWIND $items AS item
            MATCH (n:NodeLifecycle {uuid: item.uuid})
            SET n.embedding_content = item.vector,
                n.state = 'ready',
                n.stateChangedAt = $now,
                n.embeddedAt = $now,
                n.embeddingProvider = $provider,
                n.embeddingModel = $model
            RETURN count(n) AS updated
            """,
            {
                "items": [{"uuid": u, "vector": v} for u, v in items],
                "provider": provider,
                "model": model,
                "now": now,
            },
        )
        return rows[0]["updated"] if rows else 0
