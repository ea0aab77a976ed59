"""
Storage Layer

Backends:
    neo4j: Neo4jGraphStore (async Cypher over the native driver)
    memory: MemoryGraphStore (in-process, same contract)

Both implement GraphStore.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from canon_kg.storage.base import GraphStore

if TYPE_CHECKING:
    from canon_kg.storage.memory import MemoryGraphStore
    from canon_kg.storage.neo4j import Neo4jGraphStore


def __getattr__(name: str):
    """Lazy import of backends to avoid requiring the neo4j driver."""
    if name == "Neo4jGraphStore":
        from canon_kg.storage.neo4j import Neo4jGraphStore
        return Neo4jGraphStore
    if name == "MemoryGraphStore":
        from canon_kg.storage.memory import MemoryGraphStore
        return MemoryGraphStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["GraphStore", "MemoryGraphStore", "Neo4jGraphStore"]
