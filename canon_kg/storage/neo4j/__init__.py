"""Neo4j GraphStore implementation."""

from canon_kg.storage.neo4j.backend import FULLTEXT_INDEXES, VECTOR_INDEXES, Neo4jGraphStore

__all__ = ["FULLTEXT_INDEXES", "Neo4jGraphStore", "VECTOR_INDEXES"]
