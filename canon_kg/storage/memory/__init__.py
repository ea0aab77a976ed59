"""In-process GraphStore implementation."""

from canon_kg.storage.memory.backend import MemoryGraphStore, parse_fulltext_expression

__all__ = ["MemoryGraphStore", "parse_fulltext_expression"]
