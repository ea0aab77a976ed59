"""
Registry Search and Embedding Maintenance

Modules:
    cache_gate: Embedding text and content-hash change detection
    embeddings: EmbeddingMaintainer (incremental embedding passes)
    hybrid: HybridSearchEngine (semantic + lexical fusion)
"""

from canon_kg.search.cache_gate import (
    build_entity_text,
    build_tag_text,
    hash_content,
    needs_embedding,
)
from canon_kg.search.embeddings import EmbeddingMaintainer
from canon_kg.search.hybrid import (
    HybridSearchEngine,
    build_fulltext_expression,
    escape_lexical,
)

__all__ = [
    "EmbeddingMaintainer",
    "HybridSearchEngine",
    "build_entity_text",
    "build_fulltext_expression",
    "build_tag_text",
    "escape_lexical",
    "hash_content",
    "needs_embedding",
]
