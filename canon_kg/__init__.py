"""
CanonKG - Cross-Document Entity and Tag Resolution

Keeps the entities and tags extracted from many documents deduplicated in
one canonical registry inside a property graph, and makes that registry
searchable by meaning and by spelling.

Example:
    >>> from canon_kg import CanonRegistry
    >>> async with CanonRegistry() as registry:
    ...     result = await registry.resolve_entities()
    ...     print(f"{result.merged} merged, {result.created} created")
    ...     hits = await registry.search("openai")

Main Classes:
    CanonRegistry: Primary entry point for all operations
    KGConfig: Configuration management
"""

__version__ = "0.1.0"

# Public API - lazy imports to avoid loading optional dependencies
def __getattr__(name: str):
    """Lazy import public API components."""

    if name == "CanonRegistry":
        from canon_kg.api.registry import CanonRegistry
        return CanonRegistry

    if name == "KGConfig":
        from canon_kg.config.settings import KGConfig
        return KGConfig

    if name in ("EntityResolver", "TagResolver", "pick_canonical_name"):
        from canon_kg import resolution
        return getattr(resolution, name)

    if name in ("HybridSearchEngine", "EmbeddingMaintainer"):
        from canon_kg import search
        return getattr(search, name)

    if name == "LifecycleTracker":
        from canon_kg.lifecycle import LifecycleTracker
        return LifecycleTracker

    # Types
    if name in (
        "CanonicalEntity",
        "EntityKind",
        "EntityMention",
        "SearchResult",
        "Tag",
        "TagCategory",
    ):
        from canon_kg import types
        return getattr(types, name)

    raise AttributeError(f"module 'canon_kg' has no attribute {name!r}")


__all__ = [
    # Main classes
    "CanonRegistry",
    "KGConfig",

    # Components
    "EntityResolver",
    "TagResolver",
    "HybridSearchEngine",
    "EmbeddingMaintainer",
    "LifecycleTracker",
    "pick_canonical_name",

    # Types
    "CanonicalEntity",
    "EntityKind",
    "EntityMention",
    "SearchResult",
    "Tag",
    "TagCategory",

    # Version
    "__version__",
]
