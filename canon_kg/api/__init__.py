"""
Public API Layer

Modules:
    registry: CanonRegistry class - main entry point

Design Principles:
    - Single entry point (CanonRegistry) for most operations
    - Lazy initialization - don't connect until needed
    - Async context manager support for resource cleanup
"""

from canon_kg.api.registry import CanonRegistry

__all__ = ["CanonRegistry"]
