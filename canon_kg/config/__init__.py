"""
Configuration System

Manages configuration for CanonKG with a layered approach.

Configuration Priority (highest to lowest):
    1. Programmatic (passed to KGConfig())
    2. Environment variables (CANON_* prefix)
    3. Config file (KGConfig.from_file)
    4. Built-in defaults
"""

from canon_kg.config.settings import KGConfig

__all__ = ["KGConfig"]
