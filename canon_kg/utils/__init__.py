"""Shared helpers."""

from canon_kg.utils.text import unique_names

__all__ = ["unique_names"]
