"""Embedding models for registry search. Imported lazily so langchain-openai stays optional at import time."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from canon_kg.providers.embedding.openai import OpenAIEmbeddingProvider


def __getattr__(name: str):
    if name == "OpenAIEmbeddingProvider":
        from canon_kg.providers.embedding.openai import OpenAIEmbeddingProvider
        return OpenAIEmbeddingProvider
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["OpenAIEmbeddingProvider"]
