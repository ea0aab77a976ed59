"""Chat models for the semantic-matching oracle."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from canon_kg.providers.llm.openai import OpenAILLMProvider


def __getattr__(name: str):
    if name == "OpenAILLMProvider":
        from canon_kg.providers.llm.openai import OpenAILLMProvider
        return OpenAILLMProvider
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["OpenAILLMProvider"]
