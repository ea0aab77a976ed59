"""Tests for the OpenAI providers with the LangChain clients patched out."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import BaseModel

from canon_kg.providers.embedding.openai import OpenAIEmbeddingProvider
from canon_kg.providers.llm.openai import OpenAILLMProvider


class Verdict(BaseModel):
    same: bool


class TestOpenAILLMProvider:
    """Tests for client construction and structured calls."""

    @pytest.mark.asyncio
    async def test_client_per_temperature(self):
        structured = MagicMock()
        structured.ainvoke = AsyncMock(return_value=Verdict(same=True))
        chat = MagicMock()
        chat.return_value.with_structured_output.return_value = structured
        provider = OpenAILLMProvider(api_key="sk-test", model="gpt-4o-mini", timeout=5.0)

        with patch("langchain_openai.ChatOpenAI", chat):
            first = await provider.generate_structured("same?", Verdict, system="judge")
            await provider.generate_structured("same?", Verdict, system="judge")
            await provider.generate_structured("same?", Verdict, temperature=0.5)

        assert first == Verdict(same=True)
        assert chat.call_count == 2
        kwargs = chat.call_args_list[0].kwargs
        assert kwargs["timeout"] == 5.0
        assert kwargs["api_key"] == "sk-test"
        messages = structured.ainvoke.call_args_list[0].args[0]
        assert [m.content for m in messages] == ["judge", "same?"]

    @pytest.mark.asyncio
    async def test_client_errors_propagate(self):
        structured = MagicMock()
        structured.ainvoke = AsyncMock(side_effect=TimeoutError())
        chat = MagicMock()
        chat.return_value.with_structured_output.return_value = structured

        with patch("langchain_openai.ChatOpenAI", chat):
            with pytest.raises(TimeoutError):
                await OpenAILLMProvider().generate_structured("x", Verdict)


class TestOpenAIEmbeddingProvider:
    """Tests for dimension handling and batching."""

    def test_native_dimensions(self):
        provider = OpenAIEmbeddingProvider(model="text-embedding-3-large")
        assert provider.dimensions == 3072
        assert provider.provider_name == "openai"

    def test_truncation_passes_dimensions(self):
        embeddings = MagicMock()
        provider = OpenAIEmbeddingProvider(model="text-embedding-3-large", dimensions=1024)

        with patch("langchain_openai.OpenAIEmbeddings", embeddings):
            provider._get_client()

        assert embeddings.call_args.kwargs["dimensions"] == 1024

    def test_native_size_omits_dimensions(self):
        embeddings = MagicMock()
        provider = OpenAIEmbeddingProvider(dimensions=1536)

        with patch("langchain_openai.OpenAIEmbeddings", embeddings):
            provider._get_client()

        assert "dimensions" not in embeddings.call_args.kwargs

    def test_rejects_unservable_dimensions(self):
        with pytest.raises(ValueError, match="cannot serve 3072"):
            OpenAIEmbeddingProvider(model="text-embedding-ada-002", dimensions=3072)

    @pytest.mark.asyncio
    async def test_embed(self):
        client = MagicMock()
        client.embed_documents.return_value = [[0.1, 0.2], [0.3, 0.4]]
        client.embed_query.return_value = [0.5, 0.6]
        provider = OpenAIEmbeddingProvider()
        provider._client = client

        assert await provider.embed([]) == []
        assert await provider.embed(["a", "b"]) == [[0.1, 0.2], [0.3, 0.4]]
        assert await provider.embed_single("q") == [0.5, 0.6]
        client.embed_documents.assert_called_once_with(["a", "b"])
