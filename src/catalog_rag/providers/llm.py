"""LangChain-backed embedding and completion providers."""

from __future__ import annotations

from typing import Any

from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel

from catalog_rag.errors import ProviderError


class LangChainEmbeddingProvider:
    """Adapts any LangChain `Embeddings` implementation to `EmbeddingProvider`."""

    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings

    async def embed(self, text: str) -> list[float]:
        vector = await self._embeddings.aembed_query(text)
        if not vector:
            raise ProviderError("embedding model returned an empty vector")
        return [float(value) for value in vector]


class LangChainCompletionProvider:
    """Adapts a LangChain chat model to `CompletionProvider`.

    Generation limits are bound per call, so one chat model instance can serve
    both the expansion and the re-rank prompts.
    """

    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm

    async def complete(self, prompt: str, *, max_tokens: int, temperature: float) -> str:
        bound = self._llm.bind(max_tokens=max_tokens, temperature=temperature)
        message = await bound.ainvoke(prompt)
        text = _message_text(message).strip()
        if not text:
            raise ProviderError("chat model returned an empty answer")
        return text


def create_openai_providers(
    *,
    model: str = "gpt-4o-mini",
    embedding_model: str = "text-embedding-3-small",
) -> tuple[LangChainEmbeddingProvider, LangChainCompletionProvider]:
    from langchain_openai import ChatOpenAI, OpenAIEmbeddings

    return (
        LangChainEmbeddingProvider(OpenAIEmbeddings(model=embedding_model)),
        LangChainCompletionProvider(ChatOpenAI(model=model, temperature=0)),
    )


def _message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts)
    return str(content)
