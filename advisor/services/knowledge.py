"""
Knowledge retrieval for general (non-policy) questions
"""
from typing import Protocol


class KnowledgeRetriever(Protocol):
    async def retrieve(self, query: str) -> str:
        """Context text relevant to `query`; empty when nothing matched."""
        ...


class NullRetriever:
    """Retriever used when no knowledge base is configured."""

    async def retrieve(self, query: str) -> str:
        return ""
