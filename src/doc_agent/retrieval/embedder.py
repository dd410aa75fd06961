"""Query embedders for the vector search tool.

Chunk vectors are produced upstream; at question time only the query has to be
embedded, with the same model that built the index.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

_WORD = re.compile(r"\w+", flags=re.UNICODE)


class Embedder(ABC):
    """Maps text into the vector space of the pre-built chunk index."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(text) for text in texts]


class HashingEmbedder(Embedder):
    """Signed feature hashing over lowercase word tokens.

    Deterministic and dependency free, used for local runs and tests where the
    index was built with the same hasher.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension < 1:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed_query(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token in _WORD.findall(text.lower()):
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            slot = int.from_bytes(digest[:4], "little") % self.dimension
            vector[slot] += -1.0 if digest[4] % 2 else 1.0

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapter for any `langchain_core.embeddings.Embeddings` implementation."""

    def __init__(self, embeddings: Any) -> None:
        self._embeddings = embeddings

    def embed_query(self, text: str) -> list[float]:
        return [float(value) for value in self._embeddings.embed_query(text)]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [
            [float(value) for value in vector]
            for vector in self._embeddings.embed_documents(texts)
        ]
