"""Embedding service for generating vector embeddings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import structlog
from openai import OpenAI

from ..config import settings
from ..errors import EmbeddingServiceError

logger = structlog.get_logger()


@dataclass
class BatchEmbeddingResult:
    """Outcome of a batched embedding call: either vectors or the error."""

    vectors: list[list[float]] = field(default_factory=list)
    error: Optional[EmbeddingServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class EmbeddingService:
    """Turns passages into vectors via an OpenAI-compatible embeddings API. No internal retries."""

    def __init__(self, model: str | None = None, client: OpenAI | None = None):
        self.model = model or settings.EMBEDDING_MODEL
        self._client = client

    @property
    def client(self) -> OpenAI:
        """Get or create OpenAI-compatible client for embeddings."""
        if self._client is None:
            self._client = OpenAI(
                api_key=settings.EMBEDDING_API_KEY,
                base_url=settings.EMBEDDING_API_BASE,
                timeout=settings.EMBEDDING_TIMEOUT,
                max_retries=0,
            )
        return self._client

    def _embed(self, texts: list[str]) -> list[list[float]]:
        try:
            response = self.client.embeddings.create(input=texts, model=self.model)
        except Exception as e:
            logger.error(
                "Embedding failed",
                model=self.model,
                error=str(e),
                error_type=type(e).__name__,
                count=len(texts),
            )
            raise EmbeddingServiceError(f"Embedding API call failed: {e}") from e

        if not response.data or len(response.data) != len(texts):
            got = len(response.data or [])
            logger.error("Embedding failed - bad response size", model=self.model, expected=len(texts), got=got)
            raise EmbeddingServiceError(
                f"Expected {len(texts)} embeddings from model '{self.model}', got {got}"
            )

        data = sorted(response.data, key=lambda item: item.index)
        embeddings = [item.embedding for item in data]
        if any(not emb for emb in embeddings):
            logger.error("Embedding failed - empty embeddings", model=self.model)
            raise EmbeddingServiceError(f"Received empty embeddings from model '{self.model}'")
        return embeddings

    def embed_batch(self, texts: list[str]) -> BatchEmbeddingResult:
        """One round trip for all texts, all-or-nothing. Errors are returned, not raised."""
        if not texts:
            return BatchEmbeddingResult(vectors=[])
        try:
            vectors = self._embed(texts)
        except EmbeddingServiceError as e:
            return BatchEmbeddingResult(error=e)
        logger.info("Generated embeddings", model=self.model, count=len(texts))
        return BatchEmbeddingResult(vectors=vectors)

    def embed_one(self, text: str) -> list[float]:
        """Embed a single passage. Raises EmbeddingServiceError."""
        return self._embed([text])[0]
