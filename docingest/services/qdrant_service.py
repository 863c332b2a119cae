"""Qdrant vector store service."""
from __future__ import annotations

from typing import Any

import structlog
from qdrant_client import QdrantClient
from qdrant_client.http.models import Distance, PointStruct, VectorParams

from ..config import settings
from ..errors import VectorStoreError

logger = structlog.get_logger()


class QdrantService:
    """Upserts points (id, vector, payload) into a named collection."""

    def __init__(self, collection_name: str | None = None, client: QdrantClient | None = None):
        self.collection_name = collection_name or settings.QDRANT_COLLECTION
        self._client = client
        self._collection_ready = False

    @property
    def client(self) -> QdrantClient:
        """Get or create Qdrant client."""
        if self._client is None:
            self._client = QdrantClient(
                host=settings.QDRANT_HOST,
                port=settings.QDRANT_PORT,
                api_key=settings.QDRANT_API_KEY,
            )
        return self._client

    def ensure_collection(self, vector_size: int) -> None:
        """Create the collection on first use, sized from the embedding dimension."""
        if self._collection_ready:
            return
        if not self.client.collection_exists(self.collection_name):
            try:
                self.client.create_collection(
                    collection_name=self.collection_name,
                    vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
                )
                logger.info("Created Qdrant collection", collection=self.collection_name, vector_size=vector_size)
            except Exception as e:
                # Another worker may have created it in the meantime
                if "already exists" not in str(e).lower():
                    raise
        self._collection_ready = True

    def upsert_points(self, points: list[PointStruct]) -> int:
        """Upsert all points in one call. Same ids replace the stored points."""
        if not points:
            return 0
        try:
            self.ensure_collection(len(points[0].vector))
            self.client.upsert(collection_name=self.collection_name, points=points)
        except Exception as e:
            logger.error("Failed to upsert vectors", collection=self.collection_name, error=str(e))
            raise VectorStoreError(f"Vector upsert failed: {e}") from e
        logger.info("Upserted vectors", collection=self.collection_name, count=len(points))
        return len(points)

    @staticmethod
    def build_point(point_id: str, vector: list[float], payload: dict[str, Any]) -> PointStruct:
        return PointStruct(id=point_id, vector=vector, payload=payload)
