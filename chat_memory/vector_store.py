"""Qdrant client for per-account chunk collections."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    Range,
    VectorParams,
)

from .errors import NotConfigured
from .models import CollectionStats, SearchFilters, VectorPoint
from .settings import settings

logger = logging.getLogger(__name__)

PAYLOAD_INDEXES = [
    ("chat_id", PayloadSchemaType.KEYWORD),
    ("start_date", PayloadSchemaType.INTEGER),
    ("end_date", PayloadSchemaType.INTEGER),
]


class QdrantStore:
    """One Qdrant collection per account, holding embedded chunks."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[AsyncQdrantClient] = None,
    ):
        self.url = url or settings.qdrant_url
        self.api_key = api_key if api_key is not None else settings.qdrant_api_key
        self.vector_size = settings.embed_dimensions
        self.batch_size = max(1, settings.upsert_batch_size)
        self.client: Optional[AsyncQdrantClient] = client

    def connect(self) -> None:
        """Create the underlying Qdrant client."""
        if self.client is None:
            self.client = AsyncQdrantClient(
                url=self.url,
                api_key=self.api_key,
                timeout=settings.qdrant_timeout_seconds,
            )

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None

    def _get_client(self) -> AsyncQdrantClient:
        if self.client is None:
            raise NotConfigured("Qdrant client not connected - call connect() first")
        return self.client

    @staticmethod
    def collection_name(account_id: str) -> str:
        return f"{settings.collection_prefix}{account_id}"

    async def health_check(self) -> bool:
        """Check if Qdrant answers."""
        try:
            result = await self._get_client().get_collections()
            return isinstance(result.collections, list)
        except Exception:
            return False

    async def ensure_collection(self, account_id: str) -> None:
        """Create the account's collection and payload indexes if missing."""
        client = self._get_client()
        name = self.collection_name(account_id)

        if await client.collection_exists(name):
            return

        logger.info(f"Creating Qdrant collection: {name}")
        await client.create_collection(
            collection_name=name,
            vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
        )
        for field_name, schema_type in PAYLOAD_INDEXES:
            await client.create_payload_index(
                collection_name=name,
                field_name=field_name,
                field_schema=schema_type,
            )

    async def upsert_chunks(self, account_id: str, points: List[VectorPoint]) -> None:
        """Write points in bounded batches; existing ids are overwritten."""
        if not points:
            return

        client = self._get_client()
        name = self.collection_name(account_id)

        for i in range(0, len(points), self.batch_size):
            batch = points[i : i + self.batch_size]
            await client.upsert(
                collection_name=name,
                wait=True,
                points=[
                    PointStruct(id=p.id, vector=p.vector, payload=p.payload)
                    for p in batch
                ],
            )

        logger.debug(f"Upserted {len(points)} points into {name}")

    async def search(
        self,
        account_id: str,
        vector: List[float],
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
    ) -> List[Tuple[float, Dict[str, Any]]]:
        """
        Nearest chunks to ``vector``.

        Returns:
            List of (score, payload) tuples, best first
        """
        client = self._get_client()
        name = self.collection_name(account_id)

        response = await client.query_points(
            collection_name=name,
            query=vector,
            query_filter=build_filter(filters),
            limit=limit,
            with_payload=True,
        )
        return [(point.score, point.payload or {}) for point in response.points]

    async def delete_collection(self, account_id: str) -> None:
        """Drop the account's collection; a missing collection is fine."""
        client = self._get_client()
        name = self.collection_name(account_id)

        if not await client.collection_exists(name):
            logger.debug(f"Collection {name} does not exist, nothing to delete")
            return

        await client.delete_collection(collection_name=name)
        logger.info(f"Deleted Qdrant collection: {name}")

    async def get_collection_info(self, account_id: str) -> Optional[CollectionStats]:
        client = self._get_client()
        name = self.collection_name(account_id)

        if not await client.collection_exists(name):
            return None

        info = await client.get_collection(collection_name=name)
        status = getattr(info.status, "value", info.status)
        return CollectionStats(point_count=info.points_count or 0, status=str(status))


def build_filter(filters: Optional[SearchFilters]) -> Optional[Filter]:
    """Conjunctive payload filter for chat id and date range."""
    if filters is None:
        return None

    must: List[FieldCondition] = []
    if filters.chat_id:
        must.append(FieldCondition(key="chat_id", match=MatchValue(value=filters.chat_id)))
    if filters.date_from is not None:
        must.append(FieldCondition(key="start_date", range=Range(gte=filters.date_from)))
    if filters.date_to is not None:
        must.append(FieldCondition(key="end_date", range=Range(lte=filters.date_to)))

    return Filter(must=must) if must else None
