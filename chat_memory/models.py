"""Data models for the indexing pipeline."""

import hashlib
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class Message(BaseModel):
    """A single text message pulled from a chat."""

    id: int
    chat_id: str
    account_id: str
    text: str = ""
    date: int  # epoch seconds
    outgoing: bool = False
    sender_id: str = ""
    sender_name: str = "Unknown"


class ChatRef(BaseModel):
    """An indexable one-to-one conversation."""

    chat_id: str
    title: str = ""


class Chunk(BaseModel):
    """Contiguous run of messages merged into one retrievable unit."""

    text: str
    chat_id: str
    chat_title: str
    start_date: int
    end_date: int
    message_ids: List[int]
    sender_names: List[str]
    message_count: int
    is_outgoing_only: bool

    def payload(self) -> Dict[str, Any]:
        return self.model_dump()


class VectorPoint(BaseModel):
    """Embedded chunk ready for the vector store."""

    id: str
    vector: List[float]
    payload: Dict[str, Any]


class CollectionStats(BaseModel):
    point_count: int = 0
    status: str


class TrackingRecord(BaseModel):
    """How far indexing has progressed for one chat."""

    account_id: str
    chat_id: str
    last_message_id: int = 0
    last_indexed_at: Optional[datetime] = None
    chunk_count: int = 0


class IndexStats(BaseModel):
    """Aggregate tracking figures for an account."""

    total_chats: int = 0
    total_chunks: int = 0
    last_indexed_at: Optional[datetime] = None


class IndexingProgress(BaseModel):
    total_chats: int = 0
    indexed_chats: int = 0
    current_chat: str = ""
    messages_processed: int = 0


class SearchFilters(BaseModel):
    chat_id: Optional[str] = None
    date_from: Optional[int] = None
    date_to: Optional[int] = None
    limit: Optional[int] = Field(default=None, ge=1)


class SearchResult(BaseModel):
    text: str
    score: float
    chat_id: str
    chat_title: str = ""
    start_date: int
    end_date: int
    message_ids: List[int] = Field(default_factory=list)


class ServiceStatus(BaseModel):
    vector_store: bool = False
    embedder: bool = False
    model: bool = False


def point_id(account_id: str, chat_id: str, start_date: int, version: int) -> str:
    """Deterministic point id for a chunk.

    Re-indexing a range that starts at the same message date overwrites the
    existing point. ``version`` is the chunking scheme version, so ids from an
    older chunking algorithm never alias chunks produced by a newer one.
    """
    key = f"{account_id}_{chat_id}_{start_date}:v{version}"
    return str(uuid.UUID(hashlib.md5(key.encode("utf-8")).hexdigest()))


def merge_tracking(
    existing: Optional[TrackingRecord],
    account_id: str,
    chat_id: str,
    last_message_id: int,
    chunk_count: int,
    now: Optional[datetime] = None,
) -> TrackingRecord:
    """Apply one indexing pass to a tracking record.

    The newest message id never regresses and chunk counts accumulate.
    """
    now = now or datetime.now(timezone.utc)
    if existing is None:
        return TrackingRecord(
            account_id=account_id,
            chat_id=chat_id,
            last_message_id=last_message_id,
            last_indexed_at=now,
            chunk_count=chunk_count,
        )

    return TrackingRecord(
        account_id=account_id,
        chat_id=chat_id,
        last_message_id=max(existing.last_message_id, last_message_id),
        last_indexed_at=now,
        chunk_count=existing.chunk_count + chunk_count,
    )
