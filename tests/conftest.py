"""Pytest configuration and fixtures."""

import sys
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.append(str(BASE_DIR))

from chat_memory.models import ChatRef, Message, SearchFilters, VectorPoint
from chat_memory.state import JsonIndexTracker
from chat_memory.telethon_client import AccountClients


def make_message(**overrides) -> Message:
    data = {
        "id": 1,
        "chat_id": "100",
        "account_id": "acc",
        "text": "Hello",
        "date": 1_000_000,
        "outgoing": False,
        "sender_id": "1",
        "sender_name": "Alice",
    }
    data.update(overrides)
    return Message(**data)


def make_conversation(count: int, gap_sec: int = 60, start_id: int = 1, chat_id: str = "100") -> List[Message]:
    return [
        make_message(
            id=start_id + i,
            chat_id=chat_id,
            text=f"Message {i + 1}",
            date=1_000_000 + i * gap_sec,
            outgoing=i % 2 == 0,
            sender_name="Operator" if i % 2 == 0 else "Client",
            sender_id="1" if i % 2 == 0 else "2",
        )
        for i in range(count)
    ]


def make_response(status_code: int = 200, json_data=None, text: str = "OK") -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.json.return_value = json_data if json_data is not None else {}
    return response


class FakeMessageSource:
    """Serves pages the way Telegram does: newest first, offset_id exclusive, min_id floor."""

    def __init__(self, chats: List[ChatRef], messages: Dict[str, List[Message]]):
        self.chats = chats
        self.messages = messages
        self.calls: List[dict] = []
        self.dialog_limits: List[int] = []
        self.handlers = []
        self.stopped = False

    async def stop(self) -> None:
        self.stopped = True

    async def list_indexable_chats(self, limit: int) -> List[ChatRef]:
        self.dialog_limits.append(limit)
        return list(self.chats)

    async def fetch_messages(self, chat_id: str, limit: int, offset_id: int = 0, min_id: int = 0) -> List[Message]:
        self.calls.append(
            {"chat_id": chat_id, "limit": limit, "offset_id": offset_id, "min_id": min_id}
        )
        newest_first = sorted(self.messages.get(chat_id, []), key=lambda m: m.id, reverse=True)
        page = [
            m
            for m in newest_first
            if (not offset_id or m.id < offset_id) and m.id > min_id
        ]
        return page[:limit]

    def on_new_message(self, callback) -> None:
        self.handlers.append(callback)


class InMemoryVectorStore:
    """Records collection and point writes."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, VectorPoint]] = {}
        self.ensure_calls: List[str] = []
        self.deleted: List[str] = []
        self.health_check = AsyncMock(return_value=True)
        self.close = AsyncMock()

    async def ensure_collection(self, account_id: str) -> None:
        self.ensure_calls.append(account_id)
        self.collections.setdefault(account_id, {})

    async def upsert_chunks(self, account_id: str, points: List[VectorPoint]) -> None:
        for point in points:
            self.collections.setdefault(account_id, {})[point.id] = point

    async def search(self, account_id: str, vector, filters: Optional[SearchFilters] = None, limit: int = 10):
        points = list(self.collections.get(account_id, {}).values())
        return [(1.0, p.payload) for p in points[:limit]]

    async def delete_collection(self, account_id: str) -> None:
        self.deleted.append(account_id)
        self.collections.pop(account_id, None)


@pytest.fixture
def fake_embedder():
    embedder = AsyncMock()

    async def embed_batch(texts):
        return [[0.1, 0.2, 0.3, 0.4] for _ in texts]

    embedder.embed_batch = AsyncMock(side_effect=embed_batch)
    embedder.embed = AsyncMock(return_value=[0.1, 0.2, 0.3, 0.4])
    embedder.health_check = AsyncMock(return_value=True)
    embedder.ensure_model = AsyncMock(return_value=True)
    return embedder


@pytest.fixture
def vector_store():
    return InMemoryVectorStore()


@pytest.fixture
def tracker(tmp_path):
    return JsonIndexTracker(str(tmp_path / "tracking.json"))


@pytest.fixture
def clients():
    return AccountClients(sessions_dir="/tmp/sessions")


@pytest.fixture
def mock_http():
    client = AsyncMock()
    client.get = AsyncMock()
    client.post = AsyncMock()
    return client
