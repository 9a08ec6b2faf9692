"""File-backed tracking store for indexing progress."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import IndexStats, TrackingRecord, merge_tracking

logger = logging.getLogger(__name__)


class JsonIndexTracker:
    """Persist per-chat tracking records to a JSON file.

    Same interface and merge rule as the PostgreSQL tracker, for single-user
    setups without a database.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._state: Dict[Tuple[str, str], TrackingRecord] = {}
        self._loaded = False

    async def load(self) -> None:
        """Load state from disk if present."""
        if self._loaded:
            return

        async with self._lock:
            # Another coroutine may have finished loading while we waited
            if self._loaded:
                return
            try:
                await self._read()
            finally:
                self._loaded = True

    async def _read(self) -> None:
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            return

        content = await asyncio.to_thread(self.path.read_text)
        try:
            data = json.loads(content)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable tracking file {self.path}: {e}")
            return

        accounts = data.get("accounts", {}) if isinstance(data, dict) else {}
        for account_id, chats in accounts.items():
            for chat_id, record in chats.items():
                last_indexed_at = record.get("last_indexed_at")
                self._state[(account_id, chat_id)] = TrackingRecord(
                    account_id=account_id,
                    chat_id=chat_id,
                    last_message_id=int(record.get("last_message_id") or 0),
                    last_indexed_at=(
                        datetime.fromisoformat(last_indexed_at)
                        if last_indexed_at
                        else None
                    ),
                    chunk_count=int(record.get("chunk_count") or 0),
                )

    async def get(self, account_id: str, chat_id: str) -> Optional[TrackingRecord]:
        await self.load()
        return self._state.get((account_id, chat_id))

    async def upsert(
        self, account_id: str, chat_id: str, last_message_id: int, chunk_count: int
    ) -> None:
        """Merge one indexing pass into the chat's record and persist."""
        await self.load()

        async with self._lock:
            key = (account_id, chat_id)
            self._state[key] = merge_tracking(
                self._state.get(key), account_id, chat_id, last_message_id, chunk_count
            )
            await self._persist()

    async def delete(self, account_id: str, chat_id: str) -> None:
        await self.load()

        async with self._lock:
            if self._state.pop((account_id, chat_id), None) is not None:
                await self._persist()

    async def delete_account(self, account_id: str) -> None:
        await self.load()

        async with self._lock:
            keys = [key for key in self._state if key[0] == account_id]
            for key in keys:
                del self._state[key]
            if keys:
                await self._persist()

    async def list(self, account_id: str) -> List[TrackingRecord]:
        await self.load()
        records = [r for (acc, _), r in self._state.items() if acc == account_id]
        return sorted(records, key=lambda r: r.chat_id)

    async def stats(self, account_id: str) -> IndexStats:
        records = await self.list(account_id)
        timestamps = [r.last_indexed_at for r in records if r.last_indexed_at]
        return IndexStats(
            total_chats=len(records),
            total_chunks=sum(r.chunk_count for r in records),
            last_indexed_at=max(timestamps) if timestamps else None,
        )

    async def close(self) -> None:
        return None

    async def _persist(self) -> None:
        accounts: Dict[str, Dict[str, dict]] = {}
        for (account_id, chat_id), record in self._state.items():
            accounts.setdefault(account_id, {})[chat_id] = {
                "last_message_id": record.last_message_id,
                "last_indexed_at": (
                    record.last_indexed_at.isoformat() if record.last_indexed_at else None
                ),
                "chunk_count": record.chunk_count,
            }

        content = json.dumps({"accounts": accounts}, indent=2, sort_keys=True)
        await asyncio.to_thread(self.path.write_text, content)
