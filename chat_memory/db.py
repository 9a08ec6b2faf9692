"""Database operations for indexing progress."""

import logging
from contextlib import asynccontextmanager
from typing import Any, List, Optional

import asyncpg

from .errors import NotConfigured
from .models import IndexStats, TrackingRecord

logger = logging.getLogger(__name__)

_COLUMNS = "account_id, chat_id, last_message_id, last_indexed_at, chunk_count"


def _to_record(row: Any) -> TrackingRecord:
    data = dict(row)
    return TrackingRecord(
        account_id=data["account_id"],
        chat_id=data["chat_id"],
        last_message_id=data.get("last_message_id") or 0,
        last_indexed_at=data.get("last_indexed_at"),
        chunk_count=data.get("chunk_count") or 0,
    )


class DatabaseManager:
    """Tracks per-chat indexing progress in PostgreSQL."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self):
        """Initialize database pool and create tables."""
        self.pool = await asyncpg.create_pool(
            self.database_url, min_size=1, max_size=5, command_timeout=60
        )
        await self.create_tables()

    async def close(self):
        """Close database pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None

    @asynccontextmanager
    async def get_connection(self):
        """Get database connection from pool."""
        if not self.pool:
            raise NotConfigured("Database not initialized")

        conn = await self.pool.acquire()
        try:
            yield conn
        finally:
            await self.pool.release(conn)

    async def create_tables(self):
        """Create required tables."""
        sql = """
        -- Track per-chat indexing progress
        CREATE TABLE IF NOT EXISTS rag_indexed_chats (
          id BIGSERIAL PRIMARY KEY,
          account_id TEXT NOT NULL,
          chat_id TEXT NOT NULL,
          last_message_id BIGINT,
          last_indexed_at TIMESTAMPTZ,
          chunk_count INT NOT NULL DEFAULT 0,
          UNIQUE (account_id, chat_id)
        );

        CREATE INDEX IF NOT EXISTS idx_rag_indexed_account ON rag_indexed_chats(account_id);
        """

        async with self.get_connection() as conn:
            await conn.execute(sql)

        logger.info("Database tables created/verified")

    async def get(self, account_id: str, chat_id: str) -> Optional[TrackingRecord]:
        """Get tracking record for a chat."""
        async with self.get_connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM rag_indexed_chats WHERE account_id = $1 AND chat_id = $2",
                account_id,
                chat_id,
            )
            if row:
                return _to_record(row)
            return None

    async def upsert(
        self, account_id: str, chat_id: str, last_message_id: int, chunk_count: int
    ):
        """Merge one indexing pass into the chat's tracking record."""
        async with self.get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO rag_indexed_chats (account_id, chat_id, last_message_id, last_indexed_at, chunk_count)
                VALUES ($1, $2, $3, now(), $4)
                ON CONFLICT (account_id, chat_id) DO UPDATE SET
                    last_message_id = GREATEST(rag_indexed_chats.last_message_id, EXCLUDED.last_message_id),
                    last_indexed_at = EXCLUDED.last_indexed_at,
                    chunk_count = rag_indexed_chats.chunk_count + EXCLUDED.chunk_count
                """,
                account_id,
                chat_id,
                last_message_id,
                chunk_count,
            )

    async def delete(self, account_id: str, chat_id: str):
        """Forget a chat so the next pass re-reads its full history."""
        async with self.get_connection() as conn:
            await conn.execute(
                "DELETE FROM rag_indexed_chats WHERE account_id = $1 AND chat_id = $2",
                account_id,
                chat_id,
            )

    async def delete_account(self, account_id: str):
        async with self.get_connection() as conn:
            await conn.execute(
                "DELETE FROM rag_indexed_chats WHERE account_id = $1", account_id
            )

    async def list(self, account_id: str) -> List[TrackingRecord]:
        async with self.get_connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM rag_indexed_chats WHERE account_id = $1 ORDER BY chat_id",
                account_id,
            )
            return [_to_record(row) for row in rows]

    async def stats(self, account_id: str) -> IndexStats:
        """Aggregate figures for an account."""
        async with self.get_connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT COUNT(*) AS total_chats,
                       COALESCE(SUM(chunk_count), 0) AS total_chunks,
                       MAX(last_indexed_at) AS last_indexed_at
                FROM rag_indexed_chats WHERE account_id = $1
                """,
                account_id,
            )
            if not row:
                return IndexStats()
            return IndexStats(**dict(row))
