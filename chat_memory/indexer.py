"""Account indexing: paginate chats, chunk, embed, store, track."""

import asyncio
import logging
import random
from typing import Callable, List, Optional

from .chunker import MessageChunker
from .embedder import OllamaEmbedder
from .errors import Cancelled
from .jobs import IndexingJob, JobRegistry, JobState
from .models import Chunk, IndexingProgress, Message, VectorPoint, point_id
from .settings import settings
from .telethon_client import AccountClients, TelethonClientWrapper
from .vector_store import QdrantStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexingProgress], None]


class AccountIndexer:
    """Indexes the private chats of Telegram accounts into per-account collections."""

    def __init__(
        self,
        vector_store: QdrantStore,
        embedder: OllamaEmbedder,
        tracker,
        clients: AccountClients,
        chunker: Optional[MessageChunker] = None,
        jobs: Optional[JobRegistry] = None,
    ):
        self.vector_store = vector_store
        self.embedder = embedder
        self.tracker = tracker
        self.clients = clients
        self.chunker = chunker or MessageChunker.from_settings()
        self.jobs = jobs or JobRegistry()

        self.gap_threshold_seconds = settings.chunk_gap_threshold_seconds
        self.chunking_version = settings.chunking_version
        self.dialog_limit = settings.dialog_fetch_limit
        self.page_size = max(1, settings.page_size)
        self.page_delay = settings.page_delay_seconds
        self.page_delay_jitter = settings.page_delay_jitter_seconds
        self.chat_delay = settings.chat_delay_seconds

    async def index_account(
        self, account_id: str, on_progress: Optional[ProgressCallback] = None
    ) -> JobState:
        """
        Index every new message of the account's private chats.

        Any job already running for the account is cancelled first. Chats are
        processed one after another; cancellation is observed between chats.
        Errors abort the whole run and propagate.

        Returns:
            Terminal job state (completed or cancelled)
        """
        job = self.jobs.replace(account_id)
        job.state = JobState.RUNNING
        logger.info(f"Starting indexing for account {account_id}")

        try:
            await self._run(job, on_progress)
        except Cancelled:
            job.finish(JobState.CANCELLED)
            logger.info(f"Indexing cancelled for account {account_id}")
        except asyncio.CancelledError:
            job.finish(JobState.CANCELLED)
            raise
        except Exception as e:
            job.finish(JobState.FAILED, e)
            logger.error(f"Indexing failed for account {account_id}: {e}")
            raise
        else:
            job.finish(JobState.COMPLETED)
            logger.info(f"Indexing complete for account {account_id}")
        finally:
            self.jobs.release(account_id, job)

        return job.state

    async def _run(self, job: IndexingJob, on_progress: Optional[ProgressCallback]):
        account_id = job.account_id

        await self.vector_store.ensure_collection(account_id)
        source = await self.clients.for_account(account_id)
        chats = await source.list_indexable_chats(self.dialog_limit)

        progress = IndexingProgress(total_chats=len(chats))

        for chat in chats:
            job.raise_if_cancelled()

            progress.current_chat = chat.title
            self._notify(on_progress, progress)

            tracked = await self.tracker.get(account_id, chat.chat_id)
            last_message_id = tracked.last_message_id if tracked else 0

            messages = await self._fetch_new_messages(
                source, chat.chat_id, last_message_id
            )
            if not messages:
                progress.indexed_chats += 1
                continue

            chunk_count = await self._index_chunks(
                account_id, chat.chat_id, chat.title, messages
            )
            await self.tracker.upsert(
                account_id,
                chat.chat_id,
                max(m.id for m in messages),
                chunk_count,
            )

            progress.messages_processed += len(messages)
            progress.indexed_chats += 1
            self._notify(on_progress, progress)

            logger.info(
                f"Indexed chat {chat.title}: {len(messages)} messages, {chunk_count} chunks"
            )

            if self.chat_delay > 0:
                await asyncio.sleep(self.chat_delay)

    async def _fetch_new_messages(
        self, source: TelethonClientWrapper, chat_id: str, last_message_id: int
    ) -> List[Message]:
        """Page backward from the newest message until known history is reached."""
        collected: List[Message] = []
        offset_id = 0

        while True:
            batch = await source.fetch_messages(
                chat_id,
                limit=self.page_size,
                offset_id=offset_id,
                min_id=last_message_id,
            )
            if not batch:
                break

            reached_known = False
            for message in batch:
                if message.id <= last_message_id:
                    reached_known = True
                    break
                collected.append(message)

            if reached_known or len(batch) < self.page_size:
                break

            offset_id = batch[-1].id
            await self._page_pause()

        logger.debug(
            "Fetched %d new messages from chat %s (after id %d)",
            len(collected),
            chat_id,
            last_message_id,
        )
        return collected

    async def _page_pause(self) -> None:
        # Telegram flood limits
        delay = self.page_delay + random.uniform(0, self.page_delay_jitter)
        if delay > 0:
            await asyncio.sleep(delay)

    async def _index_chunks(
        self, account_id: str, chat_id: str, chat_title: str, messages: List[Message]
    ) -> int:
        """Chunk, embed and store messages. Returns the number of chunks produced."""
        chunks = self.chunker.chunk(
            messages, chat_id, chat_title, self.gap_threshold_seconds
        )
        if not chunks:
            return 0

        vectors = await self.embedder.embed_batch([chunk.text for chunk in chunks])
        points = self._build_points(account_id, chat_id, chunks, vectors)
        await self.vector_store.upsert_chunks(account_id, points)
        return len(chunks)

    def _build_points(
        self,
        account_id: str,
        chat_id: str,
        chunks: List[Chunk],
        vectors: List[List[float]],
    ) -> List[VectorPoint]:
        points = []
        for idx, chunk in enumerate(chunks):
            vector = vectors[idx] if idx < len(vectors) else None
            if not vector:
                logger.warning(
                    f"Skipping chunk starting at {chunk.start_date} in chat {chat_id}: no embedding"
                )
                continue

            points.append(
                VectorPoint(
                    id=point_id(
                        account_id, chat_id, chunk.start_date, self.chunking_version
                    ),
                    vector=vector,
                    payload=chunk.payload(),
                )
            )
        return points

    @staticmethod
    def _notify(
        on_progress: Optional[ProgressCallback], progress: IndexingProgress
    ) -> None:
        if on_progress is not None:
            on_progress(progress.model_copy())

    async def index_new_messages(
        self,
        account_id: str,
        chat_id: str,
        messages: List[Message],
        chat_title: str,
    ) -> int:
        """
        Index an already fetched batch of live messages.

        Never raises: failures are logged so live update handlers keep running.

        Returns:
            Number of chunks written
        """
        if not messages:
            return 0

        try:
            await self.vector_store.ensure_collection(account_id)

            chunk_count = await self._index_chunks(
                account_id, chat_id, chat_title, messages
            )
            if not chunk_count:
                return 0

            await self.tracker.upsert(
                account_id, chat_id, max(m.id for m in messages), chunk_count
            )
            return chunk_count
        except Exception:
            logger.exception(f"Incremental index error for chat {chat_id}")
            return 0

    async def reindex_chat(
        self,
        account_id: str,
        chat_id: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> JobState:
        """Forget a chat's progress and re-run account indexing."""
        await self.tracker.delete(account_id, chat_id)
        return await self.index_account(account_id, on_progress)

    async def reindex_account(
        self, account_id: str, on_progress: Optional[ProgressCallback] = None
    ) -> JobState:
        """Drop all progress and vectors for an account and index from scratch."""
        self.cancel_indexing(account_id)
        await self.tracker.delete_account(account_id)
        await self.vector_store.delete_collection(account_id)
        return await self.index_account(account_id, on_progress)

    def cancel_indexing(self, account_id: str) -> bool:
        """Ask the account's running job to stop at the next chat boundary."""
        cancelled = self.jobs.cancel(account_id)
        if cancelled:
            logger.info(f"Cancellation requested for account {account_id}")
        return cancelled

    def is_indexing(self, account_id: str) -> bool:
        return self.jobs.is_active(account_id)
