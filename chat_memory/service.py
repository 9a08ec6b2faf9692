"""Service facade: status, background indexing with events, search, stats."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from .db import DatabaseManager
from .embedder import OllamaEmbedder
from .errors import NotConfigured
from .indexer import AccountIndexer, ProgressCallback
from .jobs import JobState
from .models import (
    ChatRef,
    IndexingProgress,
    IndexStats,
    Message,
    SearchFilters,
    SearchResult,
    ServiceStatus,
)
from .search import SearchService
from .settings import settings
from .state import JsonIndexTracker
from .telethon_client import AccountClients
from .vector_store import QdrantStore

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, Dict[str, Any]], None]

INDEXING_PROGRESS = "indexing_progress"
INDEXING_COMPLETE = "indexing_complete"
INDEXING_ERROR = "indexing_error"


class RagService:
    """Entry point used by the CLI and host applications."""

    def __init__(
        self,
        indexer: AccountIndexer,
        search: SearchService,
        on_event: Optional[EventCallback] = None,
    ):
        self.indexer = indexer
        self.search_service = search
        self.on_event = on_event
        self._background_tasks: Set[asyncio.Task] = set()

    async def get_status(self) -> ServiceStatus:
        """Probe the vector store and embedding service."""
        store_ok, embedder_ok = await asyncio.gather(
            self.indexer.vector_store.health_check(),
            self.indexer.embedder.health_check(),
        )

        model_ok = False
        if embedder_ok:
            model_ok = await self.indexer.embedder.ensure_model()

        return ServiceStatus(vector_store=store_ok, embedder=embedder_ok, model=model_ok)

    def start_indexing(self, account_id: str) -> asyncio.Task:
        """Index an account in the background; outcome is reported via events."""
        return self._spawn(
            account_id,
            self.indexer.index_account(account_id, self._progress_callback(account_id)),
        )

    def stop_indexing(self, account_id: str) -> bool:
        return self.indexer.cancel_indexing(account_id)

    def is_indexing(self, account_id: str) -> bool:
        return self.indexer.is_indexing(account_id)

    async def search(
        self,
        query: str,
        account_id: str,
        filters: Optional[SearchFilters] = None,
    ) -> List[SearchResult]:
        return await self.search_service.search(query, account_id, filters)

    async def context_for_assistant(
        self, account_id: str, chat_id: str, recent_messages: List[Message]
    ) -> str:
        return await self.search_service.context_for_assistant(
            account_id, chat_id, recent_messages
        )

    async def reindex(self, account_id: str, chat_id: Optional[str] = None):
        """
        Re-index one chat (awaited) or the whole account (in the background).

        Returns:
            The job state for a chat re-index, the background task otherwise
        """
        if chat_id:
            return await self.indexer.reindex_chat(
                account_id, chat_id, self._progress_callback(account_id)
            )

        return self._spawn(
            account_id,
            self.indexer.reindex_account(account_id, self._progress_callback(account_id)),
        )

    async def get_index_stats(self, account_id: str) -> IndexStats:
        return await self.indexer.tracker.stats(account_id)

    async def watch(self, account_id: str) -> None:
        """Index new messages of the account as they arrive."""
        source = await self.indexer.clients.for_account(account_id)

        async def on_message(chat: ChatRef, message: Message) -> None:
            await self.indexer.index_new_messages(
                account_id, chat.chat_id, [message], chat.title
            )

        source.on_new_message(on_message)
        logger.info(f"Watching account {account_id} for new messages")

    async def wait_idle(self) -> None:
        """Wait for all background indexing tasks to finish."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._background_tasks):
            task.cancel()
        await self.wait_idle()

        await self.indexer.clients.close_all()
        await self.indexer.embedder.close()
        await self.indexer.vector_store.close()
        await self.indexer.tracker.close()

    def _spawn(self, account_id: str, job: Awaitable[JobState]) -> asyncio.Task:
        task = asyncio.create_task(self._run_job(account_id, job))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _run_job(self, account_id: str, job: Awaitable[JobState]) -> None:
        try:
            state = await job
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Background indexing failed for account {account_id}")
            self._emit(INDEXING_ERROR, {"account_id": account_id, "error": str(e)})
            return

        self._emit(INDEXING_COMPLETE, {"account_id": account_id, "state": state.value})

    def _progress_callback(self, account_id: str) -> ProgressCallback:
        def on_progress(progress: IndexingProgress) -> None:
            self._emit(INDEXING_PROGRESS, {"account_id": account_id, **progress.model_dump()})

        return on_progress

    def _emit(self, event: str, data: Dict[str, Any]) -> None:
        logger.debug(f"{event}: {data}")
        if self.on_event is not None:
            self.on_event(event, data)


async def create_tracker():
    """Tracking store selected by ``tracking_backend``."""
    backend = settings.tracking_backend.lower()
    if backend == "json":
        return JsonIndexTracker(settings.tracking_state_path)
    if backend == "postgres":
        if not settings.database_url:
            raise NotConfigured("DATABASE_URL is required for the postgres tracking backend")
        db = DatabaseManager(settings.database_url)
        await db.initialize()
        return db
    raise NotConfigured(f"Unknown tracking backend: {settings.tracking_backend}")


async def create_service(on_event: Optional[EventCallback] = None) -> RagService:
    """Wire real clients from settings."""
    vector_store = QdrantStore()
    vector_store.connect()
    embedder = OllamaEmbedder()
    tracker = await create_tracker()

    indexer = AccountIndexer(vector_store, embedder, tracker, AccountClients())
    return RagService(indexer, SearchService(vector_store, embedder), on_event)
