"""Semantic search over indexed chunks and assistant context building."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .embedder import OllamaEmbedder
from .models import Message, SearchFilters, SearchResult
from .normalize import format_date_range
from .settings import settings
from .vector_store import QdrantStore

logger = logging.getLogger(__name__)

CONTEXT_HEADER = "Relevant Past Conversations:"


def _to_result(score: float, payload: Dict[str, Any]) -> SearchResult:
    return SearchResult(
        text=payload.get("text", ""),
        score=score,
        chat_id=str(payload.get("chat_id", "")),
        chat_title=payload.get("chat_title") or "",
        start_date=int(payload.get("start_date") or 0),
        end_date=int(payload.get("end_date") or 0),
        message_ids=list(payload.get("message_ids") or []),
    )


class SearchService:
    """Embeds queries and runs filtered similarity search."""

    def __init__(self, vector_store: QdrantStore, embedder: OllamaEmbedder):
        self.vector_store = vector_store
        self.embedder = embedder

    async def search(
        self,
        query: str,
        account_id: str,
        filters: Optional[SearchFilters] = None,
    ) -> List[SearchResult]:
        """Chunks most similar to ``query``, best first."""
        filters = filters or SearchFilters()
        limit = filters.limit or settings.search_default_limit

        vector = await self.embedder.embed(query)
        hits = await self.vector_store.search(account_id, vector, filters, limit)
        return [_to_result(score, payload) for score, payload in hits]

    async def context_for_assistant(
        self,
        account_id: str,
        chat_id: str,
        recent_messages: Sequence[Message],
        limit: Optional[int] = None,
    ) -> str:
        """
        Past conversations related to the current one, formatted for a prompt.

        The query is built from the last few messages of the current chat;
        hits from that same chat are dropped since they are already in context.

        Returns:
            Text block to append to a prompt, or "" when nothing relevant
            was found or anything failed
        """
        tail = list(recent_messages)[-settings.context_query_messages :]
        query_text = " ".join(m.text for m in tail)
        if not query_text.strip():
            return ""

        try:
            results = await self.search(
                query_text,
                account_id,
                SearchFilters(limit=limit or settings.context_result_limit),
            )

            relevant = [r for r in results if r.chat_id != chat_id]
            if not relevant:
                return ""

            blocks = [
                f"[{r.chat_title}, {format_date_range(r.start_date, r.end_date)}]\n{r.text}"
                for r in relevant
            ]
        except Exception:
            logger.exception("Context search failed")
            return ""

        return f"\n\n{CONTEXT_HEADER}\n" + "\n\n".join(blocks)
