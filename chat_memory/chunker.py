"""Message chunking utilities."""

import logging
from typing import Iterable, List, Optional

from .models import Chunk, Message
from .settings import settings

logger = logging.getLogger(__name__)

TWO_HOURS_SEC = 2 * 60 * 60
MAX_MESSAGES_PER_CHUNK = 20
MAX_CHARS_PER_CHUNK = 2000


def _line_length(message: Message) -> int:
    # "sender: text\n"
    return len(message.sender_name) + 2 + len(message.text) + 1


class MessageChunker:
    """Groups time-ordered messages into chunks bounded by gaps and size."""

    def __init__(
        self,
        max_messages: int = MAX_MESSAGES_PER_CHUNK,
        max_chars: int = MAX_CHARS_PER_CHUNK,
    ):
        self.max_messages = max_messages
        self.max_chars = max_chars

    @classmethod
    def from_settings(cls) -> "MessageChunker":
        return cls(
            max_messages=settings.chunk_max_messages,
            max_chars=settings.chunk_max_chars,
        )

    def chunk(
        self,
        messages: Iterable[Message],
        chat_id: str,
        chat_title: str,
        gap_threshold_seconds: int = TWO_HOURS_SEC,
    ) -> List[Chunk]:
        """
        Split messages into chunks.

        A new chunk starts when the time since the previous message strictly
        exceeds ``gap_threshold_seconds``, when the open chunk already holds
        ``max_messages`` messages, or when the next line would push its text
        past ``max_chars``. A gap of exactly the threshold stays in one chunk.

        Args:
            messages: Messages of one chat, in any order
            chat_id: Chat the messages belong to
            chat_title: Human readable chat title
            gap_threshold_seconds: Silence that closes a conversation

        Returns:
            Chunks in chronological order
        """
        ordered = sorted(messages, key=lambda m: m.date)
        non_empty = [m for m in ordered if m.text.strip()]
        if not non_empty:
            return []

        chunks: List[Chunk] = []
        group: List[Message] = []
        group_length = 0

        for message in non_empty:
            if group and self._should_split(
                group, group_length, message, gap_threshold_seconds
            ):
                chunks.append(build_chunk(group, chat_id, chat_title))
                group = []
                group_length = 0

            group.append(message)
            group_length += _line_length(message)

        if group:
            chunks.append(build_chunk(group, chat_id, chat_title))

        logger.debug(
            "Chunked %d messages of chat %s into %d chunks",
            len(non_empty),
            chat_id,
            len(chunks),
        )
        return chunks

    def _should_split(
        self,
        group: List[Message],
        group_length: int,
        candidate: Message,
        gap_threshold_seconds: int,
    ) -> bool:
        if candidate.date - group[-1].date > gap_threshold_seconds:
            return True
        if len(group) >= self.max_messages:
            return True
        return group_length + _line_length(candidate) > self.max_chars


def build_chunk(messages: List[Message], chat_id: str, chat_title: str) -> Chunk:
    """Build a chunk from a non-empty, date-ordered run of messages."""
    sender_names: List[str] = []
    for message in messages:
        if message.sender_name not in sender_names:
            sender_names.append(message.sender_name)

    return Chunk(
        text="\n".join(f"{m.sender_name}: {m.text}" for m in messages),
        chat_id=chat_id,
        chat_title=chat_title,
        start_date=messages[0].date,
        end_date=messages[-1].date,
        message_ids=[m.id for m in messages],
        sender_names=sender_names,
        message_count=len(messages),
        is_outgoing_only=all(m.outgoing for m in messages),
    )


def chunk_messages(
    messages: Iterable[Message],
    chat_id: str,
    chat_title: str,
    gap_threshold_seconds: int = TWO_HOURS_SEC,
    chunker: Optional[MessageChunker] = None,
) -> List[Chunk]:
    """Chunk messages with the default size limits."""
    chunker = chunker or MessageChunker()
    return chunker.chunk(messages, chat_id, chat_title, gap_threshold_seconds)
