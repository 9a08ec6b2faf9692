"""Telethon client wrapper."""

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from telethon import TelegramClient, events
from telethon.tl.types import User

from .errors import NotConfigured
from .models import ChatRef, Message
from .normalize import display_name, format_sender_name, sanitize_text
from .settings import settings

logger = logging.getLogger(__name__)

NewMessageCallback = Callable[[ChatRef, Message], Awaitable[None]]


class TelethonClientWrapper:
    """One Telegram account as a paginated message source."""

    def __init__(
        self,
        account_id: str,
        session_path: str,
        client: Optional[TelegramClient] = None,
    ):
        self.account_id = account_id
        self.session_path = session_path
        self.client = client or TelegramClient(
            session_path, settings.tg_api_id, settings.tg_api_hash
        )
        self.me: Optional[User] = None
        self._handlers: List[Tuple[Callable, Any]] = []

    async def start(self):
        """Connect an already authorized session."""
        await self.client.connect()
        if not await self.client.is_user_authorized():
            raise NotConfigured(
                f"Telegram session {self.session_path} is not authorized"
            )

        self.me = await self.client.get_me()
        logger.info(
            f"Connected account {self.account_id} as {self.me.first_name} "
            f"(@{self.me.username or 'no_username'})"
        )

    async def stop(self):
        """Stop Telethon client."""
        for handler, builder in self._handlers:
            self.client.remove_event_handler(handler, builder)
        self._handlers.clear()
        await self.client.disconnect()

    async def wait_disconnected(self):
        await self.client.run_until_disconnected()

    def _my_id(self) -> str:
        return str(self.me.id) if self.me is not None else ""

    async def list_indexable_chats(self, limit: int) -> List[ChatRef]:
        """
        One-to-one conversations worth indexing.

        Saved Messages (the chat with yourself) and bots are skipped.

        Args:
            limit: Upper bound on dialogs fetched from Telegram
        """
        my_id = self._my_id()
        dialogs = await self.client.get_dialogs(limit=limit, folder=0)

        chats: List[ChatRef] = []
        for dialog in dialogs:
            if not dialog.is_user:
                continue
            chat_id = str(dialog.id)
            if my_id and chat_id == my_id:
                continue
            if getattr(dialog.entity, "bot", False) is True:
                continue

            title = sanitize_text(dialog.title) or display_name(dialog.entity, chat_id)
            chats.append(ChatRef(chat_id=chat_id, title=title))

        logger.info(
            f"Found {len(chats)} indexable chats out of {len(dialogs)} dialogs"
        )
        return chats

    async def fetch_messages(
        self,
        chat_id: str,
        limit: int,
        offset_id: int = 0,
        min_id: int = 0,
    ) -> List[Message]:
        """
        Fetch one page of messages, newest first.

        Args:
            chat_id: Chat to read
            limit: Page size
            offset_id: Only messages older than this id (0 = from newest)
            min_id: Only messages newer than this id (0 = no floor)
        """
        entity = await self.client.get_entity(int(chat_id))
        batch = await self.client.get_messages(
            entity, limit=limit, offset_id=offset_id, min_id=min_id
        )

        messages = []
        for raw in batch:
            messages.append(await self.to_message(raw, chat_id))
        return messages

    async def to_message(self, raw: Any, chat_id: str) -> Message:
        """Convert a Telethon message; service messages keep their id with empty text."""
        date = getattr(raw, "date", None)
        outgoing = bool(getattr(raw, "out", False))
        sender_id = getattr(raw, "sender_id", None)

        return Message(
            id=raw.id,
            chat_id=chat_id,
            account_id=self.account_id,
            text=sanitize_text(getattr(raw, "message", None) or ""),
            date=int(date.timestamp()) if date else 0,
            outgoing=outgoing,
            sender_id=str(sender_id) if sender_id is not None else "",
            sender_name=await self._sender_name(raw, outgoing),
        )

    async def _sender_name(self, raw: Any, outgoing: bool) -> str:
        try:
            if getattr(raw, "sender_id", None):
                sender = await raw.get_sender()
                name = format_sender_name(sender)
                if name:
                    return name
        except Exception as e:
            logger.debug(f"Could not resolve sender of message {raw.id}: {e}")
        return "Operator" if outgoing else "Unknown"

    def on_new_message(self, callback: NewMessageCallback) -> None:
        """Forward new private-chat messages to ``callback``."""

        async def handler(event) -> None:
            if not event.is_private:
                return

            chat_id = str(event.chat_id)
            if chat_id == self._my_id():
                return

            chat = await event.get_chat()
            if getattr(chat, "bot", False) is True:
                return

            message = await self.to_message(event.message, chat_id)
            await callback(ChatRef(chat_id=chat_id, title=display_name(chat, chat_id)), message)

        builder = events.NewMessage()
        self.client.add_event_handler(handler, builder)
        self._handlers.append((handler, builder))


class AccountClients:
    """Lazily started Telethon clients keyed by account id."""

    def __init__(self, sessions_dir: Optional[str] = None):
        self.sessions_dir = Path(sessions_dir or settings.tg_sessions_dir)
        self._clients: Dict[str, TelethonClientWrapper] = {}
        self._lock = asyncio.Lock()

    def register(self, account_id: str, wrapper: TelethonClientWrapper) -> None:
        self._clients[account_id] = wrapper

    async def for_account(self, account_id: str) -> TelethonClientWrapper:
        async with self._lock:
            wrapper = self._clients.get(account_id)
            if wrapper is None:
                session_path = str(self.sessions_dir / f"{account_id}.session")
                wrapper = TelethonClientWrapper(account_id, session_path)
                await wrapper.start()
                self._clients[account_id] = wrapper
            return wrapper

    async def close_all(self) -> None:
        for wrapper in self._clients.values():
            await wrapper.stop()
        self._clients.clear()
