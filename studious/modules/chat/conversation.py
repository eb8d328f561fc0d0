"""
One open conversation for one viewer.

The view owns its subscription for as long as it is open: `open()` (or
`async with`) acquires it, `close()` releases it. Every operation catches
domain failures at its boundary and turns them into notifications, so a
failed call leaves in-memory state untouched.
"""
import asyncio
import logging
from typing import Callable, List, Optional, Set

from studious.core.errors import (
    ConversationLoadError, MessageNotFound, StaleLoadError, SubscriptionError, get_error_message,
)
from studious.core.notifications import Notifier
from studious.modules.chat.cache import ConversationSnapshot, SessionCache
from studious.modules.chat.feed import LiveFeedSubscriber, MessageLog, SenderResolver, SubscriptionRegistry
from studious.modules.chat.history import ConversationHistory, HistoryLoader, is_group_admin
from studious.modules.chat.schemas import Group, Member, Message
from studious.modules.chat.visibility import MessageDeletionService, visible

logger = logging.getLogger(__name__)


class ConversationView:
    def __init__(
        self,
        conversation_id: str,
        viewer_id: str,
        *,
        repository,
        feed,
        cache: SessionCache,
        loader: HistoryLoader,
        registry: SubscriptionRegistry,
        deletions: MessageDeletionService,
        senders: SenderResolver,
        notifier: Notifier,
        attach_timeout: float = 10.0,
        preview_length: int = 50,
    ):
        self.conversation_id = conversation_id
        self.viewer_id = viewer_id
        self.repository = repository
        self.cache = cache
        self.loader = loader
        self.registry = registry
        self.deletions = deletions
        self.senders = senders
        self.notifier = notifier
        self._feed = feed
        self._attach_timeout = attach_timeout
        self._preview_length = preview_length

        self.group: Optional[Group] = None
        self.members: List[Member] = []
        self.hidden_message_ids: Set[str] = set()
        self.is_admin = False
        self.loading = False
        self.error: Optional[str] = None
        self.subscriber: Optional[LiveFeedSubscriber] = None
        self._fallback = MessageLog()
        self._active = False
        self._load_task: Optional[asyncio.Task] = None

    async def __aenter__(self) -> "ConversationView":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._active

    @property
    def is_live(self) -> bool:
        return self.subscriber is not None and self.subscriber.is_live

    @property
    def messages(self) -> List[Message]:
        if self.subscriber is not None and self.subscriber.is_released:
            return self.subscriber.log.messages
        return self._fallback.messages

    @property
    def unread_count(self) -> int:
        return self.subscriber.unread_count if self.subscriber is not None else 0

    def visible_messages(self) -> List[Message]:
        return visible(self.messages, self.viewer_id, self.hidden_message_ids)

    def mark_read(self) -> None:
        if self.subscriber is not None:
            self.subscriber.mark_read()

    def watch(self, listener: Callable[[List[Message]], None]) -> Callable[[], None]:
        """Call `listener` with the message list after every live change; returns the remover."""
        if self.subscriber is None:
            return lambda: None
        return self.subscriber.add_listener(listener)

    async def open(self) -> bool:
        """Show cached state or load history, with the live feed attached first. Returns False on failure."""
        if self._active:
            return self.error is None
        self._active = True
        self.error = None

        cached = self.cache.get(self.conversation_id)
        if cached is not None and cached.group is not None:
            logger.debug(f"Cache hit for conversation {self.conversation_id}")
            self._apply_snapshot(cached)
        else:
            cached = None

        await self._attach()
        if not self._active:
            return False

        if cached is not None:
            self._seed(cached.messages)
            return True

        history = await self._load()
        if history is None:
            return False
        self._apply_history(history)
        self._seed(history.messages)
        return True

    async def refresh(self) -> bool:
        """Re-run the history fetch, keeping the current subscription."""
        if not self._active:
            return False
        history = await self._load()
        if history is None:
            return False
        self._apply_history(history)
        if self.subscriber is None:
            self._fallback.seed(history.messages)
        return True

    async def close(self) -> None:
        if not self._active:
            return
        self._active = False
        task, self._load_task = self._load_task, None
        if task is not None and not task.done():
            task.cancel()
        subscriber, self.subscriber = self.subscriber, None
        if subscriber is not None:
            await self.registry.release(self.conversation_id, subscriber)

    async def send_message(self, content: str, message_type: str = "text") -> Optional[Message]:
        return await self._send({"content": content, "message_type": message_type})

    async def send_file(self, file_url: str, file_name: str, file_type: Optional[str] = None,
                        file_size: Optional[int] = None) -> Optional[Message]:
        return await self._send({
            "content": None,
            "message_type": "file",
            "file_url": file_url,
            "file_name": file_name,
            "file_type": file_type,
            "file_size": file_size,
        })

    async def hide_for_me(self, message_id: str) -> bool:
        try:
            hidden = await self.deletions.hide_for_me(message_id, self.viewer_id, set(self.hidden_message_ids))
        except Exception as e:
            self._report("hide message", e)
            return False
        self.hidden_message_ids = hidden
        self.cache.put(self.conversation_id, hidden_message_ids=hidden)
        return True

    async def delete_for_everyone(self, message_id: str) -> bool:
        message = self._find(message_id)
        try:
            if message is None:
                message = await self.repository.get_message(message_id)
            if message is None or message.group_id != self.conversation_id:
                raise MessageNotFound()
            await self.deletions.delete_for_everyone(message, self.viewer_id)
        except Exception as e:
            self._report("delete message", e)
            return False
        self.cache.put(self.conversation_id, messages=self.messages)
        return True

    async def _attach(self) -> None:
        try:
            self.subscriber = await self.registry.acquire(self.conversation_id, self._new_subscriber)
        except SubscriptionError as e:
            logger.warning(f"Conversation {self.conversation_id} opened without live updates")
            self.subscriber = None
            self.notifier.error(e.message, conversation_id=self.conversation_id)
            return
        if not self._active:
            # Closed while attaching
            subscriber, self.subscriber = self.subscriber, None
            if subscriber is not None:
                await self.registry.release(self.conversation_id, subscriber)

    def _new_subscriber(self) -> LiveFeedSubscriber:
        return LiveFeedSubscriber(
            self.conversation_id,
            self.viewer_id,
            self._feed,
            self.senders.resolve,
            notifier=self.notifier,
            on_change=self._messages_changed,
            attach_timeout=self._attach_timeout,
            preview_length=self._preview_length,
        )

    def _messages_changed(self, messages: List[Message]) -> None:
        self.cache.put(self.conversation_id, messages=messages)

    async def _load(self) -> Optional[ConversationHistory]:
        self.loading = True
        self._load_task = asyncio.create_task(
            self.loader.load(self.conversation_id, self.viewer_id, is_current=lambda: self._active)
        )
        try:
            return await self._load_task
        except asyncio.CancelledError:
            if self._active:
                raise
            return None
        except StaleLoadError:
            return None
        except ConversationLoadError as e:
            self.error = e.message
            self.notifier.error(e.message, conversation_id=self.conversation_id)
            # Nothing half-populated stays on screen
            self.group = None
            self.members = []
            await self.close()
            return None
        finally:
            self.loading = False
            self._load_task = None

    def _seed(self, messages: List[Message]) -> None:
        if self.subscriber is not None:
            self.subscriber.release(messages)
        else:
            self._fallback.seed(messages)

    def _apply_snapshot(self, snapshot: ConversationSnapshot) -> None:
        self.group = snapshot.group
        self.members = snapshot.members
        self.hidden_message_ids = set(snapshot.hidden_message_ids)
        self.is_admin = is_group_admin(snapshot.group, snapshot.members, self.viewer_id)
        self.senders.seed(snapshot.members)

    def _apply_history(self, history: ConversationHistory) -> None:
        self.group = history.group
        self.members = history.members
        self.hidden_message_ids = set(history.hidden_message_ids)
        self.is_admin = history.is_admin
        self.senders.seed(history.members)

    def _find(self, message_id: str) -> Optional[Message]:
        if self.subscriber is not None and self.subscriber.is_released:
            return self.subscriber.log.get(message_id)
        return self._fallback.get(message_id)

    async def _send(self, fields: dict) -> Optional[Message]:
        row = {"group_id": self.conversation_id, "sender_id": self.viewer_id, **fields}
        try:
            # The live feed appends it; nothing is added locally
            return await self.repository.insert_message(row)
        except Exception as e:
            self._report("send message", e)
            return None

    def _report(self, action: str, error: Exception) -> None:
        logger.error(f"Failed to {action} in {self.conversation_id}: {error}")
        self.notifier.error(get_error_message(error), conversation_id=self.conversation_id)
