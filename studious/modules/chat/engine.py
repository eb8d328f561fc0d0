import logging
import time
from collections import OrderedDict
from typing import Callable, Optional

from studious.config import Settings, settings as default_settings
from studious.core.errors import MessageNotFound, NotGroupMember
from studious.core.notifications import Notifier
from studious.modules.chat.cache import SessionCache
from studious.modules.chat.conversation import ConversationView
from studious.modules.chat.feed import SenderResolver, SubscriptionRegistry
from studious.modules.chat.history import ConversationHistory, HistoryLoader, is_group_admin
from studious.modules.chat.schemas import Member, Message
from studious.modules.chat.visibility import MessageDeletionService

logger = logging.getLogger(__name__)

MAX_VIEWER_SESSIONS = 1000


class ViewerSession:
    """In-memory chat state one signed-in user keeps across conversation views."""

    def __init__(self, viewer_id: str, repository, feed, config: Settings = default_settings,
                 clock: Callable[[], float] = time.monotonic):
        self.viewer_id = viewer_id
        self.repository = repository
        self.feed = feed
        self.config = config
        self.cache = SessionCache(
            ttl_seconds=config.chat_cache_ttl_seconds,
            max_entries=config.chat_cache_max_entries,
            clock=clock,
        )
        self.registry = SubscriptionRegistry()
        self.notifier = Notifier()
        self.loader = HistoryLoader(repository, self.cache, limit=config.chat_history_limit)
        self.deletions = MessageDeletionService(repository)
        self.senders = SenderResolver(repository.get_profile)

    def open_conversation(self, conversation_id: str) -> ConversationView:
        """Returns an unopened view; use `async with` to own its subscription."""
        return ConversationView(
            conversation_id,
            self.viewer_id,
            repository=self.repository,
            feed=self.feed,
            cache=self.cache,
            loader=self.loader,
            registry=self.registry,
            deletions=self.deletions,
            senders=self.senders,
            notifier=self.notifier,
            attach_timeout=self.config.realtime_attach_timeout,
            preview_length=self.config.chat_preview_length,
        )

    async def require_member(self, conversation_id: str) -> Member:
        member = await self.repository.get_membership(conversation_id, self.viewer_id)
        if member is None:
            raise NotGroupMember()
        return member

    async def load_conversation(self, conversation_id: str) -> ConversationHistory:
        """
        Cached history while a live feed keeps it fresh, otherwise a full load.
        Does not attach a feed.
        """
        cached = self.cache.get(conversation_id)
        subscriber = self.registry.get(conversation_id)
        if cached is not None and cached.group is not None and subscriber is not None and subscriber.is_live:
            return ConversationHistory(
                group=cached.group,
                messages=cached.messages,
                members=cached.members,
                hidden_message_ids=cached.hidden_message_ids,
                is_admin=is_group_admin(cached.group, cached.members, self.viewer_id),
            )
        return await self.loader.load(conversation_id, self.viewer_id)

    async def send_message(self, conversation_id: str, content: Optional[str], message_type: str = "text",
                           **file_fields) -> Message:
        row = {
            "group_id": conversation_id,
            "sender_id": self.viewer_id,
            "content": content,
            "message_type": message_type,
            **file_fields,
        }
        created = await self.repository.insert_message(row)
        cached = self.cache.get(conversation_id)
        if cached is not None and all(m.id != created.id for m in cached.messages):
            self.cache.put(conversation_id, messages=cached.messages + [created])
        return created

    async def hide_for_me(self, message_id: str) -> None:
        message = await self._get_message(message_id)
        await self.require_member(message.group_id)
        cached = self.cache.get(message.group_id)
        hidden = set(cached.hidden_message_ids) if cached is not None else set()
        hidden = await self.deletions.hide_for_me(message_id, self.viewer_id, hidden)
        if cached is not None:
            self.cache.put(message.group_id, hidden_message_ids=hidden)

    async def delete_for_everyone(self, message_id: str) -> Message:
        message = await self._get_message(message_id)
        await self.require_member(message.group_id)
        cached = self.cache.get(message.group_id)
        await self.deletions.delete_for_everyone(message, self.viewer_id)
        if cached is not None:
            messages = [message if m.id == message_id else m for m in cached.messages]
            self.cache.put(message.group_id, messages=messages)
        return message

    async def _get_message(self, message_id: str) -> Message:
        message = await self.repository.get_message(message_id)
        if message is None:
            raise MessageNotFound()
        return message

    async def close(self) -> None:
        await self.registry.close()
        self.cache.clear()


class ChatEngine:
    """Process-wide owner of viewer sessions, bounded by least recent use."""

    def __init__(self, repository, feed, config: Settings = default_settings,
                 clock: Callable[[], float] = time.monotonic, max_viewers: int = MAX_VIEWER_SESSIONS):
        self.repository = repository
        self.feed = feed
        self.config = config
        self.max_viewers = max_viewers
        self._clock = clock
        self._viewers: "OrderedDict[str, ViewerSession]" = OrderedDict()

    async def viewer(self, viewer_id: str) -> ViewerSession:
        session = self._viewers.get(viewer_id)
        if session is not None:
            self._viewers.move_to_end(viewer_id)
            return session
        while len(self._viewers) >= self.max_viewers:
            stale_id, stale = self._viewers.popitem(last=False)
            logger.debug(f"Closing idle viewer session {stale_id}")
            await stale.close()
        session = ViewerSession(viewer_id, self.repository, self.feed, self.config, self._clock)
        self._viewers[viewer_id] = session
        return session

    async def end_viewer(self, viewer_id: str) -> None:
        session = self._viewers.pop(viewer_id, None)
        if session is not None:
            await session.close()

    async def close(self) -> None:
        sessions = list(self._viewers.values())
        self._viewers.clear()
        for session in sessions:
            await session.close()
