"""
Live message feed for one open conversation.

Row changes arrive from the change feed on the event loop, are queued in
delivery order and applied by a single consumer task. The consumer waits
until `release()` seeds the list with the history fetch, so events that
race the initial load are buffered and then de-duplicated by id.
"""
import asyncio
import contextlib
import logging
from collections import OrderedDict
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, Iterator, List, Optional

from pydantic import TypeAdapter

from studious.core.errors import SubscriptionError
from studious.core.notifications import Notifier
from studious.modules.chat.realtime import FAILURE_STATES, SUBSCRIBED, FeedEvent
from studious.modules.chat.schemas import Member, Message, Profile

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 50
SENDER_CACHE_SIZE = 500
ATTACH_TIMEOUT_SECONDS = 10.0

_datetime = TypeAdapter(datetime)


class FeedState(str, Enum):
    DETACHED = "detached"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    ERROR = "error"


def message_preview(message: Message, length: int = PREVIEW_LENGTH) -> str:
    if message.content:
        text = message.content
    elif message.message_type == "file":
        text = f"Shared a file: {message.file_name or 'attachment'}"
    else:
        text = "New message"
    if len(text) > length:
        return text[:length] + "..."
    return text


class MessageLog:
    """Ordered, id-unique list of messages in arrival order."""

    def __init__(self, messages: Iterable[Message] = ()):
        self._messages: List[Message] = []
        self._by_id: Dict[str, Message] = {}
        for message in messages:
            self.append(message)

    def seed(self, messages: Iterable[Message]) -> None:
        self._messages = []
        self._by_id = {}
        for message in messages:
            self.append(message)

    def append(self, message: Message) -> bool:
        if message.id in self._by_id:
            return False
        self._messages.append(message)
        self._by_id[message.id] = message
        return True

    def get(self, message_id: str) -> Optional[Message]:
        return self._by_id.get(message_id)

    def mark_deleted(self, message_id: str, deleted_at: datetime) -> Optional[Message]:
        message = self._by_id.get(message_id)
        if message is None:
            return None
        if message.deleted_at is None:
            message.mark_deleted(deleted_at)
        return message

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._by_id

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __len__(self) -> int:
        return len(self._messages)


class SenderResolver:
    """
    Profile lookups keyed by user id, least recently used evicted first.
    Every roster load re-seeds it, so renamed members show their new name.
    """

    def __init__(self, lookup: Callable[[str], Awaitable[Optional[Profile]]], max_entries: int = SENDER_CACHE_SIZE):
        self._lookup = lookup
        self.max_entries = max_entries
        self._profiles: "OrderedDict[str, Profile]" = OrderedDict()

    def seed(self, members: Iterable[Member]) -> None:
        for member in members:
            if member.user is not None:
                self._remember(member.user_id, member.user)

    async def resolve(self, user_id: str) -> Optional[Profile]:
        profile = self._profiles.get(user_id)
        if profile is not None:
            self._profiles.move_to_end(user_id)
            return profile
        profile = await self._lookup(user_id)
        if profile is not None:
            self._remember(user_id, profile)
        return profile

    def _remember(self, user_id: str, profile: Profile) -> None:
        self._profiles[user_id] = profile
        self._profiles.move_to_end(user_id)
        while len(self._profiles) > self.max_entries:
            self._profiles.popitem(last=False)

    def __len__(self) -> int:
        return len(self._profiles)


class LiveFeedSubscriber:
    def __init__(
        self,
        conversation_id: str,
        viewer_id: str,
        feed,
        resolve_sender: Callable[[str], Awaitable[Optional[Profile]]],
        notifier: Optional[Notifier] = None,
        on_change: Optional[Callable[[List[Message]], None]] = None,
        attach_timeout: float = ATTACH_TIMEOUT_SECONDS,
        preview_length: int = PREVIEW_LENGTH,
    ):
        self.conversation_id = conversation_id
        self.viewer_id = viewer_id
        self.state = FeedState.DETACHED
        self.log = MessageLog()
        self.unread_count = 0
        self.attach_timeout = attach_timeout
        self.preview_length = preview_length
        self._feed = feed
        self._resolve_sender = resolve_sender
        self._notifier = notifier
        self._on_change = on_change
        self._listeners: List[Callable[[List[Message]], None]] = []
        self._queue: "asyncio.Queue[FeedEvent]" = asyncio.Queue()
        self._released = asyncio.Event()
        self._handshake = asyncio.Event()
        self._handle = None
        self._consumer: Optional[asyncio.Task] = None

    @property
    def topic(self) -> str:
        return f"messages:{self.conversation_id}"

    @property
    def is_live(self) -> bool:
        return self.state in (FeedState.ATTACHING, FeedState.ATTACHED)

    @property
    def is_released(self) -> bool:
        return self._released.is_set()

    async def attach(self) -> None:
        """Open the channel and wait for the handshake; raises SubscriptionError on failure."""
        if self.state is not FeedState.DETACHED or self._consumer is not None:
            raise RuntimeError(f"Subscriber for {self.topic} cannot attach from state {self.state.value}")
        self.state = FeedState.ATTACHING
        self._consumer = asyncio.create_task(self._consume())
        logger.info(f"Attaching live feed {self.topic}")
        try:
            self._handle = await self._feed.subscribe(
                self.topic,
                table="messages",
                filter=f"group_id=eq.{self.conversation_id}",
                handler=self._on_event,
                on_status=self._on_status,
            )
            await asyncio.wait_for(self._handshake.wait(), self.attach_timeout)
        except asyncio.TimeoutError:
            self._fail("handshake timed out", notify=False)
        except Exception as e:
            self._fail(str(e), notify=False)

        if self.state is FeedState.ATTACHED:
            logger.info(f"Live feed {self.topic} attached")
            return
        await self._release_handle()
        if self.state is FeedState.ERROR:
            raise SubscriptionError(self.conversation_id)

    def release(self, messages: Iterable[Message] = ()) -> None:
        """Seed the list with history and start applying buffered events."""
        if self._released.is_set():
            logger.debug(f"Live feed {self.topic} already released")
            return
        self.log.seed(messages)
        self._released.set()
        self._changed()

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        if self.is_live and self._released.is_set() and self._consumer is not None:
            await self._queue.join()

    def mark_read(self) -> None:
        self.unread_count = 0

    def add_listener(self, listener: Callable[[List[Message]], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    async def detach(self) -> None:
        if self.state is FeedState.DETACHED:
            return
        self.state = FeedState.DETACHED
        self._handshake.set()
        await self._stop_consumer()
        await self._release_handle()
        logger.info(f"Live feed {self.topic} detached")

    def _on_status(self, status: str, error: Optional[Exception] = None) -> None:
        if status == SUBSCRIBED:
            if self.state is FeedState.ATTACHING:
                self.state = FeedState.ATTACHED
            self._handshake.set()
        elif status in FAILURE_STATES and self.is_live:
            # Failures after the handshake are reported here; attach() reports its own
            self._fail(str(error) if error else status, notify=self.state is FeedState.ATTACHED)

    def _on_event(self, event: FeedEvent) -> None:
        if not self.is_live:
            return
        if event.table and event.table != "messages":
            return
        self._queue.put_nowait(event)

    def _fail(self, reason: str, notify: bool) -> None:
        logger.error(f"Live feed {self.topic} failed: {reason}")
        self.state = FeedState.ERROR
        self._handshake.set()
        if self._consumer is not None:
            self._consumer.cancel()
        if notify and self._notifier is not None:
            self._notifier.error(SubscriptionError.default_message, conversation_id=self.conversation_id)

    async def _stop_consumer(self) -> None:
        consumer, self._consumer = self._consumer, None
        if consumer is None or consumer is asyncio.current_task():
            return
        consumer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await consumer

    async def _release_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await self._feed.unsubscribe(handle)
        except Exception as e:
            logger.warning(f"Error releasing channel {self.topic}: {e}")

    async def _consume(self) -> None:
        await self._released.wait()
        while True:
            event = await self._queue.get()
            try:
                await self._apply(event)
            except Exception as e:
                logger.error(f"Failed to apply {event.type} on {self.topic}: {e}")
            finally:
                self._queue.task_done()

    async def _apply(self, event: FeedEvent) -> None:
        if event.type == "insert":
            await self._apply_insert(event.new_row)
        elif event.type == "update":
            self._apply_update(event.new_row)
        else:
            logger.debug(f"Ignoring {event.type} on {self.topic}")

    async def _apply_insert(self, row: dict) -> None:
        message_id = row.get("id")
        if not message_id or message_id in self.log:
            return
        sender = None
        try:
            sender = await self._resolve_sender(row["sender_id"])
        except Exception as e:
            logger.warning(f"Could not resolve sender {row.get('sender_id')} for {message_id}: {e}")
        if not self.is_live:
            return

        message = Message(**{**row, "sender": sender})
        if not self.log.append(message):
            return
        if message.sender_id != self.viewer_id:
            self.unread_count += 1
            if self._notifier is not None:
                name = sender.display_name if sender else "Someone"
                self._notifier.info(
                    f"{name}: {message_preview(message, self.preview_length)}",
                    conversation_id=self.conversation_id,
                    message_count=len(self.log),
                )
        self._changed()

    def _apply_update(self, row: dict) -> None:
        deleted_at = row.get("deleted_at")
        if not deleted_at or not row.get("id"):
            return
        if self.log.mark_deleted(row["id"], _datetime.validate_python(deleted_at)) is not None:
            self._changed()

    def _changed(self) -> None:
        messages = self.log.messages
        if self._on_change is not None:
            self._on_change(messages)
        for listener in list(self._listeners):
            try:
                listener(messages)
            except Exception as e:
                logger.error(f"Listener on {self.topic} failed: {e}")


class SubscriptionRegistry:
    """At most one live subscriber per conversation, shared by reference count."""

    def __init__(self):
        self._subscribers: Dict[str, LiveFeedSubscriber] = {}
        # Counted per subscriber so a replaced one never releases its successor
        self._refs: Dict[LiveFeedSubscriber, int] = {}

    def get(self, conversation_id: str) -> Optional[LiveFeedSubscriber]:
        return self._subscribers.get(conversation_id)

    async def acquire(
        self,
        conversation_id: str,
        factory: Callable[[], LiveFeedSubscriber],
    ) -> LiveFeedSubscriber:
        existing = self._subscribers.get(conversation_id)
        if existing is not None and existing.is_live:
            self._refs[existing] = self._refs.get(existing, 0) + 1
            return existing
        if existing is not None:
            # Errored or detached: replace, never stack
            await existing.detach()

        subscriber = factory()
        self._subscribers[conversation_id] = subscriber
        self._refs[subscriber] = 1
        try:
            await subscriber.attach()
        except Exception:
            self._refs.pop(subscriber, None)
            if self._subscribers.get(conversation_id) is subscriber:
                self._subscribers.pop(conversation_id, None)
            raise
        return subscriber

    async def release(self, conversation_id: str, subscriber: Optional[LiveFeedSubscriber] = None) -> None:
        """Drop one reference to `subscriber` (default: the current one); detach it at zero."""
        if subscriber is None:
            subscriber = self._subscribers.get(conversation_id)
            if subscriber is None:
                return
        refs = self._refs.get(subscriber, 0) - 1
        if refs > 0:
            self._refs[subscriber] = refs
            return
        self._refs.pop(subscriber, None)
        if self._subscribers.get(conversation_id) is subscriber:
            self._subscribers.pop(conversation_id, None)
        await subscriber.detach()

    def references(self, subscriber: LiveFeedSubscriber) -> int:
        return self._refs.get(subscriber, 0)

    def active_count(self, conversation_id: Optional[str] = None) -> int:
        subscribers = self._subscribers.values() if conversation_id is None \
            else [s for cid, s in self._subscribers.items() if cid == conversation_id]
        return sum(1 for s in subscribers if s.is_live)

    async def close(self) -> None:
        subscribers = list(self._subscribers.values())
        self._subscribers.clear()
        self._refs.clear()
        for subscriber in subscribers:
            await subscriber.detach()
