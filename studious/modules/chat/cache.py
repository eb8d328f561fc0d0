"""
Per-viewer cache of recently opened conversations.

A snapshot only proves that history was fetched recently; it never
replaces the live subscription, which callers attach on every open.
"""
import logging
import time
from dataclasses import dataclass, field, fields, replace
from typing import Callable, Dict, List, Optional, Set

from studious.modules.chat.schemas import Group, Member, Message

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 5 * 60
CACHE_MAX_ENTRIES = 50


@dataclass
class ConversationSnapshot:
    group: Optional[Group] = None
    messages: List[Message] = field(default_factory=list)
    members: List[Member] = field(default_factory=list)
    hidden_message_ids: Set[str] = field(default_factory=set)
    timestamp: float = 0.0

    def copy(self) -> "ConversationSnapshot":
        return replace(
            self,
            messages=list(self.messages),
            members=list(self.members),
            hidden_message_ids=set(self.hidden_message_ids),
        )


_MERGEABLE_FIELDS = frozenset(f.name for f in fields(ConversationSnapshot)) - {"timestamp"}


class SessionCache:
    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        max_entries: int = CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._snapshots: Dict[str, ConversationSnapshot] = {}

    def get(self, conversation_id: str) -> Optional[ConversationSnapshot]:
        """Return a copy of the snapshot if it is younger than the TTL, else None."""
        snapshot = self._snapshots.get(conversation_id)
        if snapshot is None:
            return None
        if self._clock() - snapshot.timestamp >= self.ttl_seconds:
            return None
        return snapshot.copy()

    def put(self, conversation_id: str, **updates) -> ConversationSnapshot:
        """Merge the given fields into the snapshot and stamp it with the current time."""
        unknown = set(updates) - _MERGEABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown snapshot field(s): {', '.join(sorted(unknown))}")

        snapshot = self._snapshots.get(conversation_id)
        if snapshot is None:
            self._evict_for_insert()
            snapshot = ConversationSnapshot()
            self._snapshots[conversation_id] = snapshot

        for name, value in updates.items():
            if isinstance(value, list):
                value = list(value)
            elif isinstance(value, (set, frozenset)):
                value = set(value)
            setattr(snapshot, name, value)
        snapshot.timestamp = self._clock()
        return snapshot.copy()

    def _evict_for_insert(self) -> None:
        while self._snapshots and len(self._snapshots) >= self.max_entries:
            oldest = min(self._snapshots, key=lambda key: self._snapshots[key].timestamp)
            logger.debug(f"Evicting cached conversation {oldest}")
            del self._snapshots[oldest]

    def clear(self) -> None:
        self._snapshots.clear()

    def __contains__(self, conversation_id: str) -> bool:
        return self.get(conversation_id) is not None

    def __len__(self) -> int:
        return len(self._snapshots)
