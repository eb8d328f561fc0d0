import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

from studious.core.errors import ConversationLoadError, StaleLoadError
from studious.modules.chat.cache import SessionCache
from studious.modules.chat.schemas import Group, Member, Message

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


@dataclass
class ConversationHistory:
    group: Group
    messages: List[Message] = field(default_factory=list)
    members: List[Member] = field(default_factory=list)
    hidden_message_ids: Set[str] = field(default_factory=set)
    is_admin: bool = False


def is_group_admin(group: Group, members: List[Member], user_id: str) -> bool:
    """Admins by role, plus the creator whatever their stored role."""
    if group.created_by == user_id:
        return True
    return any(m.user_id == user_id and m.role == "admin" for m in members)


class HistoryLoader:
    def __init__(self, repository, cache: SessionCache, limit: int = HISTORY_LIMIT):
        self.repository = repository
        self.cache = cache
        self.limit = limit

    async def load(
        self,
        conversation_id: str,
        user_id: str,
        is_current: Optional[Callable[[], bool]] = None,
    ) -> ConversationHistory:
        """
        Fetch group, recent messages, members and the viewer's hidden markers
        concurrently, then write them to the cache in one put.
        Raises ConversationLoadError on any failure and StaleLoadError when the
        requesting view went away while the fetch was in flight.
        """
        try:
            group, messages, members, hidden = await asyncio.gather(
                self.repository.get_group(conversation_id),
                self.repository.list_recent_messages(conversation_id, self.limit),
                self.repository.list_members(conversation_id),
                self.repository.list_hidden_message_ids(conversation_id, user_id),
            )
        except Exception as e:
            logger.error(f"Error loading conversation {conversation_id}: {str(e)}")
            raise ConversationLoadError(conversation_id) from e

        if group is None:
            logger.error(f"Conversation {conversation_id} not found")
            raise ConversationLoadError(conversation_id)

        if is_current is not None and not is_current():
            logger.debug(f"Discarding late history for {conversation_id}")
            raise StaleLoadError(conversation_id)

        history = ConversationHistory(
            group=group,
            messages=list(messages),
            members=list(members),
            hidden_message_ids=set(hidden),
            is_admin=is_group_admin(group, members, user_id),
        )
        self.cache.put(
            conversation_id,
            group=history.group,
            messages=history.messages,
            members=history.members,
            hidden_message_ids=history.hidden_message_ids,
        )
        return history
