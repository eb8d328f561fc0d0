"""
Per-viewer visibility of messages.

Two independent deletion semantics: a personal marker hides a message for
one viewer only, while deleting for everyone clears the content of the
canonical row and leaves a placeholder in place. Hiding wins when both
apply.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, NamedTuple, Optional, Set, Union

from studious.core.errors import DeletionNotPermitted
from studious.modules.chat.schemas import Message, MessageResponse

logger = logging.getLogger(__name__)

DELETED_PLACEHOLDER = "This message was deleted"


class HiddenMarker(NamedTuple):
    message_id: str
    user_id: str


Marker = Union[str, HiddenMarker]


def hidden_ids_for(viewer_id: str, markers: Iterable[Marker]) -> Set[str]:
    """Plain ids are taken as already scoped to the viewer."""
    hidden = set()
    for marker in markers:
        if isinstance(marker, HiddenMarker):
            if marker.user_id == viewer_id:
                hidden.add(marker.message_id)
        else:
            hidden.add(marker)
    return hidden


def visible(messages: Iterable[Message], viewer_id: str, markers: Iterable[Marker] = ()) -> List[Message]:
    hidden = hidden_ids_for(viewer_id, markers)
    seen = set()
    result = []
    for message in messages:
        if message.id in seen or message.id in hidden:
            continue
        seen.add(message.id)
        result.append(message)
    return result


def render_content(message: Message) -> Optional[str]:
    if message.is_deleted:
        return DELETED_PLACEHOLDER
    return message.content


def to_response(message: Message) -> MessageResponse:
    return MessageResponse(
        **message.model_dump(exclude={"sender"}),
        sender=message.sender,
        is_deleted=message.is_deleted,
        display_content=render_content(message),
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageDeletionService:
    def __init__(self, repository, clock: Callable[[], datetime] = _utcnow):
        self.repository = repository
        self._clock = clock

    async def hide_for_me(self, message_id: str, viewer_id: str, hidden_ids: Optional[Set[str]] = None) -> Set[str]:
        """Persist a personal marker; returns the viewer's hidden ids including this one."""
        hidden = hidden_ids if hidden_ids is not None else set()
        if message_id in hidden:
            return hidden
        await self.repository.hide_message(message_id, viewer_id)
        hidden.add(message_id)
        return hidden

    async def delete_for_everyone(self, message: Message, requester_id: str) -> Message:
        if requester_id != message.sender_id:
            raise DeletionNotPermitted()
        if message.is_deleted:
            return message

        deleted_at = self._clock()
        row = await self.repository.soft_delete_message(message.id, requester_id, deleted_at)
        if not row:
            # No live row matched; it may already be deleted by another session
            current = await self.repository.get_message(message.id)
            if current is None or not current.is_deleted or current.sender_id != requester_id:
                raise DeletionNotPermitted()
            message.mark_deleted(current.deleted_at)
            return message
        message.mark_deleted(deleted_at)
        logger.info(f"Message {message.id} deleted for everyone by {requester_id}")
        return message
