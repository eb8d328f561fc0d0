"""Supabase Realtime change feed, normalized to FeedEvent objects."""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional

from supabase import AsyncClient

logger = logging.getLogger(__name__)

SUBSCRIBED = "SUBSCRIBED"
FAILURE_STATES = frozenset({"CHANNEL_ERROR", "TIMED_OUT", "CLOSED"})

StatusCallback = Callable[[str, Optional[Exception]], None]


@dataclass
class FeedEvent:
    type: str  # insert | update
    table: str
    new_row: Dict[str, Any] = field(default_factory=dict)


def feed_event_from_payload(payload: Dict[str, Any]) -> Optional[FeedEvent]:
    """Accepts both the wrapped ({"data": {...}}) and the flat postgres_changes payloads."""
    data = payload.get("data", payload) if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return None
    event_type = data.get("type") or data.get("eventType")
    row = data.get("record") or data.get("new")
    if not event_type or not isinstance(row, dict):
        return None
    return FeedEvent(type=str(event_type).lower(), table=data.get("table", ""), new_row=row)


def _state_name(state: Any) -> str:
    return str(getattr(state, "value", state)).upper()


class SupabaseChangeFeed:
    def __init__(self, supabase: AsyncClient, schema: str = "public"):
        self.supabase = supabase
        self.schema = schema

    async def subscribe(
        self,
        topic: str,
        table: str,
        filter: str,
        handler: Callable[[FeedEvent], None],
        on_status: Optional[StatusCallback] = None,
        event_types: Iterable[str] = ("INSERT", "UPDATE"),
    ):
        """Open a channel for row changes on `table` matching `filter`; returns the channel handle."""
        channel = self.supabase.channel(topic)

        def dispatch(payload):
            event = feed_event_from_payload(payload)
            if event is None:
                logger.warning(f"Ignoring unrecognized change payload on {topic}")
                return
            handler(event)

        def status_changed(state, error=None):
            name = _state_name(state)
            logger.debug(f"Channel {topic} status: {name}")
            if on_status is not None:
                on_status(name, error)

        for event_type in event_types:
            channel.on_postgres_changes(
                event_type,
                callback=dispatch,
                table=table,
                schema=self.schema,
                filter=filter,
            )
        await channel.subscribe(status_changed)
        return channel

    async def unsubscribe(self, handle) -> None:
        await self.supabase.remove_channel(handle)
