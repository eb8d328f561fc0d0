from supabase import AsyncClient
from studious.modules.chat.schemas import Group, Member, Message, Profile
from datetime import datetime
from typing import Any, Dict, List, Optional, Set
import logging

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "id, email, full_name, avatar_url"
MESSAGE_SELECT = f"*, sender:sender_id ({PROFILE_COLUMNS})"
MEMBER_SELECT = f"id, group_id, user_id, role, joined_at, user:user_id ({PROFILE_COLUMNS})"


def _rows(result) -> List[Dict[str, Any]]:
    if result is None or not result.data:
        return []
    return result.data if isinstance(result.data, list) else [result.data]


def _first(result) -> Optional[Dict[str, Any]]:
    rows = _rows(result)
    return rows[0] if rows else None


class ChatRepository:
    """PostgREST queries the chat engine needs, over the async Supabase client."""

    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase

    async def get_group(self, group_id: str) -> Optional[Group]:
        result = await self.supabase.table("groups")\
            .select("*")\
            .eq("id", group_id)\
            .maybe_single()\
            .execute()
        row = _first(result)
        return Group(**row) if row else None

    async def list_recent_messages(self, group_id: str, limit: int) -> List[Message]:
        """Most recent `limit` live messages, oldest first."""
        result = await self.supabase.table("messages")\
            .select(MESSAGE_SELECT)\
            .eq("group_id", group_id)\
            .is_("deleted_at", "null")\
            .order("created_at", desc=True)\
            .limit(limit)\
            .execute()
        messages = [Message(**row) for row in _rows(result)]
        messages.reverse()
        return messages

    async def list_members(self, group_id: str) -> List[Member]:
        result = await self.supabase.table("group_members")\
            .select(MEMBER_SELECT)\
            .eq("group_id", group_id)\
            .execute()
        return [Member(**row) for row in _rows(result)]

    async def get_membership(self, group_id: str, user_id: str) -> Optional[Member]:
        result = await self.supabase.table("group_members")\
            .select("id, group_id, user_id, role, joined_at")\
            .eq("group_id", group_id)\
            .eq("user_id", user_id)\
            .maybe_single()\
            .execute()
        row = _first(result)
        return Member(**row) if row else None

    async def list_hidden_message_ids(self, group_id: str, user_id: str) -> Set[str]:
        result = await self.supabase.table("user_deleted_messages")\
            .select("message_id, messages!inner(group_id)")\
            .eq("user_id", user_id)\
            .eq("messages.group_id", group_id)\
            .execute()
        return {row["message_id"] for row in _rows(result)}

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        result = await self.supabase.table("profiles")\
            .select(PROFILE_COLUMNS)\
            .eq("id", user_id)\
            .maybe_single()\
            .execute()
        row = _first(result)
        return Profile(**row) if row else None

    async def get_message(self, message_id: str) -> Optional[Message]:
        result = await self.supabase.table("messages")\
            .select(MESSAGE_SELECT)\
            .eq("id", message_id)\
            .maybe_single()\
            .execute()
        row = _first(result)
        return Message(**row) if row else None

    async def insert_message(self, row: Dict[str, Any]) -> Message:
        result = await self.supabase.table("messages").insert(row).execute()
        created = _first(result)
        if not created:
            raise RuntimeError("Failed to send message")
        return Message(**created)

    async def hide_message(self, message_id: str, user_id: str) -> None:
        await self.supabase.table("user_deleted_messages")\
            .upsert(
                {"message_id": message_id, "user_id": user_id},
                on_conflict="message_id,user_id",
                ignore_duplicates=True,
            )\
            .execute()

    async def soft_delete_message(self, message_id: str, sender_id: str, deleted_at: datetime) -> Optional[Dict[str, Any]]:
        """Returns the updated row, or None when no live row matched id and sender."""
        result = await self.supabase.table("messages")\
            .update({"content": None, "deleted_at": deleted_at.isoformat()})\
            .eq("id", message_id)\
            .eq("sender_id", sender_id)\
            .is_("deleted_at", "null")\
            .execute()
        return _first(result)
