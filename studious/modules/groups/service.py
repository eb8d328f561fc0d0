from supabase import Client
from studious.config import settings
from studious.core.errors import (
    AlreadyMember, BackendError, GroupNotFound, InvalidInviteCode, MemberNotFound, StudiousError,
    get_error_message,
)
from studious.database.storage import SupabaseStorage
from studious.modules.groups.schemas import (
    GroupCreate, GroupUpdate, GroupResponse, GroupMemberResponse
)
from typing import List, Optional
import logging
import secrets
import string
import time

logger = logging.getLogger(__name__)

INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_CODE_ATTEMPTS = 5
MEMBER_SELECT = "id, group_id, user_id, role, joined_at, user:user_id (id, email, full_name, avatar_url)"


def generate_invite_code(length: Optional[int] = None) -> str:
    length = length or settings.invite_code_length
    return "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(length))


def _is_unique_violation(error: Exception) -> bool:
    return getattr(error, "code", None) == "23505" or "duplicate key" in str(error).lower()


def _backend_error(action: str, error: Exception) -> BackendError:
    logger.error(f"Error {action}: {str(error)}")
    return BackendError(get_error_message(error))


class GroupService:
    def __init__(self, supabase: Client, storage: Optional[SupabaseStorage] = None):
        self.supabase = supabase
        self.storage = storage

    def create_group(self, group_data: GroupCreate, user_id: str) -> GroupResponse:
        """Create a new group with a fresh invite code; the creator joins as admin"""
        try:
            group = None
            for attempt in range(INVITE_CODE_ATTEMPTS):
                try:
                    result = self.supabase.table("groups").insert({
                        "name": group_data.name,
                        "description": group_data.description or None,
                        "created_by": user_id,
                        "invite_code": generate_invite_code()
                    }).execute()
                except Exception as e:
                    if _is_unique_violation(e) and attempt < INVITE_CODE_ATTEMPTS - 1:
                        logger.debug("Invite code collision, retrying")
                        continue
                    raise
                group = result.data[0] if result.data else None
                break

            if not group:
                raise BackendError("Failed to create workspace")

            self.supabase.table("group_members").insert({
                "group_id": group["id"],
                "user_id": user_id,
                "role": "admin"
            }).execute()

            logger.info(f"Group {group['id']} created by {user_id}")
            return GroupResponse(**group)
        except StudiousError:
            raise
        except Exception as e:
            raise _backend_error("creating group", e)

    def get_group_by_id(self, group_id: str) -> GroupResponse:
        """Get group by ID"""
        try:
            result = self.supabase.table("groups")\
                .select("*")\
                .eq("id", group_id)\
                .limit(1)\
                .execute()

            if not result.data:
                raise GroupNotFound()

            return GroupResponse(**result.data[0])
        except StudiousError:
            raise
        except Exception as e:
            raise _backend_error("getting group", e)

    def list_groups(self, user_id: str) -> List[GroupResponse]:
        """List groups the user is a member of, newest first"""
        try:
            members_result = self.supabase.table("group_members")\
                .select("group_id")\
                .eq("user_id", user_id)\
                .execute()
            group_ids = [m["group_id"] for m in members_result.data or []]
            if not group_ids:
                return []

            result = self.supabase.table("groups")\
                .select("*")\
                .in_("id", group_ids)\
                .order("created_at", desc=True)\
                .execute()
            return [GroupResponse(**group) for group in result.data or []]
        except Exception as e:
            raise _backend_error("listing groups", e)

    def update_group(self, group_id: str, group_data: GroupUpdate) -> GroupResponse:
        """Update group"""
        try:
            update_data = {}
            if group_data.name:
                update_data["name"] = group_data.name.strip()
            if group_data.description is not None:
                update_data["description"] = group_data.description
            if not update_data:
                return self.get_group_by_id(group_id)

            result = self.supabase.table("groups")\
                .update(update_data)\
                .eq("id", group_id)\
                .execute()

            if not result.data:
                raise GroupNotFound()

            return GroupResponse(**result.data[0])
        except StudiousError:
            raise
        except Exception as e:
            raise _backend_error("updating group", e)

    def delete_group(self, group_id: str) -> bool:
        """Delete group together with its messages, resources and memberships"""
        try:
            self.supabase.table("messages")\
                .delete()\
                .eq("group_id", group_id)\
                .execute()

            self.supabase.table("shared_resources")\
                .delete()\
                .eq("group_id", group_id)\
                .execute()

            self.supabase.table("group_members")\
                .delete()\
                .eq("group_id", group_id)\
                .execute()

            result = self.supabase.table("groups")\
                .delete()\
                .eq("id", group_id)\
                .execute()

            logger.info(f"Group {group_id} deleted")
            return bool(result.data)
        except Exception as e:
            raise _backend_error("deleting group", e)

    def join_group(self, invite_code: str, user_id: str) -> GroupMemberResponse:
        """Join the group owning `invite_code` as a plain member"""
        code = invite_code.strip().upper()
        try:
            group_result = self.supabase.table("groups")\
                .select("id")\
                .eq("invite_code", code)\
                .limit(1)\
                .execute()
            if not group_result.data:
                raise InvalidInviteCode()
            group_id = group_result.data[0]["id"]

            existing = self.supabase.table("group_members")\
                .select("id")\
                .eq("group_id", group_id)\
                .eq("user_id", user_id)\
                .limit(1)\
                .execute()
            if existing.data:
                raise AlreadyMember()

            try:
                result = self.supabase.table("group_members").insert({
                    "group_id": group_id,
                    "user_id": user_id,
                    "role": "member"
                }).execute()
            except Exception as e:
                if _is_unique_violation(e):
                    raise AlreadyMember()
                raise

            if not result.data:
                raise BackendError("Failed to join workspace")

            logger.info(f"User {user_id} joined group {group_id}")
            return GroupMemberResponse(**result.data[0])
        except StudiousError:
            raise
        except Exception as e:
            raise _backend_error("joining group", e)

    def list_members(self, group_id: str) -> List[GroupMemberResponse]:
        """List all members of a group with their profiles"""
        try:
            result = self.supabase.table("group_members")\
                .select(MEMBER_SELECT)\
                .eq("group_id", group_id)\
                .execute()

            return [GroupMemberResponse(**member) for member in result.data or []]
        except Exception as e:
            raise _backend_error("listing members", e)

    def toggle_member_role(self, group_id: str, member_id: str) -> GroupMemberResponse:
        """Flip a membership between admin and member"""
        try:
            current = self.supabase.table("group_members")\
                .select("role")\
                .eq("id", member_id)\
                .eq("group_id", group_id)\
                .limit(1)\
                .execute()
            if not current.data:
                raise MemberNotFound()

            new_role = "member" if current.data[0]["role"] == "admin" else "admin"
            result = self.supabase.table("group_members")\
                .update({"role": new_role})\
                .eq("id", member_id)\
                .eq("group_id", group_id)\
                .execute()
            if not result.data:
                raise BackendError("Failed to update role")

            return GroupMemberResponse(**result.data[0])
        except StudiousError:
            raise
        except Exception as e:
            raise _backend_error("toggling member role", e)

    def remove_member(self, group_id: str, user_id: str) -> bool:
        """Remove a member from the group"""
        try:
            result = self.supabase.table("group_members")\
                .delete()\
                .eq("group_id", group_id)\
                .eq("user_id", user_id)\
                .execute()

            return bool(result.data)
        except Exception as e:
            raise _backend_error("removing member", e)

    def update_avatar(self, group_id: str, filename: str, content: bytes,
                      content_type: Optional[str] = None) -> GroupResponse:
        """Upload a new avatar and store its cache-busted public URL on the group"""
        if self.storage is None:
            raise BackendError("Avatar storage is not configured")
        extension = filename.rsplit(".", 1)[-1] if "." in filename else "png"
        stamp = int(time.time() * 1000)
        path = f"{group_id}_{stamp}.{extension}"
        try:
            self.storage.upload(path, content, content_type=content_type, upsert=True)
            avatar_url = f"{self.storage.get_public_url(path)}?t={stamp}"

            result = self.supabase.table("groups")\
                .update({"avatar_url": avatar_url})\
                .eq("id", group_id)\
                .execute()
            if not result.data:
                raise GroupNotFound()

            return GroupResponse(**result.data[0])
        except StudiousError:
            raise
        except Exception as e:
            raise _backend_error("updating avatar", e)
