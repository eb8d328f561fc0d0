from fastapi import APIRouter, Depends, UploadFile, File
from studious.config import settings
from studious.database.storage import SupabaseStorage
from studious.database.supabase_client import get_service_supabase, get_supabase
from studious.modules.groups.schemas import (
    GroupCreate, GroupUpdate, GroupJoin, GroupResponse, GroupMemberResponse
)
from studious.modules.groups.service import GroupService
from studious.core.dependencies import get_current_user_id, check_group_admin, check_group_member
from supabase import Client
from typing import List, Dict

router = APIRouter(prefix="/groups", tags=["groups"])


def get_group_service(supabase: Client = Depends(get_supabase)) -> GroupService:
    return GroupService(supabase, SupabaseStorage(supabase, settings.storage_avatars_bucket))


def get_admin_group_service(supabase: Client = Depends(get_service_supabase)) -> GroupService:
    """Service-role client so the cascade is not blocked by row-level security"""
    return GroupService(supabase)


@router.post("", response_model=GroupResponse, status_code=201)
async def create_group(
    group_data: GroupCreate,
    user_data: Dict = Depends(get_current_user_id),
    service: GroupService = Depends(get_group_service)
):
    """Create a new group; the creator becomes its admin"""
    return service.create_group(group_data, user_data["id"])


@router.get("", response_model=List[GroupResponse])
async def list_groups(
    user_data: Dict = Depends(get_current_user_id),
    service: GroupService = Depends(get_group_service)
):
    """List groups the user is a member of"""
    return service.list_groups(user_data["id"])


@router.post("/join", response_model=GroupMemberResponse, status_code=201)
async def join_group(
    join_data: GroupJoin,
    user_data: Dict = Depends(get_current_user_id),
    service: GroupService = Depends(get_group_service)
):
    """Join a group by invite code (case-insensitive)"""
    return service.join_group(join_data.invite_code, user_data["id"])


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(
    group_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: GroupService = Depends(get_group_service),
    supabase: Client = Depends(get_supabase)
):
    """Get group by ID (only if user is a member)"""
    check_group_member(group_id, user_data, supabase)
    return service.get_group_by_id(group_id)


@router.put("/{group_id}", response_model=GroupResponse)
async def update_group(
    group_id: str,
    group_data: GroupUpdate,
    current_user: Dict = Depends(get_current_user_id),
    service: GroupService = Depends(get_group_service),
    supabase: Client = Depends(get_supabase)
):
    """Update group name/description (group admin)"""
    check_group_admin(group_id, current_user, supabase)
    return service.update_group(group_id, group_data)


@router.delete("/{group_id}", status_code=204)
async def delete_group(
    group_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: GroupService = Depends(get_admin_group_service),
    supabase: Client = Depends(get_supabase)
):
    """Delete group with its messages, resources and memberships (group admin)"""
    check_group_admin(group_id, current_user, supabase)
    service.delete_group(group_id)
    return None


@router.post("/{group_id}/avatar", response_model=GroupResponse)
async def upload_group_avatar(
    group_id: str,
    file: UploadFile = File(...),
    current_user: Dict = Depends(get_current_user_id),
    service: GroupService = Depends(get_group_service),
    supabase: Client = Depends(get_supabase)
):
    """Replace the group avatar (group admin)"""
    check_group_admin(group_id, current_user, supabase)
    content = await file.read()
    return service.update_avatar(group_id, file.filename or "avatar.png", content, file.content_type)


@router.get("/{group_id}/members", response_model=List[GroupMemberResponse])
async def list_members(
    group_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: GroupService = Depends(get_group_service),
    supabase: Client = Depends(get_supabase)
):
    """List all members of a group (only if user is a member)"""
    check_group_member(group_id, user_data, supabase)
    return service.list_members(group_id)


@router.put("/{group_id}/members/{member_id}/role", response_model=GroupMemberResponse)
async def toggle_member_role(
    group_id: str,
    member_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: GroupService = Depends(get_group_service),
    supabase: Client = Depends(get_supabase)
):
    """Toggle a member between admin and member (group admin)"""
    check_group_admin(group_id, current_user, supabase)
    return service.toggle_member_role(group_id, member_id)


@router.delete("/{group_id}/members/{user_id}", status_code=204)
async def remove_member(
    group_id: str,
    user_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: GroupService = Depends(get_group_service),
    supabase: Client = Depends(get_supabase)
):
    """Remove a member (group admin), or leave the group yourself"""
    if user_id != current_user["id"]:
        check_group_admin(group_id, current_user, supabase)
    service.remove_member(group_id, user_id)
    return None
