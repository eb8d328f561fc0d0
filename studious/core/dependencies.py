"""
Core dependencies for route protection and membership checks
"""

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from studious.core.errors import NotGroupAdmin, NotGroupMember
from studious.database.supabase_client import get_supabase
from studious.modules.auth.service import AuthService
from studious.modules.chat.engine import ChatEngine, ViewerSession
from supabase import Client
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(security),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Extract current user info from JWT token"""
    token = credentials.credentials
    user_data = auth_service.get_current_user(token)
    return user_data


def get_chat_engine(request: Request) -> ChatEngine:
    engine: Optional[ChatEngine] = getattr(request.app.state, "chat_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Chat engine is not ready"
        )
    return engine


async def get_viewer_session(
    user_data: dict = Depends(get_current_user_id),
    engine: ChatEngine = Depends(get_chat_engine)
) -> ViewerSession:
    return await engine.viewer(user_data["id"])


def get_membership(group_id: str, user_id: str, supabase: Client) -> Optional[Dict[str, Any]]:
    try:
        result = supabase.table("group_members")\
            .select("id, role")\
            .eq("group_id", group_id)\
            .eq("user_id", user_id)\
            .limit(1)\
            .execute()
    except Exception as e:
        logger.error(f"Error checking membership of {user_id} in {group_id}: {e}")
        return None
    return result.data[0] if result.data else None


def is_group_creator(group_id: str, user_id: str, supabase: Client) -> bool:
    result = supabase.table("groups")\
        .select("created_by")\
        .eq("id", group_id)\
        .limit(1)\
        .execute()
    return bool(result.data) and result.data[0].get("created_by") == user_id


def check_group_member(group_id: str, user_data: dict, supabase: Client) -> dict:
    """Check if user is a member of a group"""
    if get_membership(group_id, user_data["id"], supabase) is None:
        raise NotGroupMember()
    return user_data


def is_group_admin(group_id: str, user_id: str, supabase: Client) -> bool:
    """Admins by role; the creator always counts as admin"""
    if is_group_creator(group_id, user_id, supabase):
        return True
    membership = get_membership(group_id, user_id, supabase)
    return bool(membership) and membership.get("role") == "admin"


def check_group_admin(group_id: str, user_data: dict, supabase: Client) -> dict:
    """Check if user is an admin of the group"""
    if not is_group_admin(group_id, user_data["id"], supabase):
        raise NotGroupAdmin()
    return user_data
