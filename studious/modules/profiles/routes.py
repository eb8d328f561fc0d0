from fastapi import APIRouter, Depends
from studious.database.supabase_client import get_supabase
from studious.modules.profiles.schemas import ProfileResponse, ProfileUpdate
from studious.modules.profiles.service import ProfileService
from studious.core.dependencies import get_current_user_id
from supabase import Client
from typing import Dict

router = APIRouter(prefix="/profile", tags=["profile"])


def get_profile_service(supabase: Client = Depends(get_supabase)) -> ProfileService:
    return ProfileService(supabase)


@router.get("/me", response_model=ProfileResponse)
async def get_my_profile(
    user_data: Dict = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service)
):
    """Get the signed-in user's profile"""
    return service.get_profile(user_data["id"])


@router.put("/me", response_model=ProfileResponse)
async def update_my_profile(
    profile_data: ProfileUpdate,
    user_data: Dict = Depends(get_current_user_id),
    service: ProfileService = Depends(get_profile_service)
):
    """Update display name and avatar URL"""
    return service.update_profile(user_data["id"], profile_data)
