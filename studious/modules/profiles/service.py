from supabase import Client
from studious.core.errors import BackendError, ProfileNotFound, StudiousError, get_error_message
from studious.modules.profiles.schemas import ProfileResponse, ProfileUpdate
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "id, email, full_name, avatar_url, created_at, updated_at"


class ProfileService:
    def __init__(self, supabase: Client):
        self.supabase = supabase

    def get_profile(self, user_id: str) -> ProfileResponse:
        try:
            result = self.supabase.table("profiles")\
                .select(PROFILE_COLUMNS)\
                .eq("id", user_id)\
                .execute()
            if not result.data:
                raise ProfileNotFound()
            return ProfileResponse(**result.data[0])
        except StudiousError:
            raise
        except Exception as e:
            logger.error(f"Error fetching profile {user_id}: {str(e)}")
            raise BackendError(get_error_message(e))

    def update_profile(self, user_id: str, profile_data: ProfileUpdate) -> ProfileResponse:
        """Set display name and avatar; both are written, so a missing avatar clears it"""
        try:
            result = self.supabase.table("profiles")\
                .update({
                    "full_name": profile_data.full_name,
                    "avatar_url": profile_data.avatar_url,
                    "updated_at": datetime.now(timezone.utc).isoformat(),
                })\
                .eq("id", user_id)\
                .execute()
            if not result.data:
                raise ProfileNotFound()
            logger.info(f"Profile {user_id} updated")
            return ProfileResponse(**result.data[0])
        except StudiousError:
            raise
        except Exception as e:
            logger.error(f"Error updating profile {user_id}: {str(e)}")
            raise BackendError(get_error_message(e))
