from supabase import Client
from studious.core.errors import (
    BackendError, NotGroupAdmin, ResourceNotFound, StudiousError, get_error_message,
)
from studious.database.storage import SupabaseStorage, storage_path_from_public_url
from studious.modules.resources.schemas import LinkResourceCreate, ResourceResponse
from typing import List, Optional
import logging
import time

logger = logging.getLogger(__name__)

RESOURCE_SELECT = "*, uploader:uploaded_by (id, email, full_name, avatar_url)"


def guess_resource_type(content_type: Optional[str]) -> str:
    if content_type:
        if content_type.startswith("image/"):
            return "image"
        if content_type.startswith("video/"):
            return "video"
    return "document"


class ResourceService:
    def __init__(self, supabase: Client, storage: SupabaseStorage):
        self.supabase = supabase
        self.storage = storage

    def list_resources(self, group_id: str) -> List[ResourceResponse]:
        """List shared resources of a group, newest first"""
        try:
            result = self.supabase.table("shared_resources")\
                .select(RESOURCE_SELECT)\
                .eq("group_id", group_id)\
                .order("created_at", desc=True)\
                .execute()
            return [ResourceResponse(**row) for row in result.data or []]
        except Exception as e:
            logger.error(f"Error listing resources for {group_id}: {str(e)}")
            raise BackendError(get_error_message(e))

    def upload_file(self, group_id: str, filename: str, content: bytes,
                    content_type: Optional[str] = None) -> str:
        """Store bytes under the group's folder and return their public URL"""
        extension = filename.rsplit(".", 1)[-1] if "." in filename else "bin"
        path = f"{group_id}/{int(time.time() * 1000)}.{extension}"
        try:
            self.storage.upload(path, content, content_type=content_type)
        except Exception as e:
            raise BackendError(get_error_message(e))
        return self.storage.get_public_url(path)

    def create_file_resource(
        self,
        group_id: str,
        user_id: str,
        title: str,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
        description: Optional[str] = None,
        resource_type: Optional[str] = None,
    ) -> ResourceResponse:
        """Upload a file and record it as a shared resource"""
        file_url = self.upload_file(group_id, filename, content, content_type)
        return self._insert({
            "group_id": group_id,
            "uploaded_by": user_id,
            "resource_type": resource_type or guess_resource_type(content_type),
            "file_url": file_url,
            "file_name": filename,
            "file_size": len(content),
            "title": title,
            "description": description or None,
        })

    def create_link_resource(self, group_id: str, user_id: str, link: LinkResourceCreate) -> ResourceResponse:
        """Record an external link as a shared resource"""
        return self._insert({
            "group_id": group_id,
            "uploaded_by": user_id,
            "resource_type": "link",
            "file_url": link.url,
            "title": link.title,
            "description": link.description or None,
        })

    def delete_resource(self, group_id: str, resource_id: str, user_id: str, is_admin: bool = False) -> bool:
        """Delete a resource; only its uploader or a group admin may do so"""
        try:
            result = self.supabase.table("shared_resources")\
                .select("*")\
                .eq("id", resource_id)\
                .eq("group_id", group_id)\
                .limit(1)\
                .execute()
            if not result.data:
                raise ResourceNotFound()
            resource = result.data[0]
            if resource["uploaded_by"] != user_id and not is_admin:
                raise NotGroupAdmin("Only the uploader or a group admin can delete this resource")

            self.supabase.table("shared_resources")\
                .delete()\
                .eq("id", resource_id)\
                .execute()

            if resource.get("resource_type") != "link":
                path = storage_path_from_public_url(resource.get("file_url") or "", self.storage.bucket_name)
                if path:
                    self.storage.delete(path)
            return True
        except StudiousError:
            raise
        except Exception as e:
            logger.error(f"Error deleting resource {resource_id}: {str(e)}")
            raise BackendError(get_error_message(e))

    def _insert(self, row: dict) -> ResourceResponse:
        try:
            result = self.supabase.table("shared_resources").insert(row).execute()
            if not result.data:
                raise BackendError("Failed to share resource")
            return ResourceResponse(**result.data[0])
        except StudiousError:
            raise
        except Exception as e:
            logger.error(f"Error creating resource: {str(e)}")
            raise BackendError(get_error_message(e))
