from fastapi import APIRouter, Depends, UploadFile, File, Form
from studious.config import settings
from studious.database.storage import SupabaseStorage
from studious.database.supabase_client import get_supabase
from studious.modules.resources.schemas import LinkResourceCreate, ResourceResponse
from studious.modules.resources.service import ResourceService
from studious.core.dependencies import get_current_user_id, check_group_member, is_group_admin
from supabase import Client
from typing import List, Dict, Optional

router = APIRouter(prefix="/groups/{group_id}/resources", tags=["resources"])


def get_resource_service(supabase: Client = Depends(get_supabase)) -> ResourceService:
    return ResourceService(supabase, SupabaseStorage(supabase, settings.storage_files_bucket))


@router.get("", response_model=List[ResourceResponse])
async def list_resources(
    group_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: ResourceService = Depends(get_resource_service),
    supabase: Client = Depends(get_supabase)
):
    """List shared resources of a group (members only)"""
    check_group_member(group_id, user_data, supabase)
    return service.list_resources(group_id)


@router.post("", response_model=ResourceResponse, status_code=201)
async def upload_resource(
    group_id: str,
    file: UploadFile = File(...),
    title: str = Form(...),
    description: Optional[str] = Form(None),
    resource_type: Optional[str] = Form(None),
    user_data: Dict = Depends(get_current_user_id),
    service: ResourceService = Depends(get_resource_service),
    supabase: Client = Depends(get_supabase)
):
    """Upload a document, image or video to the group's shared files"""
    check_group_member(group_id, user_data, supabase)
    content = await file.read()
    return service.create_file_resource(
        group_id,
        user_data["id"],
        title=title,
        filename=file.filename or "upload",
        content=content,
        content_type=file.content_type,
        description=description,
        resource_type=resource_type if resource_type in ("document", "image", "video") else None,
    )


@router.post("/link", response_model=ResourceResponse, status_code=201)
async def share_link(
    group_id: str,
    link: LinkResourceCreate,
    user_data: Dict = Depends(get_current_user_id),
    service: ResourceService = Depends(get_resource_service),
    supabase: Client = Depends(get_supabase)
):
    """Share an external link with the group"""
    check_group_member(group_id, user_data, supabase)
    return service.create_link_resource(group_id, user_data["id"], link)


@router.delete("/{resource_id}", status_code=204)
async def delete_resource(
    group_id: str,
    resource_id: str,
    user_data: Dict = Depends(get_current_user_id),
    service: ResourceService = Depends(get_resource_service),
    supabase: Client = Depends(get_supabase)
):
    """Delete a resource (its uploader or a group admin)"""
    check_group_member(group_id, user_data, supabase)
    service.delete_resource(group_id, resource_id, user_data["id"], is_group_admin(group_id, user_data["id"], supabase))
    return None
