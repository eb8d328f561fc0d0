from fastapi import APIRouter, Depends
from studious.config import settings
from studious.modules.ai.schemas import AssistantRequest, AssistantResponse
from studious.modules.ai.service import AssistantService, get_genai_client
from studious.core.dependencies import get_current_user_id
from typing import Dict

router = APIRouter(prefix="/ai", tags=["ai"])


def get_assistant_service() -> AssistantService:
    # Attached PDFs must come from this project's public storage
    prefix = f"{settings.supabase_url.rstrip('/')}/storage/v1/object/public/" if settings.supabase_url else None
    return AssistantService(get_genai_client(), allowed_url_prefix=prefix)


@router.post("/chat", response_model=AssistantResponse)
async def chat_with_assistant(
    request: AssistantRequest,
    user_data: Dict = Depends(get_current_user_id),
    service: AssistantService = Depends(get_assistant_service)
):
    """Ask the study assistant, optionally about a document"""
    return AssistantResponse(response=await service.ask(request))
