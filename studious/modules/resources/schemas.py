from pydantic import BaseModel, field_validator
from typing import Optional, Literal
from datetime import datetime
from studious.modules.chat.schemas import Profile

ResourceType = Literal["document", "image", "video", "link"]


class LinkResourceCreate(BaseModel):
    title: str
    url: str
    description: Optional[str] = None

    @field_validator("title", "url")
    @classmethod
    def required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Field is required")
        return value


class ResourceResponse(BaseModel):
    id: str
    group_id: str
    uploaded_by: str
    resource_type: ResourceType
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    title: str
    description: Optional[str] = None
    created_at: datetime
    uploader: Optional[Profile] = None

    class Config:
        from_attributes = True
