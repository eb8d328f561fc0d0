from pydantic import BaseModel, field_validator
from typing import Optional, Literal
from datetime import datetime
from studious.modules.chat.schemas import Profile


class GroupCreate(BaseModel):
    name: str
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Workspace name is required")
        return value


class GroupUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class GroupJoin(BaseModel):
    invite_code: str

    @field_validator("invite_code")
    @classmethod
    def normalize_invite_code(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("Invite code is required")
        return value


class GroupResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    avatar_url: Optional[str] = None
    created_by: str
    invite_code: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("invite_code")
    @classmethod
    def normalize_invite_code(cls, value: str) -> str:
        return value.upper()


class GroupMemberResponse(BaseModel):
    id: str
    group_id: str
    user_id: str
    role: Literal["admin", "member"]
    joined_at: Optional[datetime] = None
    user: Optional[Profile] = None

    class Config:
        from_attributes = True
