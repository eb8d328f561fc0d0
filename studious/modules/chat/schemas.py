from pydantic import BaseModel, field_validator, model_validator
from typing import Optional, List, Literal
from datetime import datetime


class Profile(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def display_name(self) -> str:
        if self.full_name:
            return self.full_name
        if self.email:
            return self.email.split("@")[0]
        return "Someone"


class Group(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    avatar_url: Optional[str] = None
    created_by: str
    invite_code: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("invite_code")
    @classmethod
    def normalize_invite_code(cls, value: str) -> str:
        return value.strip().upper()


class Member(BaseModel):
    id: Optional[str] = None
    group_id: str
    user_id: str
    role: Literal["admin", "member"] = "member"
    joined_at: Optional[datetime] = None
    user: Optional[Profile] = None

    class Config:
        from_attributes = True


class Message(BaseModel):
    id: str
    group_id: str
    sender_id: str
    content: Optional[str] = None
    message_type: Literal["text", "file", "link"] = "text"
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    created_at: datetime
    deleted_at: Optional[datetime] = None
    sender: Optional[Profile] = None

    class Config:
        from_attributes = True

    @model_validator(mode="after")
    def clear_deleted_content(self):
        # A message deleted for everyone never carries content
        if self.deleted_at is not None:
            self.content = None
        return self

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def mark_deleted(self, deleted_at: datetime) -> None:
        self.content = None
        self.deleted_at = deleted_at


class MessageCreate(BaseModel):
    content: Optional[str] = None
    message_type: Literal["text", "link"] = "text"

    @field_validator("content")
    @classmethod
    def strip_content(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("Message content cannot be empty")
        return value


class MessageResponse(BaseModel):
    id: str
    group_id: str
    sender_id: str
    content: Optional[str] = None
    message_type: str
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    created_at: datetime
    deleted_at: Optional[datetime] = None
    is_deleted: bool = False
    display_content: Optional[str] = None
    sender: Optional[Profile] = None


class ConversationResponse(BaseModel):
    group: Group
    members: List[Member]
    messages: List[MessageResponse]
    is_admin: bool
    unread_count: int = 0
