from pydantic import BaseModel, field_validator
from typing import List, Literal, Optional


class DocumentContext(BaseModel):
    title: str
    type: str = "document"
    description: Optional[str] = None


class ChatTurn(BaseModel):
    role: Literal["user", "assistant", "model"]
    content: str


class AssistantRequest(BaseModel):
    message: str
    document_context: Optional[DocumentContext] = None
    conversation_history: List[ChatTurn] = []
    file_url: Optional[str] = None

    @field_validator("message")
    @classmethod
    def message_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Message is required")
        return value


class AssistantResponse(BaseModel):
    response: str
