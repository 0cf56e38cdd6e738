"""API request/response schemas."""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class ChatMessage(BaseModel):
    message: str = Field(max_length=4000)
    session_id: str


class ChatResponse(BaseModel):
    success: bool
    message: str
    metadata: Dict[str, Any] = {}
    retry_after: Optional[int] = None


class SessionResponse(BaseModel):
    session_id: str
    expires_in: int


class ConversationMessage(BaseModel):
    id: int
    sender: str
    content: Any
    created_at: Optional[str] = None


class Conversation(BaseModel):
    session_id: str
    started_at: Optional[str] = None
    messages: List[ConversationMessage]


class HistoryResponse(BaseModel):
    conversations: List[Conversation]
    limit: int
    offset: int
