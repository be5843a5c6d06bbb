"""Pydantic models for API I/O and conversation history."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .receipt_models import Receipt


class ConversationTurn(BaseModel):
    """One message in the conversation. Turns are never edited after they are appended."""

    model_config = ConfigDict(frozen=True)

    sender: str
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)
    is_system_generated: bool = False
    show_in_clean_mode: bool = True


class SessionCreateRequest(BaseModel):
    session_id: Optional[str] = None


class SessionCreateResponse(BaseModel):
    session_id: str
    created: bool
    greeting: str


class ChatRequest(BaseModel):
    session_id: str
    message: str = Field(min_length=1)


class ChatResponse(BaseModel):
    session_id: str
    response: str
    payment_state: str
    receipt: Receipt


class HistoryResponse(BaseModel):
    session_id: str
    turns: List[ConversationTurn] = Field(default_factory=list)
