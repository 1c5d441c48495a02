from typing import Any

from pydantic import BaseModel, Field

from app.services.state_machine import ConversationState


class StateHistoryEntry(BaseModel):
    state: ConversationState
    timestamp: float


class ChatMessage(BaseModel):
    role: str
    content: str


class ConversationRecord(BaseModel):
    user_id: str
    current_state: ConversationState = ConversationState.INITIAL
    previous_state: ConversationState | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    last_update_time: float
    state_history: list[StateHistoryEntry] = Field(default_factory=list)
    messages: list[ChatMessage] = Field(default_factory=list)
