from typing import Any, Optional

from pydantic import BaseModel


class PauseStatusResponse(BaseModel):
    is_paused: bool
    pause_level: int
    paused_until: Optional[float] = None
    remaining_minutes: float = 0.0


class SessionSnapshotResponse(BaseModel):
    user_id: str
    conversation: Optional[dict[str, Any]] = None
    pending_response: Optional[dict[str, Any]] = None
    queued_messages: int = 0
    violations: list[str]
