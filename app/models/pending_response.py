from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class ConfirmationType(str, Enum):
    NONE = "none"
    SCHEDULE_CREATE = "schedule_create"
    SCHEDULE_MODIFY = "schedule_modify"
    SCHEDULE_CANCEL = "schedule_cancel"


class StagedCreate(BaseModel):
    kind: Literal["create"] = "create"
    summary: str
    description: str
    start: datetime
    end: datetime
    time_zone: str
    user_id: str
    extracted_date: str
    extracted_time: str


class StagedModify(BaseModel):
    kind: Literal["modify"] = "modify"
    event_id: str
    start: datetime
    end: datetime
    old_date: str
    old_time: str
    new_date: str
    new_time: str


class StagedCancel(BaseModel):
    kind: Literal["cancel"] = "cancel"
    event_id: str
    cancel_date: str
    cancel_time: str


StagedAction = Annotated[Union[StagedCreate, StagedModify, StagedCancel], Field(discriminator="kind")]


class PendingResponse(BaseModel):
    user_id: str
    full_response: str = ""
    sent_parts: list[str] = Field(default_factory=list)
    remaining_parts: list[str] = Field(default_factory=list)
    current_part_index: int = 0
    is_paused: bool = False
    is_waiting_for_confirmation: bool = False
    confirmation_type: ConfirmationType = ConfirmationType.NONE
    event_details: StagedAction | None = None
    last_interaction: float
