from pydantic import BaseModel


class PendingReminderItem(BaseModel):
    user_id: str
    event_id: str
    sent_at: float
    event_date: str
    event_time: str
    hours_waiting: float


class PendingRemindersResponse(BaseModel):
    count: int
    reminders: list[PendingReminderItem]


class SentReminderItem(BaseModel):
    event_id: str
    user_id: str
    hours: int


class ReminderCheckResponse(BaseModel):
    success: bool
    sent: int
    items: list[SentReminderItem]
