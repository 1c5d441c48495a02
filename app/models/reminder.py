from pydantic import BaseModel


class PendingReminderConfirmation(BaseModel):
    user_id: str
    event_id: str
    sent_at: float
    event_date: str
    event_time: str


class SentReminder(BaseModel):
    event_id: str
    hours: int
    event_start: float
