from datetime import datetime

from pydantic import BaseModel


class CalendarEvent(BaseModel):
    id: str
    summary: str = "Agendamento"
    start: datetime
    end: datetime
    user_id: str | None = None
    description: str | None = None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open interval test."""
        return start < self.end and end > self.start


class EventDetails(BaseModel):
    summary: str
    description: str = ""
    start: datetime
    end: datetime
    time_zone: str
    user_id: str
