from pydantic import BaseModel, Field


class InterventionPause(BaseModel):
    is_paused: bool = False
    paused_until: float = 0.0
    pause_level: int = Field(default=0, ge=0, le=3)

    def is_active(self, now: float) -> bool:
        return self.is_paused and now < self.paused_until

    def remaining_minutes(self, now: float) -> float:
        return max(0.0, (self.paused_until - now) / 60)
