from app.schemas.admin import PauseStatusResponse, SessionSnapshotResponse
from app.schemas.reminder import PendingRemindersResponse, ReminderCheckResponse
from app.schemas.webhook import PresenceRequest, WebhookRequest, WebhookResponse

__all__ = [
    "PauseStatusResponse",
    "PendingRemindersResponse",
    "PresenceRequest",
    "ReminderCheckResponse",
    "SessionSnapshotResponse",
    "WebhookRequest",
    "WebhookResponse",
]
