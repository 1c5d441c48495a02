import time

from fastapi import APIRouter, Depends

from app.logging_config import get_logger
from app.schemas.reminder import (
    PendingReminderItem,
    PendingRemindersResponse,
    ReminderCheckResponse,
    SentReminderItem,
)
from app.services.calendar_service import CalendarProviderError
from app.services.message_service import ConversationOrchestrator, get_orchestrator

logger = get_logger("reminders")

router = APIRouter()


@router.get("/reminders/pending", response_model=PendingRemindersResponse)
async def get_pending_reminders(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    """Presence confirmations still waiting for the client's answer."""
    now = time.time()
    pending = await orchestrator.reminders.list_pending()
    reminders = [
        PendingReminderItem(**item.model_dump(), hours_waiting=round((now - item.sent_at) / 3600, 1))
        for item in pending
    ]
    return PendingRemindersResponse(count=len(reminders), reminders=reminders)


@router.post("/reminders/check", response_model=ReminderCheckResponse)
async def check_reminders(orchestrator: ConversationOrchestrator = Depends(get_orchestrator)):
    """Run one reminder pass now instead of waiting for the worker."""
    try:
        result = await orchestrator.reminders.check_and_send()
    except CalendarProviderError as e:
        logger.error(f"Reminder check failed: {e}")
        return ReminderCheckResponse(success=False, sent=0, items=[])
    return ReminderCheckResponse(
        success=True,
        sent=result["sent"],
        items=[SentReminderItem(**item) for item in result["items"]],
    )
