from app.models.calendar_event import CalendarEvent, EventDetails
from app.models.conversation import ChatMessage, ConversationRecord, StateHistoryEntry
from app.models.intervention import InterventionPause
from app.models.message import InboundMessage
from app.models.pending_response import (
    ConfirmationType,
    PendingResponse,
    StagedAction,
    StagedCancel,
    StagedCreate,
    StagedModify,
)
from app.models.reminder import PendingReminderConfirmation, SentReminder

__all__ = [
    "CalendarEvent",
    "ChatMessage",
    "ConfirmationType",
    "ConversationRecord",
    "EventDetails",
    "InboundMessage",
    "InterventionPause",
    "PendingReminderConfirmation",
    "PendingResponse",
    "SentReminder",
    "StagedAction",
    "StagedCancel",
    "StagedCreate",
    "StagedModify",
    "StateHistoryEntry",
]
