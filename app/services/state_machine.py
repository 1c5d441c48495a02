from dataclasses import dataclass, field
from enum import Enum

from app.services.intent_service import Intent


class ConversationState(str, Enum):
    INITIAL = "initial"
    GREETING = "greeting"
    AWAITING_DATE = "awaiting_date"
    AWAITING_TIME = "awaiting_time"
    SUGGESTING_SLOTS = "suggesting_slots"
    CONFIRMING_APPOINTMENT = "confirming_appointment"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    LISTING_APPOINTMENTS = "listing_appointments"
    SELECTING_APPOINTMENT_TO_MODIFY = "selecting_appointment_to_modify"
    SELECTING_APPOINTMENT_TO_CANCEL = "selecting_appointment_to_cancel"
    CONFIRMING_CANCELLATION = "confirming_cancellation"
    AWAITING_NEW_DATE_TIME = "awaiting_new_date_time"
    CONFIRMING_MODIFICATION = "confirming_modification"
    HANDLING_COMPLAINT = "handling_complaint"
    FAREWELL = "farewell"
    IDLE = "idle"


CONFIRMING_STATES = {
    ConversationState.CONFIRMING_APPOINTMENT,
    ConversationState.CONFIRMING_CANCELLATION,
    ConversationState.CONFIRMING_MODIFICATION,
}

# state -> (next state, action) when the user confirms in that state
CONFIRMATION_TRANSITIONS = {
    ConversationState.CONFIRMING_APPOINTMENT: (ConversationState.APPOINTMENT_CONFIRMED, "create_appointment"),
    ConversationState.CONFIRMING_CANCELLATION: (ConversationState.IDLE, "cancel_appointment"),
    ConversationState.CONFIRMING_MODIFICATION: (ConversationState.IDLE, "modify_appointment"),
}

# Intents that move the dialog from any state.
INTENT_TRANSITIONS = {
    Intent.GREETING: (ConversationState.GREETING, "send_greeting"),
    Intent.FAREWELL: (ConversationState.FAREWELL, "send_farewell"),
    Intent.SCHEDULE: (ConversationState.AWAITING_DATE, "ask_for_date"),
    Intent.RESCHEDULE: (ConversationState.SELECTING_APPOINTMENT_TO_MODIFY, "list_appointments_for_modification"),
    Intent.CANCEL: (ConversationState.SELECTING_APPOINTMENT_TO_CANCEL, "list_appointments_for_cancellation"),
    Intent.LIST: (ConversationState.LISTING_APPOINTMENTS, "list_appointments"),
}


@dataclass
class StateTransition:
    current: ConversationState
    suggested: ConversationState
    actions: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.current != self.suggested


def is_confirming(state: ConversationState) -> bool:
    return state in CONFIRMING_STATES


def suggest_transition(current: ConversationState, intent: Intent | None) -> StateTransition:
    """Next dialog state for a detected intent. Unknown intents keep the current state."""
    result = StateTransition(current=current, suggested=current)

    if intent in INTENT_TRANSITIONS:
        next_state, action = INTENT_TRANSITIONS[intent]
        result.suggested = next_state
        result.actions.append(action)
    elif intent == Intent.CONFIRMATION and current in CONFIRMATION_TRANSITIONS:
        next_state, action = CONFIRMATION_TRANSITIONS[current]
        result.suggested = next_state
        result.actions.append(action)
    elif intent == Intent.REJECTION and current in CONFIRMING_STATES:
        result.suggested = ConversationState.IDLE
        result.actions.append("acknowledge_rejection")
    elif intent == Intent.CONFUSION:
        result.actions.append("handle_confusion")

    return result
