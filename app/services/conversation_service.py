import time
from typing import Any

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.models import ChatMessage, ConversationRecord, StateHistoryEntry
from app.services.session_store import ModelRepository, SessionStore
from app.services.state_machine import ConversationState

logger = get_logger("conversation_service")

NAMESPACE = "conversation"


class ConversationService:
    """Per-user dialog record: state, context and the bounded chat history."""

    def __init__(self, store: SessionStore, config: Settings = default_settings, clock=time.time):
        self.repo = ModelRepository(store, NAMESPACE, ConversationRecord)
        self.settings = config
        self.clock = clock

    async def get_or_create(self, user_id: str) -> ConversationRecord:
        record = await self.repo.get(user_id)
        if record is None:
            record = ConversationRecord(user_id=user_id, last_update_time=self.clock())
            await self.repo.save(user_id, record)
        return record

    async def get(self, user_id: str) -> ConversationRecord | None:
        return await self.repo.get(user_id)

    async def save(self, record: ConversationRecord) -> None:
        await self.repo.save(record.user_id, record)

    def update_state(
        self,
        record: ConversationRecord,
        new_state: ConversationState,
        context: dict[str, Any] | None = None,
    ) -> ConversationRecord:
        """Move to ``new_state`` and merge ``context``. The caller saves."""
        previous = record.current_state
        record.previous_state = previous
        record.state_history.append(StateHistoryEntry(state=previous, timestamp=record.last_update_time))
        limit = self.settings.state_history_limit
        if len(record.state_history) > limit:
            record.state_history = record.state_history[-limit:]

        record.current_state = new_state
        record.last_update_time = self.clock()
        if context:
            record.context.update(context)

        logger.info(
            f"Conversation state {previous.value} -> {new_state.value}",
            extra={"context": {"user_id": record.user_id}},
        )
        return record

    def should_reset(self, record: ConversationRecord) -> bool:
        idle_seconds = self.settings.conversation_idle_reset_minutes * 60
        return (self.clock() - record.last_update_time) > idle_seconds

    def reset(self, record: ConversationRecord) -> ConversationRecord:
        """Back to INITIAL after inactivity; the old state trail survives in context."""
        history = [entry.model_dump(mode="json") for entry in record.state_history]
        history.append({"state": record.current_state.value, "timestamp": record.last_update_time})

        record.current_state = ConversationState.INITIAL
        record.previous_state = None
        record.context = {"previous_history": history}
        record.state_history = []
        record.last_update_time = self.clock()
        logger.info("Conversation reset after inactivity", extra={"context": {"user_id": record.user_id}})
        return record

    def append_message(self, record: ConversationRecord, role: str, content: str) -> None:
        record.messages.append(ChatMessage(role=role, content=content))
        # keep room for the system prompt
        limit = max(self.settings.history_max_messages - 1, 1)
        if len(record.messages) > limit:
            record.messages = record.messages[-limit:]

    @staticmethod
    def build_llm_messages(record: ConversationRecord, system_prompt: str) -> list[dict]:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in record.messages)
        return messages
