"""Inbound message pipeline.

``ConversationOrchestrator`` owns one instance of every per-user component
(batcher, playback, dialog engine, pause controller, reminders) and routes
each inbound message through them.
"""

import asyncio
import random
import time

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger, get_user_logger
from app.models import ConfirmationType, ConversationRecord, InboundMessage, PendingResponse
from app.services.ai_service import (
    ReplyGenerator,
    build_system_prompt,
    error_message_for,
    generate_contextual_response,
    get_llm_provider,
    transcribe_audio,
)
from app.services.availability_service import AvailabilityService
from app.services.batching_service import CONFIRMATION, DEBOUNCE, MessageBatcher, TimerRegistry
from app.services.calendar_service import CalendarClient, GoogleCalendarClient
from app.services.chatflow_service import ChatFlowTransport, WhatsAppTransport
from app.services.conversation_service import ConversationService
from app.services.date_service import extract_date_from_message, local_now, local_today
from app.services.intent_service import (
    ACT_DIRECTLY_CONFIDENCE,
    AI_CONFIRMATION_CONFIDENCE,
    BYPASS_PIPELINE_CONFIDENCE,
    Intent,
    IntentResult,
    classify_confirmation,
    classify_intent,
)
from app.services.intervention_service import InterventionController
from app.services.llm.base import LLMProvider
from app.services.marker_parser import parse_marker
from app.services.playback_service import CONTINUATION_UNCLEAR_MESSAGE, PlaybackEngine
from app.services.reminder_service import (
    PRESENCE_CONFIRMED_REPLIES,
    PRESENCE_DECLINED_REPLY,
    PRESENCE_UNCLEAR_REPLY,
    ReminderService,
)
from app.services.scheduling_service import (
    ClearPending,
    Decision,
    DialogContext,
    DialogOutcome,
    PlayBack,
    SchedulingDialogEngine,
    SendReply,
    StageConfirmation,
    UpdateContext,
    decide,
)
from app.services.session_store import ModelRepository, SessionStore, create_session_store
from app.services.state_machine import ConversationState, is_confirming, suggest_transition

logger = get_logger("message_service")

PENDING_NAMESPACE = "pending_response"
DEDUP_NAMESPACE = "dedup"
GROUP_SUFFIX = "@g.us"

STILL_WAITING_GREETINGS = [
    "Oi! 😊 Ainda estou aguardando sua confirmação sobre o que conversamos antes...",
    "Olá! 👋 Lembra que estava esperando sua resposta sobre aquele assunto?",
    "Oi! Que bom te ver de novo. Ainda preciso da sua confirmação para continuar...",
]
AUDIO_UNCLEAR_MESSAGE = "Não consegui entender o áudio. Pode tentar novamente ou enviar como texto?"
AUDIO_ERROR_MESSAGE = "Ocorreu um erro ao processar o áudio. Por favor, tente novamente."
PENDING_REMINDER_NOTE = (
    "Nota: Este usuário tem um lembrete de agendamento pendente de confirmação. Seja natural na conversa "
    "mas pode mencionar isso se for relevante."
)

QUICK_REPLY_INTENTS = {Intent.FAREWELL, Intent.THANKS}


class ConversationOrchestrator:
    def __init__(
        self,
        transport: WhatsAppTransport,
        calendar: CalendarClient,
        llm: LLMProvider | None,
        store: SessionStore,
        config: Settings = default_settings,
        clock=time.time,
        sleep=asyncio.sleep,
        rng: random.Random | None = None,
        timers: TimerRegistry | None = None,
    ):
        self.transport = transport
        self.llm = llm
        self.store = store
        self.settings = config
        self.clock = clock
        self.rng = rng or random.Random()

        self.conversations = ConversationService(store, config, clock)
        self.pending = ModelRepository(store, PENDING_NAMESPACE, PendingResponse)
        self.batcher = MessageBatcher(
            dispatch=self.process_batch,
            has_pending_confirmation=self.has_pending_confirmation,
            on_confirmation_timeout=self._on_confirmation_timeout,
            config=config,
            clock=clock,
            timers=timers,
        )
        self.playback = PlaybackEngine(
            transport,
            self.pending,
            self.batcher.has_newer_message,
            config=config,
            clock=clock,
            sleep=sleep,
            rng=self.rng,
        )
        self.availability = AvailabilityService(calendar, config, clock)
        self.dialog = SchedulingDialogEngine(calendar, self.availability, config, clock, self.rng)
        self.intervention = InterventionController(store, transport, config, clock)
        self.reminders = ReminderService(store, calendar, transport, config, clock)
        self.replies = ReplyGenerator(llm, config) if llm is not None else None

    # --- inbound -------------------------------------------------------------

    async def handle_inbound(self, message: InboundMessage) -> None:
        user_id = message.user_id
        if message.is_group or user_id.endswith(GROUP_SUFFIX):
            logger.debug(f"Ignoring group message from {user_id}")
            return

        if await self.intervention.intercept(user_id):
            return

        if message.message_id:
            first_seen = await self.store.set_if_absent(
                DEDUP_NAMESPACE, message.message_id, "1", self.settings.dedup_ttl_seconds
            )
            if not first_seen:
                logger.info(
                    "Duplicate message ignored",
                    extra={"context": {"user_id": user_id, "message_id": message.message_id}},
                )
                return

        if message.is_audio:
            message = await self._transcribe(message)
            if message is None:
                return

        pending = await self.pending.get(user_id)
        if pending is not None and pending.is_waiting_for_confirmation:
            await self._handle_pending_reply(message, pending)
            return

        # a playback still in progress sees this through has_newer_message and pauses
        self.batcher.enqueue(message)

    async def handle_typing(self, user_id: str) -> None:
        if await self.intervention.is_paused():
            return
        self.batcher.signal_typing(user_id)

    async def has_pending_confirmation(self, user_id: str) -> bool:
        pending = await self.pending.get(user_id)
        return pending is not None and pending.is_waiting_for_confirmation

    async def _on_confirmation_timeout(self, user_id: str) -> None:
        await self.playback.clear(user_id)

    def _restore(self, user_id: str, held: list[InboundMessage]) -> None:
        if held:
            self.batcher.requeue(user_id, held, front=True)
        self.batcher.rearm(user_id)

    async def _handle_pending_reply(self, message: InboundMessage, pending: PendingResponse) -> None:
        user_id = message.user_id
        log = get_user_logger("message_service", user_id)
        text = message.content or ""

        quick = classify_intent(text)
        if quick.intent == Intent.GREETING and quick.confidence > BYPASS_PIPELINE_CONFIDENCE:
            await self.transport.send_text(user_id, self.rng.choice(STILL_WAITING_GREETINGS))
            return

        self.batcher.cancel(user_id)
        held = self.batcher.drain(user_id)

        ai_result = await classify_confirmation(text, self.llm, self.settings)
        decision = decide(ai_result, text)
        log.info(
            f"Pending reply classified as {decision.value}",
            context={"confirmation_type": pending.confirmation_type.value},
        )

        if pending.confirmation_type == ConfirmationType.NONE:
            if decision == Decision.CONFIRM:
                await self.playback.resume(user_id)
            elif decision == Decision.REJECT:
                await self.playback.discard(user_id)
            else:
                await self.transport.send_text(user_id, CONTINUATION_UNCLEAR_MESSAGE)
                await self.playback.clear(user_id)
                held.append(message)
            self._restore(user_id, held)
            return

        if decision == Decision.UNCLEAR:
            if await self._check_reminder_reply(user_id, text, ai_result):
                self._restore(user_id, held)
                return
            held.append(message)
            if pending.confirmation_type != ConfirmationType.SCHEDULE_CREATE:
                log.info("Unrelated message drops staged action")
                await self._resolve(user_id, self.dialog.drop_confirmation(pending))
                self._restore(user_id, held)
                return
            # a staged create survives; the message waits for the answer or the timeout
            await self._resolve(user_id, await self.dialog.resolve_confirmation(pending, decision))
            self.batcher.requeue(user_id, held, front=True)
            self.batcher.await_confirmation(user_id)
            return

        await self._resolve(user_id, await self.dialog.resolve_confirmation(pending, decision))
        self._restore(user_id, held)

    async def _resolve(self, user_id: str, outcome: DialogOutcome) -> None:
        record = await self.conversations.get_or_create(user_id)
        await self._apply(user_id, record, outcome)

    async def _check_reminder_reply(
        self,
        user_id: str,
        text: str,
        ai_result: IntentResult | None = None,
    ) -> bool:
        """Answer a pending presence confirmation. True when the turn is consumed."""
        if not await self.reminders.has_pending_confirmation(user_id):
            return False

        result = ai_result or await classify_confirmation(text, self.llm, self.settings)
        if result.is_(Intent.CONFIRMATION, AI_CONFIRMATION_CONFIDENCE):
            if await self.reminders.process_confirmation(user_id, True):
                await self.transport.send_text(user_id, self.rng.choice(PRESENCE_CONFIRMED_REPLIES))
                return True
            return False
        if result.is_(Intent.REJECTION, AI_CONFIRMATION_CONFIDENCE):
            if await self.reminders.process_confirmation(user_id, False):
                await self.transport.send_text(user_id, PRESENCE_DECLINED_REPLY)
                return True
            return False
        if not result.ai_analysis:
            # classifier unavailable and the keywords were inconclusive
            return False
        await self.transport.send_text(user_id, PRESENCE_UNCLEAR_REPLY)
        return True

    async def _transcribe(self, message: InboundMessage) -> InboundMessage | None:
        """Turn a voice note into a text message. None when nothing usable came out."""
        user_id = message.user_id
        if not message.media_url or self.llm is None:
            await self.transport.send_text(user_id, AUDIO_ERROR_MESSAGE)
            return None
        try:
            audio = await self.transport.download_media(message.media_url)
            transcript = await transcribe_audio(
                self.llm,
                audio,
                filename="audio.ogg",
                mime_type=message.media_mime,
            )
        except Exception as e:
            logger.error(f"Audio handling failed: {e}", extra={"context": {"user_id": user_id}})
            await self.transport.send_text(user_id, AUDIO_ERROR_MESSAGE)
            return None

        if not transcript:
            await self.transport.send_text(user_id, AUDIO_UNCLEAR_MESSAGE)
            return None
        logger.info("Audio transcribed", extra={"context": {"user_id": user_id, "chars": len(transcript)}})
        return message.model_copy(update={"content": transcript, "message_type": "text", "media_url": None})

    # --- batch processing ----------------------------------------------------

    async def process_batch(self, user_id: str, messages: list[InboundMessage]) -> None:
        text = "\n".join(m.content for m in messages if m.content)
        if not text.strip():
            return

        quick = classify_intent(text)
        if quick.confidence >= BYPASS_PIPELINE_CONFIDENCE:
            record = await self.conversations.get_or_create(user_id)
            confirming_reply = quick.intent in (Intent.CONFIRMATION, Intent.REJECTION) and is_confirming(
                record.current_state
            )
            if not confirming_reply and quick.intent in QUICK_REPLY_INTENTS:
                reply = generate_contextual_response(record, quick, local_now(self.clock), self.rng)
                if quick.intent == Intent.FAREWELL:
                    self.conversations.update_state(record, ConversationState.FAREWELL)
                    await self.conversations.save(record)
                await self.playback.deliver(user_id, reply)
                return

        await self.handle_single_message(user_id, text, messages[0])

    async def handle_single_message(self, user_id: str, text: str, message: InboundMessage) -> None:
        record = await self.conversations.get_or_create(user_id)
        if self.conversations.should_reset(record):
            self.conversations.reset(record)
        self.conversations.append_message(record, "user", text)
        await self.conversations.save(record)

        try:
            quick = classify_intent(text)
            if quick.is_(Intent.LIST, BYPASS_PIPELINE_CONFIDENCE):
                await self._apply(user_id, record, await self.dialog.direct_list(user_id))
                return

            if quick.intent in (Intent.CONFIRMATION, Intent.REJECTION) and quick.confidence >= ACT_DIRECTLY_CONFIDENCE:
                if await self._check_reminder_reply(user_id, text):
                    return

            if self.replies is None:
                raise RuntimeError("No reply model configured")

            today = local_today(self.clock)
            notes = await self._system_notes(record, text, quick, today)
            messages = self.conversations.build_llm_messages(record, build_system_prompt(today))
            messages.extend({"role": "system", "content": note} for note in notes)
            await self.conversations.save(record)

            reply = await self.replies.generate_reply(messages)
            marker = parse_marker(reply)
            ctx = DialogContext(user_id=user_id, user_text=text, today=today, push_name=message.push_name)
            outcome = await self.dialog.handle(marker, ctx)

            # the webhook path may have written the record while the model and calendar were busy
            record = await self.conversations.get_or_create(user_id)
            self.conversations.append_message(record, "assistant", reply)
            logger.info(
                f"Reply generated with marker {marker.kind.value}",
                extra={"context": {"user_id": user_id, "state": record.current_state.value}},
            )
            await self._apply(user_id, record, outcome)
        except Exception as e:
            logger.error(
                f"Error handling message: {e}",
                extra={"context": {"user_id": user_id}},
                exc_info=True,
            )
            await self.transport.send_text(user_id, error_message_for(e))
            await self.playback.clear(user_id)

    async def _system_notes(self, record: ConversationRecord, text: str, quick: IntentResult, today) -> list[str]:
        notes = []
        extracted = extract_date_from_message(text, today)
        if extracted.date:
            record.context["mentioned_date"] = extracted.date
            record.context["mentioned_reference"] = extracted.reference
            notes.append(
                f"Nota: O usuário acabou de mencionar {extracted.reference} ({extracted.date}). "
                "Use esta data para entender o contexto da conversa."
            )

        transition = suggest_transition(record.current_state, quick.intent)
        if transition.changed:
            self.conversations.update_state(record, transition.suggested)
            notes.append(f"Estado da conversa atualizado para: {transition.suggested.value}")
        if quick.intent is not None:
            notes.append(f"Intenção do usuário identificada: {quick.intent.value}")

        if await self.reminders.has_pending_confirmation(record.user_id):
            notes.append(PENDING_REMINDER_NOTE)
        return notes

    async def _apply(self, user_id: str, record: ConversationRecord, outcome: DialogOutcome) -> None:
        """Run the effects of a dialog outcome in order."""
        for effect in outcome.effects:
            if isinstance(effect, UpdateContext):
                record.context.update(effect.values)
        if outcome.next_state is not None and outcome.next_state != record.current_state:
            self.conversations.update_state(record, outcome.next_state)
        await self.conversations.save(record)

        for effect in outcome.effects:
            if isinstance(effect, ClearPending):
                await self.playback.clear(user_id)
            elif isinstance(effect, SendReply):
                await self.playback.deliver(user_id, effect.text)
            elif isinstance(effect, PlayBack):
                await self.playback.start(user_id, effect.text)
            elif isinstance(effect, StageConfirmation):
                await self.playback.stage_confirmation(
                    user_id, effect.prompt, effect.confirmation_type, effect.details
                )

    # --- diagnostics ---------------------------------------------------------

    async def check_invariants(self, user_id: str) -> list[str]:
        violations = []
        timers = self.batcher.timers
        if timers.active_count(user_id, DEBOUNCE) > 1:
            violations.append("more than one debounce timer")
        queued = self.batcher.queued(user_id)
        if (
            queued
            and not timers.is_armed(user_id, DEBOUNCE)
            and not timers.is_armed(user_id, CONFIRMATION)
            and not self.batcher.is_flushing(user_id)
        ):
            violations.append("queued messages without an armed timer")

        pending = await self.pending.get(user_id)
        if pending is not None:
            staged = pending.confirmation_type != ConfirmationType.NONE
            if staged and not pending.is_waiting_for_confirmation:
                violations.append("staged action not waiting for confirmation")
            if staged and pending.event_details is None:
                violations.append("confirmation without staged details")
            if not staged and pending.event_details is not None:
                violations.append("staged details without a confirmation type")
            if pending.current_part_index != len(pending.sent_parts):
                violations.append("part index out of sync with sent parts")
            if pending.is_paused and not pending.is_waiting_for_confirmation:
                violations.append("paused playback not waiting for an answer")
        return violations

    async def session_snapshot(self, user_id: str) -> dict:
        record = await self.conversations.get(user_id)
        pending = await self.pending.get(user_id)
        return {
            "user_id": user_id,
            "conversation": record.model_dump(mode="json") if record else None,
            "pending_response": pending.model_dump(mode="json") if pending else None,
            "queued_messages": len(self.batcher.queued(user_id)),
            "violations": await self.check_invariants(user_id),
        }

    async def shutdown(self) -> None:
        await self.batcher.shutdown()


_orchestrator: ConversationOrchestrator | None = None


def get_orchestrator() -> ConversationOrchestrator:
    """Get or create the process-wide orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ConversationOrchestrator(
            transport=ChatFlowTransport(default_settings),
            calendar=GoogleCalendarClient(default_settings),
            llm=get_llm_provider(default_settings),
            store=create_session_store(default_settings),
        )
    return _orchestrator


async def shutdown_orchestrator() -> None:
    if _orchestrator is not None:
        await _orchestrator.shutdown()
