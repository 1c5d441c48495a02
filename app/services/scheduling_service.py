"""Scheduling dialog: turns reply markers into calendar checks and staged actions.

Handlers never talk to WhatsApp directly. Each returns a ``DialogOutcome``
whose effects the orchestrator applies in order, so the same outcome can be
inspected in tests without a transport.
"""

import random
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.models import (
    CalendarEvent,
    ConfirmationType,
    EventDetails,
    PendingResponse,
    StagedAction,
    StagedCancel,
    StagedCreate,
    StagedModify,
)
from app.services.availability_service import (
    CALENDAR_READ_ERROR_MESSAGE,
    AvailabilityService,
)
from app.services.calendar_service import CalendarClient, CalendarProviderError
from app.services.date_service import (
    day_bounds,
    extract_date_from_message,
    format_date_br,
    format_date_human_readable,
    format_time,
    local_datetime,
    local_now,
)
from app.services.intent_service import AI_CONFIRMATION_CONFIDENCE, Intent, IntentResult
from app.services.marker_parser import (
    CancelMarker,
    CreateMarker,
    FlexibleMarker,
    FollowupMarker,
    ListMarker,
    Marker,
    MarkerKind,
    ModifyMarker,
)
from app.services.result import ErrorCode, Result
from app.services.state_machine import ConversationState

logger = get_logger("scheduling_service")


# --- effects -----------------------------------------------------------------


@dataclass
class SendReply:
    """One message delivered with a typing pause."""

    text: str


@dataclass
class PlayBack:
    """A possibly long reply, segmented and played back part by part."""

    text: str


@dataclass
class StageConfirmation:
    prompt: str
    confirmation_type: ConfirmationType
    details: StagedAction


@dataclass
class ClearPending:
    pass


@dataclass
class UpdateContext:
    values: dict[str, Any]


Effect = SendReply | PlayBack | StageConfirmation | ClearPending | UpdateContext


@dataclass
class DialogOutcome:
    next_state: ConversationState | None = None
    effects: list[Effect] = field(default_factory=list)

    def texts(self) -> list[str]:
        found = []
        for effect in self.effects:
            if isinstance(effect, (SendReply, PlayBack)):
                found.append(effect.text)
            elif isinstance(effect, StageConfirmation):
                found.append(effect.prompt)
        return found


@dataclass
class DialogContext:
    user_id: str
    user_text: str
    today: date
    push_name: str | None = None


class Decision(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    UNCLEAR = "unclear"


def decide(ai_result: IntentResult | None, text: str) -> Decision:
    """Confirmation decision: the AI verdict first, then a literal sim/não."""
    if ai_result is not None:
        if ai_result.is_(Intent.CONFIRMATION, AI_CONFIRMATION_CONFIDENCE):
            return Decision.CONFIRM
        if ai_result.is_(Intent.REJECTION, AI_CONFIRMATION_CONFIDENCE):
            return Decision.REJECT

    literal = (text or "").strip().lower()
    if literal == "sim":
        return Decision.CONFIRM
    if literal in ("não", "nao"):
        return Decision.REJECT
    return Decision.UNCLEAR


# --- messages ----------------------------------------------------------------

CREATE_TEMPLATES = [
    "Perfeito! Posso agendar seu ensaio fotográfico para {hr} às {t}. Funciona para você?",
    "Ótimo! Tenho um horário disponível {hr} às {t}. Gostaria de confirmar?",
    "{hr} às {t} seria um excelente horário para seu ensaio! Confirma?",
    "Que bom! Consigo encaixar você {hr} às {t}. Esse horário é bom para você?",
    "Excelente escolha! Posso reservar {hr} às {t} para seu ensaio. Fechamos assim?",
]
CREATE_REFERENCE_TEMPLATES = [
    "Perfeito! Para {ref}, posso agendar seu ensaio fotográfico para {hr} às {t}. Isso funciona para você?",
    "Ótimo! Tenho um horário exatamente para {ref} às {t}. Devo reservar para você?",
    "{ref} às {t} seria perfeito para seu ensaio! Confirma?",
]
CREATE_RESTATE_MESSAGE = (
    "Quero te ajudar com esse agendamento, mas não consegui entender exatamente qual data e horário você "
    "prefere. Pode me dizer novamente quando gostaria de agendar seu ensaio? Por exemplo, "
    "'quero marcar para dia 27 às 15h'."
)
CREATE_ERROR_MESSAGE = (
    "Ops! Tive um probleminha técnico ao tentar agendar para {hr} às {t}. 😅 Pode tentar de novo com um "
    "outro horário? Ou se preferir, me diga \"quero falar com uma pessoa\" para ajuda personalizada."
)

MODIFY_CHECKING_MESSAGE = (
    "Ok, você quer remarcar de {old_date} às {old_time} para {new_date} às {new_time}. "
    "Vou verificar a disponibilidade um momento... ⏳"
)
MODIFY_NOT_FOUND_MESSAGE = (
    "Hmm, não estou conseguindo encontrar seu agendamento de {hr} às {t}. Você pode conferir a data e "
    "horário novamente? Se preferir, me peça para \"listar meus agendamentos\" e te mostrarei tudo que "
    "está marcado."
)
MODIFY_CONFLICT_MESSAGE = (
    "⚠️ Opa! Parece que você já tem um compromisso ({summary} às {existing}) nesse horário de {new_date} "
    "às {new_time}. Mas temos alternativas! O que acha de remarcar para {later} ou talvez {earlier} no "
    "mesmo dia? Ou me diga outro horário que funcione melhor para você."
)
MODIFY_PROMPT = (
    "Perfeito! Então vamos mudar seu ensaio de {hr_old} às {old_time} para {hr_new} às {new_time}. "
    "Confirma essa alteração?"
)
MODIFY_ERROR_MESSAGE = (
    "😥 Desculpe, ocorreu um erro ao tentar verificar a disponibilidade para sua remarcação. "
    "Por favor, tente novamente."
)
MODIFY_MALFORMED_MESSAGE = (
    "Desculpe, não consegui entender completamente qual agendamento você deseja alterar. Poderia me "
    "dizer de uma forma mais clara? Por exemplo: 'quero mudar meu horário do dia 26 às 14h para o dia "
    "27 às 15h'. Assim posso te ajudar melhor!"
)

CANCEL_NOT_FOUND_MESSAGE = (
    "Estranho, não encontrei nenhum agendamento seu para {hr} às {t}. Pode verificar se a data e horário "
    "estão corretos? Posso listar todos os seus agendamentos se me pedir \"quais são meus horários\" ou "
    "\"listar meus agendamentos\"."
)
CANCEL_PROMPT = (
    "Entendi! Você quer cancelar seu agendamento de {hr} às {t}. Posso fazer isso para você, só preciso "
    "que confirme antes."
)
CANCEL_ERROR_MESSAGE = (
    "😥 Desculpe, ocorreu um erro ao tentar processar seu pedido de cancelamento. Por favor, tente novamente."
)
CANCEL_MALFORMED_MESSAGE = (
    "Estou quase entendendo, mas não consegui identificar qual agendamento você quer cancelar. Poderia me "
    "dizer algo como 'quero cancelar meu agendamento do dia 27 às 15h'? Ou se preferir, posso listar "
    "todos os seus agendamentos ativos."
)

LIST_ERROR_MESSAGE = (
    "😓 Estamos com um problema técnico para acessar a agenda. Por favor, tente novamente em alguns minutos."
)
LIST_EMPTY_FOR_DATE = (
    "Não encontrei nenhum agendamento para {day}. Quer aproveitar para marcar um ensaio fotográfico? "
    "Temos horários disponíveis! 📸✨"
)
LIST_EMPTY = (
    "Parece que você não tem nenhum agendamento pendente comigo. Que tal aproveitar e marcar um ensaio "
    "agora? Temos algumas datas disponíveis! 📸✨"
)
DIRECT_LIST_EMPTY = "📅 Não encontrei nenhum agendamento futuro para você. Gostaria de marcar um novo horário?"

FLEXIBLE_FALLBACK_MESSAGE = (
    "😊 Desculpe, houve um probleminha ao verificar os horários disponíveis. Que tal me falar diretamente "
    "qual data e horário você prefere?"
)
FOLLOWUP_FALLBACK_MESSAGE = "😊 Entendi! Deixa eu ver outras opções disponíveis pra você..."

# confirmation_type -> messages used while resolving a staged action
RESOLUTION_MESSAGES = {
    ConfirmationType.SCHEDULE_CREATE: {
        "working": "Confirmado! Vou criar seu agendamento... 🗓️",
        "done": "Agendamento confirmado!🤠 Seu ensaio fotográfico foi marcado para {hr} às {t}.",
        "error": (
            "😥 Desculpe, ocorreu um erro ao criar seu agendamento após a confirmação. Por favor, tente "
            "reagendar ou entre em contato."
        ),
        "rejected": "Ok, o agendamento não foi criado. Se precisar de algo mais, é só chamar! 👍",
        "unclear": (
            "Não entendi sua resposta. Por favor, responda com uma confirmação positiva como 'sim', "
            "'beleza', 'confirmo' para confirmar o agendamento ou 'não' para cancelar."
        ),
    },
    ConfirmationType.SCHEDULE_MODIFY: {
        "working": "Confirmado! Vou remarcar seu ensaio... 🛠️",
        "done": "Ensaio remarcado para {hr} às {t}.",
        "error": "😥 Desculpe, ocorreu um erro ao tentar remarcar seu ensaio. Por favor, tente novamente.",
        "rejected": "Ok, o agendamento não foi remarcado. Permanece como estava. 😉",
        "unclear": (
            "Não entendi sua resposta. Por favor, responda com uma confirmação positiva como 'sim', "
            "'beleza', 'confirmo' para confirmar a remarcação ou 'não' para manter o agendamento original."
        ),
    },
    ConfirmationType.SCHEDULE_CANCEL: {
        "working": "Confirmado! Vou cancelar seu agendamento... 🗑️",
        "done": "Agendamento de {hr} às {t} cancelado com sucesso!",
        "error": "😥 Desculpe, ocorreu um erro ao tentar cancelar seu agendamento. Por favor, tente novamente.",
        "rejected": "Ok, o agendamento não foi cancelado. Continua marcado! 👍",
        "unclear": (
            "Não entendi sua resposta. Por favor, responda com uma confirmação positiva como 'sim', "
            "'beleza', 'confirmo' para confirmar o cancelamento ou 'não' para mantê-lo."
        ),
    },
}

NEXT_STATE_AFTER_COMMIT = {
    ConfirmationType.SCHEDULE_CREATE: ConversationState.APPOINTMENT_CONFIRMED,
    ConfirmationType.SCHEDULE_MODIFY: ConversationState.IDLE,
    ConfirmationType.SCHEDULE_CANCEL: ConversationState.IDLE,
}


def _valid_slot(day: str | None, hhmm: str | None) -> bool:
    if not day or not hhmm:
        return False
    try:
        local_datetime(day, hhmm)
    except ValueError:
        return False
    return True


def _shift(hhmm: str, hours: int) -> str:
    base = datetime.strptime(hhmm, "%H:%M") + timedelta(hours=hours)
    return base.strftime("%H:%M")


def _event_lines(events: list[CalendarEvent]) -> str:
    return "".join(f"- {format_date_br(e.start)} às {format_time(e.start)}: {e.summary}\n" for e in events)


class SchedulingDialogEngine:
    HANDLERS = {
        MarkerKind.CREATE: "handle_create",
        MarkerKind.MODIFY: "handle_modify",
        MarkerKind.CANCEL: "handle_cancel",
        MarkerKind.LIST: "handle_list",
        MarkerKind.FLEXIBLE: "handle_flexible",
        MarkerKind.FOLLOWUP: "handle_followup",
    }

    def __init__(
        self,
        calendar: CalendarClient,
        availability: AvailabilityService,
        config: Settings = default_settings,
        clock=time.time,
        rng: random.Random | None = None,
    ):
        self.calendar = calendar
        self.availability = availability
        self.settings = config
        self.clock = clock
        self.rng = rng or random.Random()

    async def handle(self, marker: Marker, ctx: DialogContext) -> DialogOutcome:
        handler_name = self.HANDLERS.get(marker.kind)
        if handler_name is None:
            return self._play_or(marker.remainder, None)
        handler = getattr(self, handler_name)
        return await handler(marker, ctx)

    @staticmethod
    def _play_or(text: str, fallback: str | None) -> DialogOutcome:
        if text:
            return DialogOutcome(effects=[PlayBack(text)])
        if fallback:
            return DialogOutcome(effects=[SendReply(fallback)])
        return DialogOutcome()

    async def _user_events_on(self, user_id: str, day: str) -> list[CalendarEvent]:
        start, end = day_bounds(day)
        events = await self.calendar.list_events_for_user(user_id, start, end)
        return sorted(events, key=lambda e: e.start)

    # --- create --------------------------------------------------------------

    async def handle_create(self, marker: CreateMarker, ctx: DialogContext) -> DialogOutcome:
        user_date = extract_date_from_message(ctx.user_text, ctx.today)
        target_date = marker.date
        if user_date.date and user_date.date != target_date:
            logger.info(
                "User date overrides reply date",
                extra={"context": {"user_id": ctx.user_id, "reply_date": target_date, "user_date": user_date.date}},
            )
            target_date = user_date.date

        if not _valid_slot(target_date, marker.time):
            return self._play_or(marker.remainder, CREATE_RESTATE_MESSAGE)

        hr = format_date_human_readable(target_date)
        t = marker.time
        try:
            existing = await self._user_events_on(ctx.user_id, target_date)
        except CalendarProviderError as e:
            logger.error(f"Create validation failed: {e}", extra={"context": {"user_id": ctx.user_id}})
            return DialogOutcome(effects=[ClearPending(), SendReply(CREATE_ERROR_MESSAGE.format(hr=hr, t=t))])

        if existing:
            listing = "".join(f"- {e.summary} às {format_time(e.start)}\n" for e in existing)
            text = (
                f"⚠️ Vi aqui que você já tem compromisso(s) marcado(s) para {hr}:\n{listing}"
                f"\nQuer adicionar mais este horário às {t} mesmo assim, ou prefere reagendar algum dos "
                f"existentes? Se quiser reagendar, pode me dizer algo como \"quero mudar meu horário das "
                f"[hora existente] para {t}\"."
            )
            return DialogOutcome(effects=[ClearPending(), SendReply(text)])

        start = local_datetime(target_date, t)
        staged = StagedCreate(
            summary=self.settings.appointment_summary,
            description=(
                f"Agendamento solicitado por {ctx.user_id} ({ctx.push_name or 'Nome não disponível'}). "
                f"Detalhes fornecidos: {ctx.user_text}"
            ),
            start=start,
            end=start + timedelta(minutes=self.settings.appointment_duration_minutes),
            time_zone=self.settings.timezone_name,
            user_id=ctx.user_id,
            extracted_date=target_date,
            extracted_time=t,
        )
        if user_date.date and user_date.reference:
            prompt = self.rng.choice(CREATE_REFERENCE_TEMPLATES).format(ref=user_date.reference, hr=hr, t=t)
        else:
            prompt = self.rng.choice(CREATE_TEMPLATES).format(hr=hr, t=t)

        return DialogOutcome(
            next_state=ConversationState.CONFIRMING_APPOINTMENT,
            effects=[StageConfirmation(prompt, ConfirmationType.SCHEDULE_CREATE, staged)],
        )

    # --- modify --------------------------------------------------------------

    async def handle_modify(self, marker: ModifyMarker, ctx: DialogContext) -> DialogOutcome:
        if not (
            marker.is_complete
            and _valid_slot(marker.old_date, marker.old_time)
            and _valid_slot(marker.new_date, marker.new_time)
        ):
            return self._play_or(marker.remainder, MODIFY_MALFORMED_MESSAGE)

        new_date = marker.new_date
        user_date = extract_date_from_message(ctx.user_text, ctx.today)
        if user_date.date and user_date.date != new_date:
            new_date = user_date.date

        checking = SendReply(
            MODIFY_CHECKING_MESSAGE.format(
                old_date=format_date_br(date.fromisoformat(marker.old_date)),
                old_time=marker.old_time,
                new_date=format_date_br(date.fromisoformat(new_date)),
                new_time=marker.new_time,
            )
        )
        effects: list[Effect] = [checking]
        hr_old = format_date_human_readable(marker.old_date)

        try:
            old_events = await self._user_events_on(ctx.user_id, marker.old_date)
            event = next((e for e in old_events if format_time(e.start) == marker.old_time), None)
            if event is None:
                effects += [ClearPending(), SendReply(MODIFY_NOT_FOUND_MESSAGE.format(hr=hr_old, t=marker.old_time))]
                return DialogOutcome(effects=effects)

            new_start = local_datetime(new_date, marker.new_time)
            new_end = new_start + (event.end - event.start)
            others = [e for e in await self._user_events_on(ctx.user_id, new_date) if e.id != event.id]
            conflict = next((e for e in others if e.overlaps(new_start, new_end)), None)
        except CalendarProviderError as e:
            logger.error(f"Modify validation failed: {e}", extra={"context": {"user_id": ctx.user_id}})
            effects += [ClearPending(), SendReply(MODIFY_ERROR_MESSAGE)]
            return DialogOutcome(effects=effects)

        if conflict is not None:
            text = MODIFY_CONFLICT_MESSAGE.format(
                summary=conflict.summary,
                existing=format_time(conflict.start),
                new_date=format_date_br(new_start),
                new_time=marker.new_time,
                later=_shift(marker.new_time, 1),
                earlier=_shift(marker.new_time, -1),
            )
            effects += [ClearPending(), SendReply(text)]
            return DialogOutcome(effects=effects)

        staged = StagedModify(
            event_id=event.id,
            start=new_start,
            end=new_end,
            old_date=marker.old_date,
            old_time=marker.old_time,
            new_date=new_date,
            new_time=marker.new_time,
        )
        prompt = MODIFY_PROMPT.format(
            hr_old=hr_old,
            old_time=marker.old_time,
            hr_new=format_date_human_readable(new_date),
            new_time=marker.new_time,
        )
        effects.append(StageConfirmation(prompt, ConfirmationType.SCHEDULE_MODIFY, staged))
        return DialogOutcome(next_state=ConversationState.CONFIRMING_MODIFICATION, effects=effects)

    # --- cancel --------------------------------------------------------------

    async def handle_cancel(self, marker: CancelMarker, ctx: DialogContext) -> DialogOutcome:
        if not _valid_slot(marker.date, marker.time):
            return self._play_or(marker.remainder, CANCEL_MALFORMED_MESSAGE)

        cancel_date = marker.date
        user_date = extract_date_from_message(ctx.user_text, ctx.today)
        if user_date.date and user_date.date != cancel_date:
            cancel_date = user_date.date

        hr = format_date_human_readable(cancel_date)
        try:
            events = await self._user_events_on(ctx.user_id, cancel_date)
        except CalendarProviderError as e:
            logger.error(f"Cancel lookup failed: {e}", extra={"context": {"user_id": ctx.user_id}})
            return DialogOutcome(effects=[ClearPending(), SendReply(CANCEL_ERROR_MESSAGE)])

        event = next((e for e in events if format_time(e.start) == marker.time), None)
        if event is None:
            return DialogOutcome(
                effects=[ClearPending(), SendReply(CANCEL_NOT_FOUND_MESSAGE.format(hr=hr, t=marker.time))]
            )

        staged = StagedCancel(event_id=event.id, cancel_date=cancel_date, cancel_time=marker.time)
        return DialogOutcome(
            next_state=ConversationState.CONFIRMING_CANCELLATION,
            effects=[
                StageConfirmation(
                    CANCEL_PROMPT.format(hr=hr, t=marker.time),
                    ConfirmationType.SCHEDULE_CANCEL,
                    staged,
                )
            ],
        )

    # --- list ----------------------------------------------------------------

    async def handle_list(self, marker: ListMarker, ctx: DialogContext) -> DialogOutcome:
        user_date = extract_date_from_message(ctx.user_text, ctx.today)
        try:
            if user_date.date:
                events = await self._user_events_on(ctx.user_id, user_date.date)
            else:
                now = local_now(self.clock)
                events = await self.calendar.list_events_for_user(
                    ctx.user_id, now, now + timedelta(days=self.settings.list_days_ahead)
                )
                events = sorted(events, key=lambda e: e.start)
        except CalendarProviderError as e:
            logger.error(f"Listing failed: {e}", extra={"context": {"user_id": ctx.user_id}})
            return DialogOutcome(effects=[SendReply(LIST_ERROR_MESSAGE)])

        if user_date.date:
            day = format_date_br(date.fromisoformat(user_date.date))
            if not events:
                return DialogOutcome(effects=[SendReply(LIST_EMPTY_FOR_DATE.format(day=day))])
            header = f"🗓️ Seus agendamentos para {day} são:\n"
        else:
            if not events:
                return DialogOutcome(effects=[SendReply(LIST_EMPTY)])
            header = "🗓️ Seus agendamentos agendados são:\n"

        return DialogOutcome(
            next_state=ConversationState.LISTING_APPOINTMENTS,
            effects=[SendReply((header + _event_lines(events)).strip())],
        )

    async def direct_list(self, user_id: str) -> DialogOutcome:
        """Upcoming appointments for a clear list request, without a model call."""
        now = local_now(self.clock)
        try:
            events = await self.calendar.list_events_for_user(
                user_id, now, now + timedelta(days=self.settings.list_days_ahead)
            )
        except CalendarProviderError as e:
            logger.error(f"Direct listing failed: {e}", extra={"context": {"user_id": user_id}})
            return DialogOutcome(effects=[SendReply(LIST_ERROR_MESSAGE)])

        if not events:
            return DialogOutcome(effects=[SendReply(DIRECT_LIST_EMPTY)])
        events = sorted(events, key=lambda e: e.start)
        text = "🗓️ Seus próximos agendamentos são:\n" + _event_lines(events)
        return DialogOutcome(next_state=ConversationState.LISTING_APPOINTMENTS, effects=[SendReply(text.strip())])

    # --- availability --------------------------------------------------------

    async def handle_flexible(self, marker: FlexibleMarker, ctx: DialogContext) -> DialogOutcome:
        try:
            result = await self.availability.flexible_request(ctx.user_id, ctx.user_text, marker.hint, ctx.today)
        except CalendarProviderError as e:
            logger.error(f"Flexible availability failed: {e}", extra={"context": {"user_id": ctx.user_id}})
            return DialogOutcome(effects=[SendReply(CALENDAR_READ_ERROR_MESSAGE)])
        except Exception as e:
            logger.error(
                f"Unexpected error in flexible availability: {e}",
                extra={"context": {"user_id": ctx.user_id}},
                exc_info=True,
            )
            return self._play_or(marker.remainder, FLEXIBLE_FALLBACK_MESSAGE)

        text = f"{marker.remainder}\n\n{result.message}" if marker.remainder else result.message
        context = {"suggested_date": result.target.date}
        if result.suggestions.suggestions:
            context["last_suggested_time"] = result.suggestions.suggestions[0].time
        return DialogOutcome(
            next_state=ConversationState.SUGGESTING_SLOTS,
            effects=[UpdateContext(context), PlayBack(text)],
        )

    async def handle_followup(self, marker: FollowupMarker, ctx: DialogContext) -> DialogOutcome:
        if not marker.is_complete:
            return self._play_or(marker.remainder, FOLLOWUP_FALLBACK_MESSAGE)
        try:
            result = await self.availability.follow_up(ctx.user_id, marker.feedback, marker.time, marker.date)
        except CalendarProviderError as e:
            logger.error(f"Follow-up availability failed: {e}", extra={"context": {"user_id": ctx.user_id}})
            return DialogOutcome(effects=[SendReply(CALENDAR_READ_ERROR_MESSAGE)])

        if result is None:
            return self._play_or(marker.remainder, FOLLOWUP_FALLBACK_MESSAGE)

        effects: list[Effect] = []
        if result.has_alternatives:
            effects.append(
                UpdateContext({"last_suggested_time": result.suggestions[0].time, "suggested_date": marker.date})
            )
        effects.append(SendReply(result.message))
        return DialogOutcome(next_state=ConversationState.SUGGESTING_SLOTS, effects=effects)

    # --- confirmation --------------------------------------------------------

    async def _commit(self, action: StagedAction) -> Result[CalendarEvent | None]:
        try:
            if isinstance(action, StagedCreate):
                event = await self.calendar.create_event(
                    EventDetails(
                        summary=action.summary,
                        description=action.description,
                        start=action.start,
                        end=action.end,
                        time_zone=action.time_zone,
                        user_id=action.user_id,
                    )
                )
                return Result.success(event)
            if isinstance(action, StagedModify):
                return Result.success(await self.calendar.update_event(action.event_id, action.start, action.end))
            await self.calendar.delete_event(action.event_id)
            return Result.success(None)
        except CalendarProviderError as e:
            return Result.failure(str(e), ErrorCode.CALENDAR_PROVIDER)

    @staticmethod
    def _done_message(action: StagedAction, template: str) -> str:
        if isinstance(action, StagedCreate):
            return template.format(hr=format_date_human_readable(action.extracted_date), t=action.extracted_time)
        if isinstance(action, StagedModify):
            return template.format(hr=format_date_human_readable(action.new_date), t=action.new_time)
        return template.format(hr=format_date_human_readable(action.cancel_date), t=action.cancel_time)

    def drop_confirmation(self, pending: PendingResponse) -> DialogOutcome:
        """Silently discard a staged modify or cancel the user moved on from."""
        logger.info(
            "Staged action dropped",
            extra={"context": {"user_id": pending.user_id, "type": pending.confirmation_type.value}},
        )
        return DialogOutcome(next_state=ConversationState.IDLE, effects=[ClearPending()])

    async def resolve_confirmation(self, pending: PendingResponse, decision: Decision) -> DialogOutcome:
        """Commit, discard, or re-ask about a staged scheduling action."""
        action = pending.event_details
        messages = RESOLUTION_MESSAGES.get(pending.confirmation_type)
        if action is None or messages is None:
            logger.warning(
                "No staged action to resolve",
                extra={"context": {"user_id": pending.user_id, "type": pending.confirmation_type.value}},
            )
            return DialogOutcome(effects=[ClearPending()])

        if decision == Decision.UNCLEAR:
            return DialogOutcome(effects=[SendReply(messages["unclear"])])

        if decision == Decision.REJECT:
            logger.info(
                "Staged action rejected",
                extra={"context": {"user_id": pending.user_id, "type": pending.confirmation_type.value}},
            )
            return DialogOutcome(
                next_state=ConversationState.IDLE,
                effects=[ClearPending(), SendReply(messages["rejected"])],
            )

        effects: list[Effect] = [SendReply(messages["working"])]
        result = await self._commit(action)
        if not result.ok:
            logger.error(
                f"Commit failed: {result.error}",
                extra={"context": {"user_id": pending.user_id, "type": pending.confirmation_type.value}},
            )
            effects += [ClearPending(), SendReply(messages["error"])]
            return DialogOutcome(next_state=ConversationState.IDLE, effects=effects)

        logger.info(
            "Staged action committed",
            extra={"context": {"user_id": pending.user_id, "type": pending.confirmation_type.value}},
        )
        effects += [ClearPending(), SendReply(self._done_message(action, messages["done"]))]
        return DialogOutcome(next_state=NEXT_STATE_AFTER_COMMIT[pending.confirmation_type], effects=effects)
