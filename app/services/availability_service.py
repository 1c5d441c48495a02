"""Free-slot suggestions for open-ended availability questions."""

import time
from dataclasses import dataclass, field
from datetime import date, timedelta

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.models import CalendarEvent
from app.services.date_service import DayPeriod, local_datetime, parse_day_period, parse_iso_date

logger = get_logger("availability_service")

MORNING = "morning"
AFTERNOON = "afternoon"
ANY = "any"

CALENDAR_READ_ERROR_MESSAGE = "😅 Ops! Tive um probleminha ao verificar a agenda. Pode tentar novamente?"
NO_ALTERNATIVES_MESSAGE = (
    "😔 Entendo sua preferência! Infelizmente não tenho outros horários disponíveis neste dia. "
    "Que tal verificarmos outro dia? Posso sugerir algumas opções!"
)


class FeedbackType:
    TOO_EARLY = "too_early"
    TOO_LATE = "too_late"
    ALTERNATIVE = "alternative"


@dataclass
class SlotSuggestion:
    time: str
    period: str


@dataclass
class SuggestionSet:
    date: str
    suggestions: list[SlotSuggestion] = field(default_factory=list)
    has_events: bool = False

    @property
    def total_available(self) -> int:
        return len(self.suggestions)


@dataclass
class FlexibleResult:
    target: DayPeriod
    suggestions: SuggestionSet
    message: str


@dataclass
class FollowUpResult:
    feedback_type: str
    suggestions: list[SlotSuggestion]
    message: str

    @property
    def has_alternatives(self) -> bool:
        return bool(self.suggestions)


class AgendaCache:
    """Calendar reads keyed by ``<user>_<date>_<days>``, kept for a fixed TTL."""

    def __init__(self, ttl_seconds: float, clock=time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, tuple[float, list[CalendarEvent]]] = {}

    def get(self, key: str) -> list[CalendarEvent] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, events = entry
        if self.clock() - stored_at >= self.ttl_seconds:
            return None
        return events

    def put(self, key: str, events: list[CalendarEvent]) -> None:
        self._entries[key] = (self.clock(), events)

    def sweep(self) -> int:
        now = self.clock()
        expired = [key for key, (stored_at, _) in self._entries.items() if now - stored_at > self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


def detect_feedback(text: str | None) -> str | None:
    lower = (text or "").lower()
    if "cedo" in lower:
        return FeedbackType.TOO_EARLY
    if "tarde" in lower:
        return FeedbackType.TOO_LATE
    if "outro" in lower or "outra opção" in lower or "outra opcao" in lower or "alternativa" in lower:
        return FeedbackType.ALTERNATIVE
    return None


class AvailabilityService:
    def __init__(self, calendar, config: Settings = default_settings, clock=time.time):
        self.calendar = calendar
        self.settings = config
        self.clock = clock
        self.cache = AgendaCache(config.agenda_cache_ttl_minutes * 60, clock)

    def _candidates(self, period: str = ANY) -> list[SlotSuggestion]:
        slots = []
        if period in (MORNING, ANY):
            slots += [SlotSuggestion(t, MORNING) for t in self.settings.morning_slots]
        if period in (AFTERNOON, ANY):
            slots += [SlotSuggestion(t, AFTERNOON) for t in self.settings.afternoon_slots]
        return slots

    async def get_events(self, user_id: str, target_date: str) -> list[CalendarEvent]:
        """Studio-wide events from ``target_date`` over the look-ahead window.

        Calendar errors propagate; the caller turns them into an apology.
        """
        days = self.settings.agenda_days_ahead
        key = f"{user_id}_{target_date}_{days}"
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Agenda cache hit for {key}")
            return cached

        start = local_datetime(target_date, "00:00")
        end = local_datetime((start.date() + timedelta(days=days)).isoformat(), "23:59").replace(second=59)
        events = await self.calendar.list_events_in_range(start, end)
        self.cache.put(key, events)
        return events

    def is_slot_available(
        self,
        events: list[CalendarEvent],
        target_date: str,
        slot_time: str,
        duration_hours: float | None = None,
    ) -> bool:
        duration = duration_hours if duration_hours is not None else self.settings.slot_duration_hours
        slot_start = local_datetime(target_date, slot_time)
        slot_end = slot_start + timedelta(hours=duration)
        return not any(event.overlaps(slot_start, slot_end) for event in events)

    async def suggest_slots(self, user_id: str, target_date: str, period: str = ANY) -> SuggestionSet:
        events = await self.get_events(user_id, target_date)
        free = [slot for slot in self._candidates(period) if self.is_slot_available(events, target_date, slot.time)]
        return SuggestionSet(date=target_date, suggestions=free, has_events=bool(events))

    @staticmethod
    def scarcity_message(suggestions: SuggestionSet, period: str, reference: str = "neste dia") -> str:
        if suggestions.total_available == 0:
            return (
                f"😔 Infelizmente não tenho horários disponíveis {reference}. "
                "Que tal verificarmos outro dia? Posso sugerir algumas opções!"
            )

        morning = [s for s in suggestions.suggestions if s.period == MORNING]
        afternoon = [s for s in suggestions.suggestions if s.period == AFTERNOON]

        if period in (MORNING, ANY) and morning:
            first = morning[0].time
            message = f"✨ Que bom! Tenho um horário que acabou de vagar {reference} às {first} da manhã! "
            if len(morning) > 1:
                message += "É uma excelente opção e está saindo rápido! 😊"
            else:
                message += "É o último horário da manhã disponível! 😱"
            return message + f"\n\nO que acha? Fica bom pra você às {first}?"

        if period in (AFTERNOON, ANY) and afternoon:
            first = afternoon[0].time
            if len(afternoon) == 1:
                message = (
                    f"😍 Tenho apenas UM horário na tarde {reference} às {first}! "
                    "Mas me confirma logo porque está chegando outra pessoa interessada neste mesmo horário! ⏰"
                )
            else:
                second = afternoon[1].time
                message = (
                    f"👀 Para a tarde {reference}, tenho às {first} ou às {second}. "
                    f"Mas o das {second} também está para confirmar com outro cliente! "
                )
            return message + "\n\nQual prefere?"

        first = suggestions.suggestions[0].time
        message = f"😊 Tenho um horário especial {reference} às {first}! "
        if suggestions.total_available == 1:
            message += "É o último disponível e está saindo rápido! 🔥"
        else:
            message += "É uma das poucas opções que restam hoje! ✨"
        return message + "\n\nFica bom pra você?"

    async def flexible_request(self, user_id: str, text: str, hint: str | None, today: date) -> FlexibleResult:
        target = parse_day_period(text, today, hint)
        suggestions = await self.suggest_slots(user_id, target.date, target.period)
        logger.info(
            "Flexible availability computed",
            extra={
                "context": {
                    "user_id": user_id,
                    "date": target.date,
                    "period": target.period,
                    "available": suggestions.total_available,
                }
            },
        )
        return FlexibleResult(
            target=target,
            suggestions=suggestions,
            message=self.scarcity_message(suggestions, target.period, target.reference),
        )

    async def follow_up(
        self,
        user_id: str,
        feedback: str | None,
        last_time: str,
        target_date: str,
    ) -> FollowUpResult | None:
        """Alternatives after the user pushed back on an offered slot.

        Returns None when the feedback is not recognized.
        """
        feedback_type = detect_feedback(feedback)
        if feedback_type is None:
            return None
        if parse_iso_date(target_date) is None:
            return None

        candidates = self._candidates(ANY)
        if feedback_type == FeedbackType.TOO_EARLY:
            candidates = [s for s in candidates if s.time > last_time]
        elif feedback_type == FeedbackType.TOO_LATE:
            candidates = [s for s in candidates if s.time < last_time]
        else:
            candidates = [s for s in candidates if s.time != last_time]

        events = await self.get_events(user_id, target_date)
        options = [s for s in candidates if self.is_slot_available(events, target_date, s.time)][:2]
        if not options:
            return FollowUpResult(feedback_type, [], NO_ALTERNATIVES_MESSAGE)

        return FollowUpResult(feedback_type, options, self._follow_up_message(feedback_type, options))

    @staticmethod
    def _follow_up_message(feedback_type: str, options: list[SlotSuggestion]) -> str:
        first = options[0]
        if feedback_type == FeedbackType.TOO_EARLY:
            message = "😊 Ah, entendi! Que tal um horário mais tarde? "
            if first.period == AFTERNOON:
                message += f"Tenho às {first.time} na tarde que acabou de ficar disponível! "
            else:
                message += f"Tenho às {first.time} da manhã, é mais tarde mas ainda cedinho! "
        elif feedback_type == FeedbackType.TOO_LATE:
            suffix = " da manhã" if first.period == MORNING else ""
            message = f"😊 Claro! Que tal algo mais cedo? Tenho às {first.time}{suffix} que acabou de vagar! "
        else:
            message = f"😊 Claro! Tenho outras opções: às {first.time}"
            if len(options) > 1:
                message += f" ou às {options[1].time}"
            message += "! "

        if len(options) == 1:
            message += "É o único que tenho disponível, confirma comigo rapidinho? ⏰"
        else:
            message += "Mas o segundo está praticamente confirmado com outra pessoa! 👀"
        return message + "\n\nQual fica melhor pra você?"

    def sweep_cache(self) -> int:
        removed = self.cache.sweep()
        if removed:
            logger.info(f"Agenda cache sweep removed {removed} entries")
        return removed
