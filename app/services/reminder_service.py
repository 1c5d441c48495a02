"""Appointment reminders sent ahead of each bot-booked event.

Reminders with a lead of 24h or more ask the client to confirm presence;
the answer is picked up by the orchestrator before normal processing.
"""

import time

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.models import CalendarEvent, PendingReminderConfirmation, SentReminder
from app.services.calendar_service import CalendarClient
from app.services.chatflow_service import WhatsAppTransport
from app.services.date_service import format_date_br, format_time
from app.services.session_store import ModelRepository, SessionStore

logger = get_logger("reminder_service")

CONFIRMATIONS_NAMESPACE = "reminder_confirmation"
SENT_NAMESPACE = "reminder_sent"

REMINDER_MESSAGE = "🔔 Lembrete: Você tem um ensaio fotográfico marcado para {day} às {t}"
ASK_PRESENCE_SUFFIX = (
    "\n\nPor favor, confirme sua presença! Pode responder com \"sim\", \"confirmo\", \"beleza\" ou "
    "qualquer confirmação positiva. 😊"
)
LOOKING_FORWARD_SUFFIX = "\n\nEstamos ansiosos para recebê-lo(a)! 📸✨"

PRESENCE_CONFIRMED_REPLIES = [
    "Perfeito! Obrigado por confirmar. Estamos ansiosos para recebê-lo! 📸✨",
    "Ótimo! Confirmação recebida. Até breve! 😊",
    "Maravilha! Sua presença está confirmada. Nos vemos em breve! 🎉",
    "Excelente! Obrigado pela confirmação. Será um prazer recebê-lo! 📷",
]
PRESENCE_DECLINED_REPLY = "Entendi, obrigado por me avisar. Caso precise remarcar, é só me chamar! 😊"
PRESENCE_UNCLEAR_REPLY = (
    "Não entendi se você está confirmando ou cancelando sua presença no ensaio. Pode responder com 'sim' "
    "para confirmar ou 'não' para cancelar? 😊"
)


def sent_key(event_id: str, hours: int) -> str:
    return f"{event_id}_{hours}h"


class ReminderService:
    def __init__(
        self,
        store: SessionStore,
        calendar: CalendarClient,
        transport: WhatsAppTransport,
        config: Settings = default_settings,
        clock=time.time,
    ):
        self.confirmations = ModelRepository(store, CONFIRMATIONS_NAMESPACE, PendingReminderConfirmation)
        self.sent = ModelRepository(store, SENT_NAMESPACE, SentReminder)
        self.calendar = calendar
        self.transport = transport
        self.settings = config
        self.clock = clock

    async def _send_reminder(self, event: CalendarEvent, hours: int) -> bool:
        day, t = format_date_br(event.start), format_time(event.start)
        message = REMINDER_MESSAGE.format(day=day, t=t)
        asks_presence = hours >= self.settings.reminder_confirmation_min_hours
        message += ASK_PRESENCE_SUFFIX if asks_presence else LOOKING_FORWARD_SUFFIX

        if not await self.transport.send_text(event.user_id, message):
            logger.warning(
                "Reminder not delivered",
                extra={"context": {"user_id": event.user_id, "event_id": event.id, "hours": hours}},
            )
            return False

        logger.info(
            f"Reminder sent {hours}h before",
            extra={"context": {"user_id": event.user_id, "event_id": event.id}},
        )
        if asks_presence:
            await self.confirmations.save(
                event.id,
                PendingReminderConfirmation(
                    user_id=event.user_id,
                    event_id=event.id,
                    sent_at=self.clock(),
                    event_date=day,
                    event_time=t,
                ),
            )
        return True

    async def check_and_send(self) -> dict:
        """Send every reminder whose window has opened. Each (event, lead) is sent once."""
        if not self.settings.reminders_enabled:
            return {"sent": 0, "items": []}

        now = self.clock()
        items = []
        events = await self.calendar.list_upcoming_events(self.settings.reminder_lookahead_events)
        for event in events:
            if not event.user_id:
                continue
            start = event.start.timestamp()
            for hours in self.settings.reminder_hours:
                if not (start - hours * 3600 <= now <= start):
                    continue
                key = sent_key(event.id, hours)
                if await self.sent.get(key) is not None:
                    continue
                if await self._send_reminder(event, hours):
                    await self.sent.save(key, SentReminder(event_id=event.id, hours=hours, event_start=start))
                    items.append({"event_id": event.id, "user_id": event.user_id, "hours": hours})

        await self.cleanup_expired_confirmations()
        await self.cleanup_sent()
        return {"sent": len(items), "items": items}

    async def has_pending_confirmation(self, user_id: str) -> bool:
        return any(item.user_id == user_id for item in await self.list_pending())

    async def process_confirmation(self, user_id: str, confirmed: bool) -> bool:
        """Settle the user's pending presence confirmation, if any."""
        for event_id, item in (await self.confirmations.all()).items():
            if item.user_id != user_id:
                continue
            logger.info(
                "Presence confirmed" if confirmed else "Presence declined",
                extra={"context": {"user_id": user_id, "event_id": event_id}},
            )
            await self.confirmations.delete(event_id)
            return True
        return False

    async def cleanup_expired_confirmations(self) -> int:
        ttl = self.settings.reminder_confirmation_ttl_hours * 3600
        now = self.clock()
        removed = 0
        for event_id, item in (await self.confirmations.all()).items():
            if now - item.sent_at > ttl:
                await self.confirmations.delete(event_id)
                removed += 1
        if removed:
            logger.info(f"Removed {removed} expired reminder confirmations")
        return removed

    async def cleanup_sent(self) -> int:
        now = self.clock()
        removed = 0
        for key, item in (await self.sent.all()).items():
            if item.event_start < now:
                await self.sent.delete(key)
                removed += 1
        return removed

    async def list_pending(self) -> list[PendingReminderConfirmation]:
        return list((await self.confirmations.all()).values())
