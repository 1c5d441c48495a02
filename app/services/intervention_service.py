import time

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.models import InterventionPause
from app.services.chatflow_service import WhatsAppTransport, digits_only
from app.services.session_store import ModelRepository, SessionStore

logger = get_logger("intervention_service")

NAMESPACE = "intervention"
GLOBAL_KEY = "global"

PAUSE_STARTED_MESSAGE = "🤖 Bot pausado por intervenção. Pausa inicial de {minutes} minutos."
PAUSE_EXTENDED_MESSAGE = "🤖 Pausa do bot estendida. Nova duração: {minutes} minutos."
PAUSE_MAXED_MESSAGE = "🤖 Pausa do bot estendida para a duração máxima: {minutes} minutos."
PAUSE_AT_MAX_MESSAGE = "🤖 Bot já está na duração máxima de pausa ({remaining} min restantes)."
EXPIRED_MESSAGE = "🤖 Pausa de intervenção expirou. Bot reativado."
EXPIRED_SWEEP_MESSAGE = "🤖 Pausa de intervenção expirou. Bot reativado automaticamente."


class InterventionController:
    """Global bot pause driven by messages from the admin number.

    Each admin message climbs one rung of the pause ladder (10, 45, 60 minutes
    by default). While the pause is active every other user is ignored.
    """

    def __init__(
        self,
        store: SessionStore,
        transport: WhatsAppTransport,
        config: Settings = default_settings,
        clock=time.time,
    ):
        self.repo = ModelRepository(store, NAMESPACE, InterventionPause)
        self.transport = transport
        self.settings = config
        self.clock = clock

    def is_admin(self, user_id: str) -> bool:
        admin_id = self.transport.get_admin_id()
        if not admin_id:
            return False
        admin_digits = digits_only(admin_id.split("@", 1)[0])
        return bool(admin_digits) and digits_only(user_id.split("@", 1)[0]) == admin_digits

    async def get_state(self) -> InterventionPause:
        return await self.repo.get(GLOBAL_KEY) or InterventionPause()

    async def is_paused(self) -> bool:
        state = await self.get_state()
        return state.is_active(self.clock())

    async def _notify_admin(self, text: str) -> None:
        admin_id = self.transport.get_admin_id()
        if admin_id:
            await self.transport.send_text(admin_id, text)

    async def escalate(self) -> str:
        """Start or extend the pause. Returns the acknowledgement sent to the admin."""
        await self.check_expired()
        now = self.clock()
        state = await self.get_state()
        durations = self.settings.pause_durations_minutes
        max_level = len(durations)

        if not state.is_active(now):
            level = 1
            message = PAUSE_STARTED_MESSAGE.format(minutes=durations[0])
        elif state.pause_level >= max_level:
            remaining = round(state.remaining_minutes(now))
            message = PAUSE_AT_MAX_MESSAGE.format(remaining=remaining)
            logger.info("Intervention pause already at maximum", extra={"context": {"remaining_minutes": remaining}})
            await self._notify_admin(message)
            return message
        else:
            level = state.pause_level + 1
            template = PAUSE_MAXED_MESSAGE if level == max_level else PAUSE_EXTENDED_MESSAGE
            message = template.format(minutes=durations[level - 1])

        state = InterventionPause(
            is_paused=True,
            paused_until=now + durations[level - 1] * 60,
            pause_level=level,
        )
        await self.repo.save(GLOBAL_KEY, state)
        logger.info(
            f"Intervention pause level {level}",
            extra={"context": {"pause_level": level, "paused_until": state.paused_until}},
        )
        await self._notify_admin(message)
        return message

    async def clear(self) -> None:
        await self.repo.delete(GLOBAL_KEY)
        logger.info("Intervention pause cleared")

    async def _expire(self, message: str) -> bool:
        state = await self.repo.get(GLOBAL_KEY)
        if state is None or not state.is_paused or state.is_active(self.clock()):
            return False
        await self.clear()
        await self._notify_admin(message)
        return True

    async def check_expired(self) -> bool:
        """Lazy expiry on the next inbound message."""
        return await self._expire(EXPIRED_MESSAGE)

    async def sweep(self) -> bool:
        """Periodic expiry, run by the background worker."""
        return await self._expire(EXPIRED_SWEEP_MESSAGE)

    async def intercept(self, user_id: str) -> bool:
        """True when the message must not reach the rest of the pipeline."""
        if self.is_admin(user_id):
            await self.escalate()
            return True
        await self.check_expired()
        if await self.is_paused():
            logger.debug(f"Dropping message from {user_id}, bot paused")
            return True
        return False
