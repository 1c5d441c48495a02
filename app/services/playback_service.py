import asyncio
import random
import re
import time
from typing import Callable

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.models import ConfirmationType, PendingResponse, StagedAction
from app.services.session_store import ModelRepository

logger = get_logger("playback_service")

INTERRUPTION_PROMPT = (
    "Você enviou uma nova mensagem enquanto eu respondia. Deseja que eu continue a resposta anterior? "
    "(Responda 'sim' para continuar ou 'não' para parar)."
)
RESUME_MESSAGE = "Ok, continuando a resposta anterior..."
DISCARD_MESSAGE = "Ok, descartei a resposta anterior. Pode me perguntar outra coisa se desejar."
CONTINUATION_UNCLEAR_MESSAGE = (
    "Não entendi sua confirmação. Responda com uma confirmação positiva como 'sim', 'beleza', 'ok' "
    "para continuar ou 'não' para parar."
)

SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")
PARAGRAPH_RE = re.compile(r"\n\s*\n")


def _split_sentences(paragraph: str, max_length: int) -> list[str]:
    groups: list[str] = []
    current = ""
    for sentence in SENTENCE_BOUNDARY_RE.split(paragraph):
        if not sentence:
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if current and len(candidate) > max_length:
            groups.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        groups.append(current)
    return groups


def segment_message(text: str | None, max_length: int = 300) -> list[str]:
    """Split a reply into WhatsApp-sized parts.

    Short paragraphs are packed together; a paragraph over ``max_length`` is
    split on sentence ends. A single sentence longer than the limit stays whole.
    """
    parts: list[str] = []
    current = ""
    for paragraph in PARAGRAPH_RE.split(text or ""):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        if len(paragraph) > max_length:
            if current:
                parts.append(current)
                current = ""
            parts.extend(_split_sentences(paragraph, max_length))
            continue
        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if current and len(candidate) > max_length:
            parts.append(current)
            current = paragraph
        else:
            current = candidate
    if current:
        parts.append(current)
    return parts


def calculate_typing_seconds(
    text: str,
    config: Settings = default_settings,
    rng: random.Random | None = None,
) -> float:
    rng = rng or random
    base = len(text or "") / config.typing_chars_per_minute * 60
    jitter = rng.uniform(1 - config.typing_jitter, 1 + config.typing_jitter)
    return min(max(base * jitter, config.typing_min_seconds), config.typing_max_seconds)


def part_gap_seconds(config: Settings = default_settings, rng: random.Random | None = None) -> float:
    rng = rng or random
    return rng.uniform(config.part_gap_min_seconds, config.part_gap_max_seconds)


class PlaybackEngine:
    """Delivers replies part by part with typing pauses.

    A newer inbound message between parts pauses delivery and asks whether to
    continue; the answer comes back through ``resume`` or ``discard``.
    """

    def __init__(
        self,
        transport,
        pending: ModelRepository[PendingResponse],
        has_newer_message: Callable[[str, float], bool],
        config: Settings = default_settings,
        clock=time.time,
        sleep=asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.transport = transport
        self.pending = pending
        self.has_newer_message = has_newer_message
        self.settings = config
        self.clock = clock
        self.sleep = sleep
        self.rng = rng or random.Random()

    async def start(self, user_id: str, text: str) -> None:
        parts = segment_message(text, self.settings.segment_max_length)
        if not parts:
            return
        state = PendingResponse(
            user_id=user_id,
            full_response=text,
            remaining_parts=parts,
            last_interaction=self.clock(),
        )
        await self.pending.save(user_id, state)
        await self.play_next(user_id)

    async def play_next(self, user_id: str) -> None:
        while True:
            state = await self.pending.get(user_id)
            if state is None or state.is_paused:
                return
            if not state.remaining_parts:
                if not state.is_waiting_for_confirmation:
                    await self.pending.delete(user_id)
                return

            if state.sent_parts and self.has_newer_message(user_id, state.last_interaction):
                logger.info("Playback interrupted by newer message", extra={"context": {"user_id": user_id}})
                state.is_paused = True
                state.is_waiting_for_confirmation = True
                state.confirmation_type = ConfirmationType.NONE
                await self.pending.save(user_id, state)
                await self.transport.send_text(user_id, INTERRUPTION_PROMPT)
                return

            part = state.remaining_parts[0]
            await self.transport.set_typing(user_id, True)
            await self.sleep(calculate_typing_seconds(part, self.settings, self.rng))
            sent = await self.transport.send_text(user_id, part)
            await self.transport.set_typing(user_id, False)

            if not sent:
                logger.error(
                    "Playback aborted, part could not be delivered",
                    extra={"context": {"user_id": user_id, "part_index": state.current_part_index}},
                )
                await self.pending.delete(user_id)
                return

            state.sent_parts.append(part)
            state.remaining_parts.pop(0)
            state.current_part_index += 1
            state.last_interaction = self.clock()
            await self.pending.save(user_id, state)

            if state.remaining_parts:
                await self.sleep(part_gap_seconds(self.settings, self.rng))

    async def resume(self, user_id: str) -> None:
        state = await self.pending.get(user_id)
        if state is None:
            return
        state.is_paused = False
        state.is_waiting_for_confirmation = False
        state.last_interaction = self.clock()
        await self.pending.save(user_id, state)
        await self.transport.send_text(user_id, RESUME_MESSAGE)
        await self.play_next(user_id)

    async def discard(self, user_id: str) -> None:
        await self.pending.delete(user_id)
        await self.transport.send_text(user_id, DISCARD_MESSAGE)

    async def clear(self, user_id: str) -> None:
        await self.pending.delete(user_id)

    async def deliver(self, user_id: str, text: str) -> bool:
        """Send one message with a typing pause, outside of any playback."""
        await self.transport.set_typing(user_id, True)
        await self.sleep(calculate_typing_seconds(text, self.settings, self.rng))
        sent = await self.transport.send_text(user_id, text)
        await self.transport.set_typing(user_id, False)
        return sent

    async def stage_confirmation(
        self,
        user_id: str,
        prompt: str,
        confirmation_type: ConfirmationType,
        details: StagedAction,
    ) -> None:
        state = PendingResponse(
            user_id=user_id,
            full_response=prompt,
            sent_parts=[prompt],
            remaining_parts=[],
            current_part_index=1,
            is_waiting_for_confirmation=True,
            confirmation_type=confirmation_type,
            event_details=details,
            last_interaction=self.clock(),
        )
        await self.pending.save(user_id, state)
        await self.transport.send_text(user_id, prompt)
