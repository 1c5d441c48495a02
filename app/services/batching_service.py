"""Per-user debounce queue.

Inbound messages wait in a queue until the user goes quiet, then the whole
batch is handed to ``dispatch`` once. Timers are plain ``loop.call_later``
handles, one per ``(user_id, purpose)``.
"""

import asyncio
import time
from typing import Awaitable, Callable

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger
from app.models import InboundMessage

logger = get_logger("batching_service")

DEBOUNCE = "debounce"
CONFIRMATION = "confirmation"

Dispatch = Callable[[str, list[InboundMessage]], Awaitable[None]]


class TimerRegistry:
    def __init__(self):
        self._handles: dict[tuple[str, str], asyncio.TimerHandle] = {}

    def arm(self, user_id: str, purpose: str, delay: float, callback: Callable[[], None]) -> None:
        """Cancel any timer of the same purpose, then schedule ``callback``."""
        key = (user_id, purpose)
        self.cancel(user_id, purpose)
        loop = asyncio.get_running_loop()
        self._handles[key] = loop.call_later(delay, self._fire, key, callback)

    def _fire(self, key: tuple[str, str], callback: Callable[[], None]) -> None:
        self._handles.pop(key, None)
        callback()

    def cancel(self, user_id: str, purpose: str) -> bool:
        handle = self._handles.pop((user_id, purpose), None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def is_armed(self, user_id: str, purpose: str) -> bool:
        return (user_id, purpose) in self._handles

    def active_count(self, user_id: str, purpose: str) -> int:
        return 1 if self.is_armed(user_id, purpose) else 0

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()


class MessageBatcher:
    def __init__(
        self,
        dispatch: Dispatch,
        has_pending_confirmation: Callable[[str], Awaitable[bool]],
        on_confirmation_timeout: Callable[[str], Awaitable[None]],
        config: Settings = default_settings,
        clock=time.time,
        timers: TimerRegistry | None = None,
    ):
        self.dispatch = dispatch
        self.has_pending_confirmation = has_pending_confirmation
        self.on_confirmation_timeout = on_confirmation_timeout
        self.settings = config
        self.clock = clock
        self.timers = timers or TimerRegistry()

        self._queues: dict[str, list[InboundMessage]] = {}
        self._last_message_time: dict[str, float] = {}
        self._typing_at: dict[str, float] = {}
        self._flushing: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    def compute_delay(self, user_id: str, now: float) -> float:
        typing_at = self._typing_at.get(user_id)
        if typing_at is not None and now - typing_at < self.settings.typing_window_seconds:
            return self.settings.debounce_typing_seconds

        previous = self._last_message_time.get(user_id)
        if previous is not None and now - previous < self.settings.burst_window_seconds:
            return self.settings.debounce_max_seconds

        return self.settings.debounce_base_seconds

    def enqueue(self, message: InboundMessage) -> float:
        user_id = message.user_id
        now = self.clock()
        # measured against the previous message, before recording this one
        delay = self.compute_delay(user_id, now)
        self._queues.setdefault(user_id, []).append(message)
        self._last_message_time[user_id] = now
        self._arm_debounce(user_id, delay)
        logger.debug(f"Queued message for {user_id}, flush in {delay}s")
        return delay

    def signal_typing(self, user_id: str) -> None:
        now = self.clock()
        self._typing_at[user_id] = now
        if self._queues.get(user_id):
            self._arm_debounce(user_id, self.compute_delay(user_id, now))

    def rearm(self, user_id: str) -> None:
        if self._queues.get(user_id):
            self._arm_debounce(user_id, self.compute_delay(user_id, self.clock()))

    def drain(self, user_id: str) -> list[InboundMessage]:
        return self._queues.pop(user_id, [])

    def requeue(self, user_id: str, messages: list[InboundMessage], front: bool = True) -> None:
        if not messages:
            return
        queue = self._queues.get(user_id, [])
        self._queues[user_id] = list(messages) + queue if front else queue + list(messages)

    def queued(self, user_id: str) -> list[InboundMessage]:
        return list(self._queues.get(user_id, []))

    def last_message_time(self, user_id: str) -> float | None:
        return self._last_message_time.get(user_id)

    def has_newer_message(self, user_id: str, since: float) -> bool:
        last = self._last_message_time.get(user_id)
        return last is not None and last > since

    def cancel(self, user_id: str) -> None:
        self.timers.cancel(user_id, DEBOUNCE)
        self.timers.cancel(user_id, CONFIRMATION)

    def is_flushing(self, user_id: str) -> bool:
        return user_id in self._flushing

    def _arm_debounce(self, user_id: str, delay: float) -> None:
        self.timers.arm(user_id, DEBOUNCE, delay, lambda: self._on_debounce(user_id))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _on_debounce(self, user_id: str) -> None:
        if user_id in self._flushing:
            self._arm_debounce(user_id, self.settings.debounce_base_seconds)
            return
        messages = self.drain(user_id)
        if not messages:
            return
        self._flushing.add(user_id)
        self._spawn(self._flush(user_id, messages))

    async def _flush(self, user_id: str, messages: list[InboundMessage]) -> None:
        self._flushing.add(user_id)
        try:
            if await self.has_pending_confirmation(user_id):
                logger.info(
                    "Flush deferred, waiting for confirmation",
                    extra={"context": {"user_id": user_id, "messages": len(messages)}},
                )
                self.requeue(user_id, messages, front=True)
                self.await_confirmation(user_id)
                return
            await self.dispatch(user_id, messages)
        except Exception as e:
            logger.error(
                f"Batch dispatch failed: {e}",
                extra={"context": {"user_id": user_id}},
                exc_info=True,
            )
        finally:
            self._flushing.discard(user_id)

    def await_confirmation(self, user_id: str, delay: float | None = None) -> None:
        """Hold the queue until the staged question is answered or times out."""
        if delay is None:
            delay = self.settings.confirmation_timeout_seconds
        self.timers.arm(user_id, CONFIRMATION, delay, lambda: self._on_confirmation_timer(user_id))

    def _on_confirmation_timer(self, user_id: str) -> None:
        if user_id in self._flushing:
            self.await_confirmation(user_id, self.settings.debounce_base_seconds)
            return
        self._flushing.add(user_id)
        self._spawn(self._expire_confirmation(user_id))

    async def _expire_confirmation(self, user_id: str) -> None:
        try:
            if await self.has_pending_confirmation(user_id):
                logger.info("Confirmation unanswered, clearing", extra={"context": {"user_id": user_id}})
                await self.on_confirmation_timeout(user_id)
        except Exception as e:
            logger.error(f"Confirmation timeout handling failed: {e}", extra={"context": {"user_id": user_id}})
        messages = self.drain(user_id)
        if messages:
            await self._flush(user_id, messages)
        else:
            self._flushing.discard(user_id)

    async def wait_idle(self) -> None:
        """Wait for in-flight flushes (tests and shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        self.timers.cancel_all()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
