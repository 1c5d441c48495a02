import asyncio

from conftest import USER, FakeCalendar, FakeClock, FakeTransport

from app.config import Settings
from app.services.reminder_service import (
    ASK_PRESENCE_SUFFIX,
    LOOKING_FORWARD_SUFFIX,
    ReminderService,
)
from app.services.session_store import InMemorySessionStore


def _service(config=None, transport=None):
    clock = FakeClock()
    calendar = FakeCalendar(clock)
    transport = transport or FakeTransport()
    service = ReminderService(
        InMemorySessionStore(clock=clock),
        calendar,
        transport,
        config or Settings(_env_file=None),
        clock,
    )
    return service, calendar, transport, clock


class TestCheckAndSend:
    def test_day_ahead_reminder_asks_presence_once(self):
        service, calendar, transport, _ = _service()
        # 20h after the Monday 10:00 start
        event = calendar.add_event("2025-05-27", "06:00")

        async def scenario():
            first = await service.check_and_send()
            second = await service.check_and_send()
            return first, second, await service.list_pending()

        first, second, pending = asyncio.run(scenario())
        assert first["sent"] == 1
        assert first["items"] == [{"event_id": event.id, "user_id": USER, "hours": 24}]
        assert second["sent"] == 0

        texts = transport.texts_to(USER)
        assert len(texts) == 1
        assert "27/05/2025 às 06:00" in texts[0]
        assert texts[0].endswith(ASK_PRESENCE_SUFFIX)
        assert [p.event_id for p in pending] == [event.id]

    def test_short_lead_reminder_does_not_ask(self):
        service, calendar, transport, _ = _service(Settings(_env_file=None, reminder_hours=[2]))
        calendar.add_event("2025-05-26", "11:00")

        async def scenario():
            result = await service.check_and_send()
            return result, await service.list_pending()

        result, pending = asyncio.run(scenario())
        assert result["sent"] == 1
        assert transport.texts_to(USER)[0].endswith(LOOKING_FORWARD_SUFFIX)
        assert pending == []

    def test_event_outside_window_is_skipped(self):
        service, calendar, transport, _ = _service()
        calendar.add_event("2025-05-30", "10:00")
        assert asyncio.run(service.check_and_send())["sent"] == 0
        assert transport.sent == []

    def test_events_without_user_are_skipped(self):
        service, calendar, transport, _ = _service()
        calendar.add_event("2025-05-27", "06:00", user_id=None)
        assert asyncio.run(service.check_and_send())["sent"] == 0
        assert transport.sent == []

    def test_failed_delivery_is_retried(self):
        transport = FakeTransport(fail=True)
        service, calendar, _, _ = _service(transport=transport)
        calendar.add_event("2025-05-27", "06:00")

        async def scenario():
            failed = await service.check_and_send()
            transport.fail = False
            retried = await service.check_and_send()
            return failed, retried

        failed, retried = asyncio.run(scenario())
        assert failed["sent"] == 0
        assert retried["sent"] == 1
        assert len(transport.texts_to(USER)) == 2

    def test_disabled(self):
        service, calendar, transport, _ = _service(Settings(_env_file=None, reminders_enabled=False))
        calendar.add_event("2025-05-27", "06:00")
        assert asyncio.run(service.check_and_send()) == {"sent": 0, "items": []}
        assert transport.sent == []


class TestPresenceConfirmation:
    def test_process_confirmation_settles_pending(self):
        service, calendar, _, _ = _service()
        calendar.add_event("2025-05-27", "06:00")

        async def scenario():
            await service.check_and_send()
            before = await service.has_pending_confirmation(USER)
            settled = await service.process_confirmation(USER, True)
            after = await service.has_pending_confirmation(USER)
            again = await service.process_confirmation(USER, True)
            return before, settled, after, again

        assert asyncio.run(scenario()) == (True, True, False, False)

    def test_expired_confirmations_are_removed(self):
        service, calendar, _, clock = _service()
        calendar.add_event("2025-05-27", "06:00")

        async def scenario():
            await service.check_and_send()
            clock.advance(49 * 3600)
            removed = await service.cleanup_expired_confirmations()
            return removed, await service.list_pending()

        assert asyncio.run(scenario()) == (1, [])

    def test_sent_marks_dropped_after_event_start(self):
        service, calendar, _, clock = _service()
        calendar.add_event("2025-05-27", "06:00")

        async def scenario():
            await service.check_and_send()
            kept = await service.cleanup_sent()
            clock.advance(21 * 3600)
            dropped = await service.cleanup_sent()
            return kept, dropped

        assert asyncio.run(scenario()) == (0, 1)
