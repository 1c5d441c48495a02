import asyncio

from conftest import ADMIN, START_TIME, USER, FakeClock, FakeTransport

from app.config import Settings
from app.services.intervention_service import (
    EXPIRED_MESSAGE,
    EXPIRED_SWEEP_MESSAGE,
    PAUSE_AT_MAX_MESSAGE,
    PAUSE_EXTENDED_MESSAGE,
    PAUSE_MAXED_MESSAGE,
    PAUSE_STARTED_MESSAGE,
    InterventionController,
)
from app.services.session_store import InMemorySessionStore


def _controller(admin_id=ADMIN):
    clock = FakeClock()
    transport = FakeTransport(admin_id=admin_id)
    controller = InterventionController(InMemorySessionStore(clock=clock), transport, Settings(_env_file=None), clock)
    return controller, transport, clock


class TestIsAdmin:
    def test_exact_id(self):
        controller, _, _ = _controller()
        assert controller.is_admin(ADMIN) is True

    def test_compares_digits_only(self):
        controller, _, _ = _controller()
        assert controller.is_admin("5511999990000@c.us") is True

    def test_other_user(self):
        controller, _, _ = _controller()
        assert controller.is_admin(USER) is False

    def test_no_admin_configured(self):
        controller, _, _ = _controller(admin_id=None)
        assert controller.is_admin(ADMIN) is False


class TestEscalationLadder:
    def test_first_message_pauses_ten_minutes(self):
        controller, transport, clock = _controller()

        async def scenario():
            message = await controller.escalate()
            return message, await controller.get_state()

        message, state = asyncio.run(scenario())
        assert message == PAUSE_STARTED_MESSAGE.format(minutes=10)
        assert state.pause_level == 1
        assert state.paused_until == clock() + 600
        assert transport.texts_to(ADMIN) == [message]

    def test_ladder_climbs_to_max(self):
        controller, transport, clock = _controller()

        async def scenario():
            messages = [await controller.escalate()]
            clock.advance(60)
            messages.append(await controller.escalate())
            second = await controller.get_state()
            clock.advance(60)
            messages.append(await controller.escalate())
            clock.advance(60)
            messages.append(await controller.escalate())
            return messages, second, await controller.get_state()

        messages, second, final = asyncio.run(scenario())
        assert messages[1] == PAUSE_EXTENDED_MESSAGE.format(minutes=45)
        assert second.pause_level == 2
        assert second.paused_until == START_TIME + 60 + 45 * 60
        assert messages[2] == PAUSE_MAXED_MESSAGE.format(minutes=60)
        assert messages[3] == PAUSE_AT_MAX_MESSAGE.format(remaining=59)
        assert final.pause_level == 3
        assert len(transport.texts_to(ADMIN)) == 4

    def test_escalate_after_expiry_restarts(self):
        controller, _, clock = _controller()

        async def scenario():
            await controller.escalate()
            await controller.escalate()
            clock.advance(46 * 60)
            await controller.escalate()
            return await controller.get_state()

        assert asyncio.run(scenario()).pause_level == 1

    def test_escalate_after_unnoticed_expiry_announces_it_first(self):
        controller, transport, clock = _controller()

        async def scenario():
            await controller.escalate()
            clock.advance(11 * 60)
            return await controller.escalate()

        message = asyncio.run(scenario())
        assert message == PAUSE_STARTED_MESSAGE.format(minutes=10)
        assert transport.texts_to(ADMIN)[-2:] == [EXPIRED_MESSAGE, message]


class TestExpiry:
    def test_pause_blocks_until_expiry(self):
        controller, transport, clock = _controller()

        async def scenario():
            await controller.escalate()
            blocked = await controller.intercept(USER)
            clock.advance(10 * 60 + 1)
            allowed = await controller.intercept(USER)
            return blocked, allowed

        blocked, allowed = asyncio.run(scenario())
        assert blocked is True
        assert allowed is False
        assert transport.texts_to(ADMIN)[-1] == EXPIRED_MESSAGE
        assert transport.texts_to(USER) == []

    def test_admin_messages_are_consumed(self):
        controller, _, _ = _controller()
        assert asyncio.run(controller.intercept(ADMIN)) is True

    def test_unpaused_user_passes(self):
        controller, transport, _ = _controller()
        assert asyncio.run(controller.intercept(USER)) is False
        assert transport.sent == []

    def test_sweep_clears_expired_pause(self):
        controller, transport, clock = _controller()

        async def scenario():
            await controller.escalate()
            early = await controller.sweep()
            clock.advance(11 * 60)
            late = await controller.sweep()
            return early, late, await controller.is_paused()

        early, late, paused = asyncio.run(scenario())
        assert early is False
        assert late is True
        assert paused is False
        assert transport.texts_to(ADMIN)[-1] == EXPIRED_SWEEP_MESSAGE

    def test_sweep_without_pause(self):
        controller, transport, _ = _controller()
        assert asyncio.run(controller.sweep()) is False
        assert transport.sent == []

    def test_clear(self):
        controller, _, _ = _controller()

        async def scenario():
            await controller.escalate()
            await controller.clear()
            return await controller.is_paused()

        assert asyncio.run(scenario()) is False
