import random
from datetime import datetime, timedelta, timezone

import pytest

from app.config import Settings
from app.models import CalendarEvent, InboundMessage
from app.services.batching_service import TimerRegistry
from app.services.calendar_service import CalendarClient, CalendarProviderError
from app.services.chatflow_service import WhatsAppTransport
from app.services.date_service import local_datetime
from app.services.llm.base import LLMError, LLMProvider, LLMResponse
from app.services.message_service import ConversationOrchestrator
from app.services.session_store import InMemorySessionStore

USER = "5511988887777@s.whatsapp.net"
OTHER_USER = "5511977776666@s.whatsapp.net"
ADMIN = "5511999990000@s.whatsapp.net"

# Monday 2025-05-26 10:00 in UTC-3
START_TIME = datetime(2025, 5, 26, 13, 0, tzinfo=timezone.utc).timestamp()


class FakeClock:
    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeTimers(TimerRegistry):
    """Timers that only fire when the test says so."""

    def __init__(self):
        super().__init__()
        self.armed = {}
        self.history = []

    def arm(self, user_id, purpose, delay, callback):
        self.armed[(user_id, purpose)] = (delay, callback)
        self.history.append((user_id, purpose, delay))

    def cancel(self, user_id, purpose):
        return self.armed.pop((user_id, purpose), None) is not None

    def is_armed(self, user_id, purpose):
        return (user_id, purpose) in self.armed

    def cancel_all(self):
        self.armed.clear()

    def delay(self, user_id, purpose):
        return self.armed[(user_id, purpose)][0]

    def fire(self, user_id, purpose):
        _, callback = self.armed.pop((user_id, purpose))
        callback()


class FakeTransport(WhatsAppTransport):
    def __init__(self, admin_id=ADMIN, fail=False):
        self.admin_id = admin_id
        self.fail = fail
        self.sent = []
        self.typing = []
        self.media = b"fake-audio"

    async def send_text(self, user_id, text):
        self.sent.append((user_id, text))
        return not self.fail

    async def set_typing(self, user_id, on):
        self.typing.append((user_id, on))

    def get_admin_id(self):
        return self.admin_id

    async def download_media(self, url):
        return self.media

    def texts_to(self, user_id):
        return [text for recipient, text in self.sent if recipient == user_id]


class FakeCalendar(CalendarClient):
    def __init__(self, clock=None):
        self.clock = clock or FakeClock()
        self.events = {}
        self.fail = False
        self.created = []
        self.updated = []
        self.deleted = []
        self.range_calls = 0
        self._next_id = 1

    def add_event(self, day, hhmm, minutes=60, user_id=USER, summary="Ensaio Fotográfico"):
        start = local_datetime(day, hhmm)
        event = CalendarEvent(
            id=f"evt-{self._next_id}",
            summary=summary,
            start=start,
            end=start + timedelta(minutes=minutes),
            user_id=user_id,
        )
        self._next_id += 1
        self.events[event.id] = event
        return event

    def _check(self):
        if self.fail:
            raise CalendarProviderError("calendar unavailable")

    def _overlapping(self, start, end):
        return sorted((e for e in self.events.values() if e.overlaps(start, end)), key=lambda e: e.start)

    async def create_event(self, details):
        self._check()
        self.created.append(details)
        event = CalendarEvent(
            id=f"evt-{self._next_id}",
            summary=details.summary,
            start=details.start,
            end=details.end,
            user_id=details.user_id,
            description=details.description,
        )
        self._next_id += 1
        self.events[event.id] = event
        return event

    async def list_events_for_user(self, user_id, start, end):
        self._check()
        return [e for e in self._overlapping(start, end) if e.user_id == user_id]

    async def list_events_in_range(self, start, end):
        self._check()
        self.range_calls += 1
        return self._overlapping(start, end)

    async def update_event(self, event_id, start, end):
        self._check()
        self.updated.append((event_id, start, end))
        event = self.events[event_id].model_copy(update={"start": start, "end": end})
        self.events[event_id] = event
        return event

    async def delete_event(self, event_id):
        self._check()
        self.deleted.append(event_id)
        self.events.pop(event_id, None)

    async def list_upcoming_events(self, max_results=50):
        self._check()
        now = self.clock()
        upcoming = [e for e in self.events.values() if e.end.timestamp() > now]
        return sorted(upcoming, key=lambda e: e.start)[:max_results]


class FakeLLM(LLMProvider):
    """Scripted replies; the confirmation classifier is offline unless given a payload."""

    def __init__(self, replies=None, confirmation=None):
        self.replies = list(replies or [])
        self.confirmation = confirmation
        self.reply_error = None
        self.transcript = ""
        self.calls = []

    def generate(self, messages, model=None, temperature=0.7, max_tokens=500, timeout_seconds=None):
        self.calls.append(messages)
        if messages[0]["role"] != "system":
            if self.confirmation is None:
                raise LLMError("classifier offline", status_code=503)
            return LLMResponse(content=self.confirmation, model=model or "fake")
        if self.reply_error is not None:
            raise self.reply_error
        content = self.replies.pop(0) if self.replies else "Claro! Como posso ajudar?"
        return LLMResponse(content=content, model=model or "fake")

    def transcribe_audio(self, *, audio_bytes, filename, mime_type=None, language=None):
        return self.transcript

    @property
    def reply_calls(self):
        return [m for m in self.calls if m[0]["role"] == "system"]


async def no_sleep(_seconds):
    return None


def make_message(user_id=USER, content="oi", timestamp=START_TIME, message_id=None, **kwargs):
    return InboundMessage(user_id=user_id, content=content, timestamp=timestamp, message_id=message_id, **kwargs)


@pytest.fixture
def mock_env(monkeypatch):
    """Set test environment variables."""
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("CHATFLOW_TOKEN", "test-token")
    monkeypatch.setenv("CHATFLOW_INSTANCE_ID", "test-instance")
    monkeypatch.setenv("ADMIN_WHATSAPP_ID", ADMIN)
    monkeypatch.setenv("SESSION_STORE_BACKEND", "memory")


@pytest.fixture
def test_settings():
    return Settings(_env_file=None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def calendar(clock):
    return FakeCalendar(clock)


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def orchestrator(transport, calendar, llm, store, test_settings, clock, timers):
    return ConversationOrchestrator(
        transport=transport,
        calendar=calendar,
        llm=llm,
        store=store,
        config=test_settings,
        clock=clock,
        sleep=no_sleep,
        rng=random.Random(7),
        timers=timers,
    )
