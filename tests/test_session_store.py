import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import FakeClock

from app.config import Settings
from app.models import InterventionPause
from app.services.session_store import (
    InMemorySessionStore,
    ModelRepository,
    RedisSessionStore,
    create_session_store,
)


class TestInMemorySessionStore:
    def test_get_set_delete(self):
        store = InMemorySessionStore(clock=FakeClock())

        async def scenario():
            await store.set("ns", "a", "1")
            value = await store.get("ns", "a")
            await store.delete("ns", "a")
            return value, await store.get("ns", "a")

        assert asyncio.run(scenario()) == ("1", None)

    def test_ttl_expiry(self):
        clock = FakeClock()
        store = InMemorySessionStore(clock=clock)

        async def scenario():
            await store.set("ns", "a", "1", ttl_seconds=10)
            clock.advance(9)
            alive = await store.get("ns", "a")
            clock.advance(1)
            return alive, await store.get("ns", "a")

        assert asyncio.run(scenario()) == ("1", None)

    def test_keys_are_namespaced(self):
        clock = FakeClock()
        store = InMemorySessionStore(clock=clock)

        async def scenario():
            await store.set("ns", "a", "1")
            await store.set("ns", "b", "2", ttl_seconds=5)
            await store.set("other", "c", "3")
            clock.advance(5)
            return sorted(await store.keys("ns"))

        assert asyncio.run(scenario()) == ["a"]

    def test_set_if_absent(self):
        clock = FakeClock()
        store = InMemorySessionStore(clock=clock)

        async def scenario():
            first = await store.set_if_absent("dedup", "m1", "1", 60)
            second = await store.set_if_absent("dedup", "m1", "1", 60)
            clock.advance(60)
            third = await store.set_if_absent("dedup", "m1", "1", 60)
            return first, second, third

        assert asyncio.run(scenario()) == (True, False, True)


class TestModelRepository:
    def test_round_trip_and_all(self):
        repo = ModelRepository(InMemorySessionStore(clock=FakeClock()), "intervention", InterventionPause)
        pause = InterventionPause(is_paused=True, paused_until=100.0, pause_level=2)

        async def scenario():
            await repo.save("global", pause)
            loaded = await repo.get("global")
            everything = await repo.all()
            await repo.delete("global")
            return loaded, everything, await repo.get("global")

        loaded, everything, gone = asyncio.run(scenario())
        assert loaded == pause
        assert everything == {"global": pause}
        assert gone is None


async def _scan(*keys):
    for key in keys:
        yield key


class TestRedisSessionStore:
    def setup_method(self):
        self.client = MagicMock()
        self.client.get = AsyncMock(return_value="v")
        self.client.set = AsyncMock(return_value=True)
        self.client.delete = AsyncMock()
        self.store = RedisSessionStore(self.client)

    def test_keys_are_prefixed(self):
        async def scenario():
            value = await self.store.get("conversation", "u1")
            await self.store.set("conversation", "u1", "x", ttl_seconds=30)
            await self.store.delete("conversation", "u1")
            return value

        assert asyncio.run(scenario()) == "v"
        self.client.get.assert_awaited_once_with("fotoagenda:conversation:u1")
        self.client.set.assert_awaited_once_with("fotoagenda:conversation:u1", "x", ex=30)
        self.client.delete.assert_awaited_once_with("fotoagenda:conversation:u1")

    def test_set_if_absent_uses_nx(self):
        self.client.set = AsyncMock(return_value=None)
        assert asyncio.run(self.store.set_if_absent("dedup", "m1", "1", 600)) is False
        self.client.set.assert_awaited_once_with("fotoagenda:dedup:m1", "1", ex=600, nx=True)

    def test_keys_strip_prefix(self):
        self.client.scan_iter = MagicMock(return_value=_scan("fotoagenda:ns:a", "fotoagenda:ns:b"))
        assert asyncio.run(self.store.keys("ns")) == ["a", "b"]
        self.client.scan_iter.assert_called_once_with(match="fotoagenda:ns:*")


class TestCreateSessionStore:
    def test_memory_default(self):
        assert isinstance(create_session_store(Settings(_env_file=None)), InMemorySessionStore)

    def test_unknown_backend_falls_back_to_memory(self):
        config = Settings(_env_file=None, session_store_backend="dynamo")
        assert isinstance(create_session_store(config), InMemorySessionStore)

    def test_redis_backend(self):
        config = Settings(_env_file=None, session_store_backend="redis", redis_url="redis://cache:6379/1")
        with patch("app.services.session_store.redis_async.from_url") as from_url:
            store = create_session_store(config)

        assert isinstance(store, RedisSessionStore)
        assert store.client is from_url.return_value
        assert from_url.call_args.args == ("redis://cache:6379/1",)
        assert from_url.call_args.kwargs["decode_responses"] is True
