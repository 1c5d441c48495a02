"""Per-user session state behind a small key/value interface.

Everything the orchestrator keeps between messages (conversation records,
pending responses, the intervention pause, reminder bookkeeping) goes through
a ``SessionStore`` as JSON strings. The in-memory backend is the default; the
Redis backend lets several workers share the same state.
"""

import time
from abc import ABC, abstractmethod
from typing import Generic, Type, TypeVar

import redis.asyncio as redis_async
from pydantic import BaseModel

from app.config import Settings, settings as default_settings
from app.logging_config import get_logger

logger = get_logger("session_store")

ModelT = TypeVar("ModelT", bound=BaseModel)


class SessionStore(ABC):
    @abstractmethod
    async def get(self, namespace: str, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, namespace: str, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> None: ...

    @abstractmethod
    async def keys(self, namespace: str) -> list[str]: ...

    @abstractmethod
    async def set_if_absent(self, namespace: str, key: str, value: str, ttl_seconds: int) -> bool:
        """Atomically set ``key`` unless present. Returns True if it was set."""


class InMemorySessionStore(SessionStore):
    def __init__(self, clock=time.time):
        self._data: dict[tuple[str, str], tuple[str, float | None]] = {}
        self._clock = clock

    def _live(self, namespace: str, key: str) -> str | None:
        entry = self._data.get((namespace, key))
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[(namespace, key)]
            return None
        return value

    async def get(self, namespace: str, key: str) -> str | None:
        return self._live(namespace, key)

    async def set(self, namespace: str, key: str, value: str, ttl_seconds: int | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[(namespace, key)] = (value, expires_at)

    async def delete(self, namespace: str, key: str) -> None:
        self._data.pop((namespace, key), None)

    async def keys(self, namespace: str) -> list[str]:
        candidates = [key for (ns, key) in list(self._data) if ns == namespace]
        return [key for key in candidates if self._live(namespace, key) is not None]

    async def set_if_absent(self, namespace: str, key: str, value: str, ttl_seconds: int) -> bool:
        if self._live(namespace, key) is not None:
            return False
        await self.set(namespace, key, value, ttl_seconds)
        return True


class RedisSessionStore(SessionStore):
    def __init__(self, client, prefix: str = "fotoagenda"):
        self.client = client
        self.prefix = prefix

    def _key(self, namespace: str, key: str) -> str:
        return f"{self.prefix}:{namespace}:{key}"

    async def get(self, namespace: str, key: str) -> str | None:
        return await self.client.get(self._key(namespace, key))

    async def set(self, namespace: str, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self.client.set(self._key(namespace, key), value, ex=ttl_seconds)

    async def delete(self, namespace: str, key: str) -> None:
        await self.client.delete(self._key(namespace, key))

    async def keys(self, namespace: str) -> list[str]:
        head = f"{self.prefix}:{namespace}:"
        found = []
        async for full_key in self.client.scan_iter(match=f"{head}*"):
            found.append(full_key[len(head):])
        return found

    async def set_if_absent(self, namespace: str, key: str, value: str, ttl_seconds: int) -> bool:
        return bool(await self.client.set(self._key(namespace, key), value, ex=ttl_seconds, nx=True))


def create_session_store(config: Settings = default_settings) -> SessionStore:
    backend = (config.session_store_backend or "memory").strip().lower()
    if backend == "redis":
        client = redis_async.from_url(
            config.redis_url,
            decode_responses=True,
            socket_connect_timeout=config.redis_socket_timeout_seconds,
            socket_timeout=config.redis_socket_timeout_seconds,
        )
        logger.info("Using Redis session store", extra={"context": {"url": config.redis_url}})
        return RedisSessionStore(client)
    if backend != "memory":
        logger.warning(f"Unknown session store backend '{backend}', using memory")
    return InMemorySessionStore()


class ModelRepository(Generic[ModelT]):
    """Typed view of one store namespace holding pydantic models."""

    def __init__(self, store: SessionStore, namespace: str, model: Type[ModelT]):
        self.store = store
        self.namespace = namespace
        self.model = model

    async def get(self, key: str) -> ModelT | None:
        raw = await self.store.get(self.namespace, key)
        if raw is None:
            return None
        return self.model.model_validate_json(raw)

    async def save(self, key: str, value: ModelT, ttl_seconds: int | None = None) -> None:
        await self.store.set(self.namespace, key, value.model_dump_json(), ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.store.delete(self.namespace, key)

    async def all(self) -> dict[str, ModelT]:
        items: dict[str, ModelT] = {}
        for key in await self.store.keys(self.namespace):
            value = await self.get(key)
            if value is not None:
                items[key] = value
        return items
