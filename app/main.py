import asyncio
import os
from typing import Awaitable, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.logging_config import get_logger, setup_logging
from app.routers import admin, reminders, webhook
from app.services.message_service import get_orchestrator, shutdown_orchestrator

setup_logging(settings.log_level)

app = FastAPI(
    title="Fotoagenda API",
    description="WhatsApp scheduling assistant for a photography studio",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(reminders.router)
app.include_router(admin.router)

worker_logger = get_logger("workers")
_worker_tasks: list[asyncio.Task] = []


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _are_workers_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("BACKGROUND_WORKERS_ENABLED"), default=True)


async def _worker_loop(name: str, interval_seconds: float, job: Callable[[], Awaitable[object]]) -> None:
    interval_seconds = max(interval_seconds, 0.1)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            result = await job()
            if result:
                worker_logger.info(f"{name} worker ran", extra={"context": {"worker": name, "result": result}})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error(
                f"{name} worker loop failed",
                extra={"context": {"worker": name, "error": str(exc)}},
            )


async def _reminder_job():
    result = await get_orchestrator().reminders.check_and_send()
    return result if result["sent"] else None


async def _agenda_cache_job():
    return get_orchestrator().availability.sweep_cache()


async def _intervention_job():
    return await get_orchestrator().intervention.sweep()


@app.on_event("startup")
async def start_workers() -> None:
    if not _are_workers_enabled():
        return
    if _worker_tasks:
        return
    jobs = [
        ("intervention_sweep", settings.pause_sweep_interval_seconds, _intervention_job),
        ("agenda_cache_sweep", settings.agenda_cache_sweep_interval_seconds, _agenda_cache_job),
    ]
    if settings.reminders_enabled:
        jobs.append(("reminders", settings.reminder_check_interval_seconds, _reminder_job))
    for name, interval, job in jobs:
        _worker_tasks.append(asyncio.create_task(_worker_loop(name, interval, job)))
        worker_logger.info(f"{name} worker started")


@app.on_event("shutdown")
async def stop_workers() -> None:
    for task in _worker_tasks:
        task.cancel()
    for task in _worker_tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    _worker_tasks.clear()
    await shutdown_orchestrator()


@app.get("/health")
async def health():
    return {"status": "ok"}
