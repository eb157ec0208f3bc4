"""
backend/app/main.py

Purpose:
    FastAPI application bootstrap: database lifecycle, event bus and scoring
    subscribers, optional scheduler jobs for season sync and result polling,
    admin router wiring and app-wide exception handlers.

Dependencies:
    - app.database
    - app.services.event_bus
    - app.workers.season_sync
    - app.workers.result_resolver
"""

import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from bson.errors import InvalidId
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    ServerSelectionTimeoutError,
)

import app.database as _db
from app.config import settings
from app.database import close_db, connect_db
from app.middleware.logging import StructuredLoggingMiddleware, setup_logging
from app.providers.ergast import ergast_provider
from app.providers.http_client import ProviderError
from app.routers.admin_sync import router as admin_sync_router
from app.services.entity_reconciler import InvalidEntityError
from app.services.event_bus import event_bus
from app.services.event_handlers import register_event_handlers
from app.services.event_result_service import (
    EmptyClassificationError,
    EventNotFoundError,
    ResultNotRecordedError,
)

logger = logging.getLogger("pitwall")
scheduler = AsyncIOScheduler()


def _build_automated_job_specs() -> list[dict]:
    from app.workers.result_resolver import resolve_results
    from app.workers.season_sync import sync_current_season

    return [
        {
            "id": "season_sync",
            "func": sync_current_season,
            "trigger": "interval",
            "trigger_kwargs": {"hours": settings.SEASON_SYNC_INTERVAL_HOURS},
        },
        {
            "id": "result_resolver",
            "func": resolve_results,
            "trigger": "interval",
            "trigger_kwargs": {"minutes": settings.RESULT_RESOLVER_INTERVAL_MINUTES},
        },
    ]


def _register_automated_jobs() -> int:
    added = 0
    for spec in _build_automated_job_specs():
        if scheduler.get_job(spec["id"]):
            continue
        scheduler.add_job(
            spec["func"],
            spec["trigger"],
            id=spec["id"],
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **spec["trigger_kwargs"],
        )
        added += 1
    return added


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await connect_db()

    if settings.EVENT_BUS_ENABLED:
        register_event_handlers(event_bus)
        await event_bus.start()
        logger.info("Event bus enabled")
    else:
        logger.info("Event bus disabled via config")

    scheduler.start()
    if settings.AUTOMATION_ENABLED:
        added = _register_automated_jobs()
        logger.info("Automation enabled, %d scheduler job(s) registered", added)
    else:
        logger.info("Automation disabled; syncs run only via admin API or CLI")

    yield

    if settings.EVENT_BUS_ENABLED:
        await event_bus.stop()
    if scheduler.running:
        scheduler.shutdown(wait=False)
    await ergast_provider.aclose()
    await close_db()


app = FastAPI(
    title="Pitwall",
    description="Formula 1 season data sync and race result ingestion",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Sync-Key"],
)
app.add_middleware(StructuredLoggingMiddleware)

app.include_router(admin_sync_router)


@app.exception_handler(InvalidId)
async def invalid_object_id_handler(request: Request, exc: InvalidId):
    return JSONResponse(status_code=400, content={"detail": "Invalid ID."})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Return clean validation errors without leaking internal field paths."""
    errors = []
    for err in exc.errors():
        loc = err.get("loc", ())
        field = ".".join(str(part) for part in loc[1:]) if len(loc) > 1 else str(loc[-1]) if loc else "unknown"
        errors.append({"field": field, "message": err.get("msg", "Invalid value.")})
    return JSONResponse(status_code=422, content={"detail": "Validation error.", "errors": errors})


@app.exception_handler(EventNotFoundError)
async def event_not_found_handler(request: Request, exc: EventNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(EmptyClassificationError)
async def empty_classification_handler(request: Request, exc: EmptyClassificationError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ResultNotRecordedError)
async def result_not_recorded_handler(request: Request, exc: ResultNotRecordedError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.warning("Provider error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": "Statistics provider unavailable."})


@app.exception_handler(InvalidEntityError)
async def invalid_entity_handler(request: Request, exc: InvalidEntityError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"detail": "Duplicate entry."})


@app.exception_handler(ServerSelectionTimeoutError)
async def db_timeout_handler(request: Request, exc: ServerSelectionTimeoutError):
    logger.error("Database timeout: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(ConnectionFailure)
async def db_connection_handler(request: Request, exc: ConnectionFailure):
    logger.error("Database connection failure: %s %s", request.method, request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable."})


@app.exception_handler(OperationFailure)
async def db_operation_handler(request: Request, exc: OperationFailure):
    logger.error("Database operation error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the real error, return a safe generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "An internal error occurred."})


@app.get("/health")
async def health():
    """Health check -- verifies DB connection and provider status."""
    try:
        result = await _db.db.command("ping")
        db_ok = result.get("ok") == 1.0
    except Exception:
        db_ok = False

    return {
        "status": "healthy" if db_ok else "degraded",
        "db": "connected" if db_ok else "disconnected",
        "ergast_provider": {
            "circuit_open": ergast_provider.circuit_open,
        },
        "event_bus": {
            "running": event_bus.running,
        },
        "automation": {
            "enabled": settings.AUTOMATION_ENABLED,
            "jobs": [job.id for job in scheduler.get_jobs()],
        },
    }
