import asyncio
from contextlib import suppress
from datetime import date, datetime, time as dt_time, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from spotcheck.db import engine
from spotcheck.errors import ApiError, error_response
from spotcheck.logging_utils import setup_json_logging
from spotcheck.routers import admin, checkins
from spotcheck.services.daily_schedule import generate_daily_schedules
from spotcheck.services.expiry_sweeper import sweep_expired
from spotcheck.services.schedule_window import to_local
from spotcheck.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from spotcheck.services.trigger_scheduler import tick
from spotcheck.settings import get_cors_origins, get_settings, is_push_enabled

setup_json_logging()
logger = logging.getLogger("spotcheck.request")
scheduler_worker_logger = logging.getLogger("spotcheck.scheduler_worker")
settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "employee_id": getattr(request.state, "employee_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(checkins.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def parse_cron_time(value: str) -> dt_time:
    try:
        hour_text, minute_text = (value or "").strip().split(":", 1)
        return dt_time(int(hour_text), int(minute_text))
    except ValueError:
        scheduler_worker_logger.warning("daily_schedule_cron_time_invalid", extra={"value": value})
        return dt_time(0, 0)


def daily_generation_due(now_utc: datetime, *, last_generated: date | None, cron_time: dt_time) -> bool:
    """True once the local clock has passed ``cron_time`` on a day not yet generated."""
    now_local = to_local(now_utc)
    if last_generated is not None and last_generated >= now_local.date():
        return False
    return now_local.time() >= cron_time


async def _scheduler_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(15, int(settings.scheduler_worker_interval_seconds))
    cron_time = parse_cron_time(settings.daily_schedule_cron_time)
    last_generated: date | None = None
    while not stop_event.is_set():
        generated_count = 0
        issued_count = 0
        expired_count = 0
        try:
            now_utc = datetime.now(timezone.utc)
            if daily_generation_due(now_utc, last_generated=last_generated, cron_time=cron_time):
                generated = await asyncio.to_thread(generate_daily_schedules, now_utc)
                generated_count = len(generated)
                last_generated = to_local(now_utc).date()
            issued = await asyncio.to_thread(tick, now_utc)
            expired = await asyncio.to_thread(sweep_expired, datetime.now(timezone.utc))
            issued_count = len(issued)
            expired_count = len(expired)
        except Exception:
            scheduler_worker_logger.exception("scheduler_worker_tick_failed")
        else:
            if generated_count or issued_count or expired_count:
                scheduler_worker_logger.info(
                    "scheduler_worker_tick",
                    extra={
                        "generated_items": generated_count,
                        "issued_requests": issued_count,
                        "expired_requests": expired_count,
                    },
                )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        scheduler_worker_logger.info(
            "schema_guard_ok",
            extra=result.to_dict(),
        )
        return

    scheduler_worker_logger.error(
        "schema_guard_failed",
        extra=result.to_dict(),
    )
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@app.on_event("startup")
async def start_scheduler_worker() -> None:
    if not settings.scheduler_worker_enabled:
        return
    if getattr(app.state, "scheduler_worker_task", None) is not None:
        return

    stop_event = asyncio.Event()
    task = asyncio.create_task(_scheduler_worker_loop(stop_event))
    app.state.scheduler_worker_stop_event = stop_event
    app.state.scheduler_worker_task = task
    if not is_push_enabled():
        scheduler_worker_logger.warning("push_channel_not_configured")
    scheduler_worker_logger.info(
        "scheduler_worker_started",
        extra={
            "interval_seconds": max(15, int(settings.scheduler_worker_interval_seconds)),
            "daily_schedule_cron_time": settings.daily_schedule_cron_time,
            "timezone_offset_minutes": settings.timezone_offset_minutes,
        },
    )


@app.on_event("shutdown")
async def stop_scheduler_worker() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "scheduler_worker_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "scheduler_worker_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.scheduler_worker_stop_event = None
    app.state.scheduler_worker_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
        "push_enabled": is_push_enabled(),
        "scheduler_worker_running": getattr(app.state, "scheduler_worker_task", None) is not None,
    }
