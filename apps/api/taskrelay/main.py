from __future__ import annotations

import asyncio

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taskrelay.assignments.state import AssignmentTransitionError
from taskrelay.config import settings
from taskrelay.db import SessionLocal, engine
from taskrelay.logs import configure_logging
from taskrelay.notifications.dispatch import process_notification_queue
from taskrelay.notifications.emitter import wait_for_pending_emits
from taskrelay.reminders.service import run_reminder_job
from taskrelay.routers.assignments import router as assignments_router
from taskrelay.routers.devices import router as devices_router
from taskrelay.routers.tasks import router as tasks_router
from taskrelay.routers.workers import router as workers_router

configure_logging(settings.log_level, settings.log_format)
log = structlog.get_logger()

app = FastAPI(title="Task Relay API", version=settings.app_version)

# Input errors; every other transition code is a state conflict.
_UNPROCESSABLE_CODES = {"note_required", "attachment_required"}


@app.exception_handler(AssignmentTransitionError)
async def _transition_error_handler(_, exc: AssignmentTransitionError) -> JSONResponse:
  status_code = 422 if exc.code in _UNPROCESSABLE_CODES else 409
  return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)

app.include_router(workers_router)
app.include_router(assignments_router)
app.include_router(tasks_router)
app.include_router(devices_router)


@app.get("/health")
async def health() -> dict:
  return {"ok": True, "version": settings.app_version, "buildSha": settings.build_sha}


_reminder_loop_task: asyncio.Task | None = None
_dispatch_loop_task: asyncio.Task | None = None


async def _reminder_loop() -> None:
  while True:
    await asyncio.sleep(max(10, int(settings.reminder_interval_seconds)))
    async with SessionLocal() as db:
      try:
        await run_reminder_job(db)
      except Exception:
        log.exception("reminder.loop_failed")


async def _dispatch_loop() -> None:
  while True:
    await asyncio.sleep(max(5, int(settings.dispatch_interval_seconds)))
    async with SessionLocal() as db:
      try:
        await process_notification_queue(db)
      except Exception:
        log.exception("dispatch.loop_failed")


@app.on_event("startup")
async def _startup() -> None:
  global _reminder_loop_task, _dispatch_loop_task
  if not (settings.database_url or "").strip():
    raise RuntimeError("DATABASE_URL is required")
  log.info("app.startup", version=settings.app_version, workers=settings.background_workers_enabled)
  if not settings.background_workers_enabled:
    return
  if _reminder_loop_task is None:
    _reminder_loop_task = asyncio.create_task(_reminder_loop())
  if _dispatch_loop_task is None:
    _dispatch_loop_task = asyncio.create_task(_dispatch_loop())


@app.on_event("shutdown")
async def _shutdown() -> None:
  global _reminder_loop_task, _dispatch_loop_task
  for t in (_reminder_loop_task, _dispatch_loop_task):
    if t is not None:
      t.cancel()
  _reminder_loop_task = None
  _dispatch_loop_task = None
  await wait_for_pending_emits()
  await engine.dispose()
