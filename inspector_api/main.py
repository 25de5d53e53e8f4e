import asyncio

from fastapi import Depends, FastAPI
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from inspector_api.config import settings
from inspector_api.database import SessionLocal, get_db
from inspector_api.logging_config import get_logger, setup_logging
from inspector_api.models import Conversation, Message, OutboxMessage, User, WorkOrder
from inspector_api.routers import webhook
from inspector_api.services.dispatcher_service import process_outbox_batch
from inspector_api.services.providers import get_messaging_provider

setup_logging(settings.log_level, json_output=not settings.debug)

app = FastAPI(
    title="Inspector API",
    description="WhatsApp assistant for property inspection workflows",
    version="0.1.0",
)

app.include_router(webhook.router)

outbox_logger = get_logger("outbox_worker")
_outbox_worker_task: asyncio.Task | None = None


def _drain_outbox_once() -> dict | None:
    db = SessionLocal()
    try:
        return process_outbox_batch(
            db,
            provider=get_messaging_provider(),
            limit=settings.outbox_process_limit,
            max_attempts=settings.outbox_max_attempts,
            retry_backoff_seconds=settings.outbox_retry_backoff_seconds,
        )
    finally:
        db.close()


async def _outbox_worker_loop() -> None:
    interval_seconds = max(settings.outbox_worker_interval_seconds, 0.1)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            results = await run_in_threadpool(_drain_outbox_once)
            if results:
                outbox_logger.info("Outbox worker processed", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            outbox_logger.error(
                "Outbox worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_outbox_worker() -> None:
    global _outbox_worker_task
    if not settings.outbox_worker_enabled:
        return
    if _outbox_worker_task is None or _outbox_worker_task.done():
        _outbox_worker_task = asyncio.create_task(_outbox_worker_loop())
        outbox_logger.info("Outbox worker started")


@app.on_event("shutdown")
async def stop_outbox_worker() -> None:
    global _outbox_worker_task
    if _outbox_worker_task is None:
        return
    _outbox_worker_task.cancel()
    try:
        await _outbox_worker_task
    except asyncio.CancelledError:
        pass
    _outbox_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "users": db.query(User).count(),
        "work_orders": db.query(WorkOrder).count(),
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "outbox_pending": db.query(OutboxMessage).filter(OutboxMessage.status == "PENDING").count(),
    }
