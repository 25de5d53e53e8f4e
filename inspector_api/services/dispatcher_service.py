from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session

from inspector_api.logging_config import get_logger
from inspector_api.models import OutboxMessage, Report, User, WorkOrder
from inspector_api.schemas.workflow import OutboundReply, Trigger
from inspector_api.services import outbox_service, report_service
from inspector_api.services.providers import MessagingProvider

logger = get_logger("dispatcher")


class DispatchError(Exception):
    pass


def _notify_customer(db: Session, provider: MessagingProvider, trigger: Trigger) -> None:
    work_order = db.get(WorkOrder, trigger.work_order_id)
    if not work_order:
        raise DispatchError(f"Work order {trigger.work_order_id} not found")

    customer = work_order.contract.customer if work_order.contract else None
    if not customer or not customer.phone:
        logger.warning(f"Work order {work_order.id} has no customer to notify")
        return

    address = work_order.contract.property.address if work_order.contract.property else "your property"
    text = trigger.text or (
        f"The inspection of {address} (work order #{work_order.id}) is complete. "
        "Your report is being prepared."
    )
    provider.send_message(customer.phone, text)

    report = db.query(Report).filter(Report.work_order_id == work_order.id).first()
    if report:
        report.sent_to_customer = True
        db.commit()


def _notify_admins(db: Session, provider: MessagingProvider, trigger: Trigger) -> None:
    admins = db.query(User).filter(User.role == "admin").order_by(User.id).all()
    if not admins:
        logger.warning(f"No admin to notify for work order {trigger.work_order_id}")
        return

    text = trigger.text or f"Issue reported on work order #{trigger.work_order_id}."
    for admin in admins:
        provider.send_message(admin.phone, text)


def execute_trigger(db: Session, provider: MessagingProvider, trigger: Trigger) -> None:
    if trigger.name == "generate_report":
        report_service.request_report(db, trigger.work_order_id)
    elif trigger.name == "notify_customer":
        _notify_customer(db, provider, trigger)
    elif trigger.name == "notify_admin":
        _notify_admins(db, provider, trigger)
    else:
        raise DispatchError(f"Unknown trigger: {trigger.name}")


def dispatch_outbox_row(db: Session, provider: MessagingProvider, row: OutboxMessage) -> None:
    """Deliver one outbox row. Raises on failure so the caller can schedule a retry."""
    payload = row.payload_json or {}
    if row.kind == outbox_service.KIND_REPLY:
        reply = OutboundReply.model_validate(payload)
        provider.send_message(reply.to, reply.text)
    elif row.kind == outbox_service.KIND_TRIGGER:
        execute_trigger(db, provider, Trigger.model_validate(payload))
    else:
        raise DispatchError(f"Unknown outbox kind: {row.kind}")


def process_outbox_rows(
    db: Session,
    rows: list[OutboxMessage],
    *,
    provider: MessagingProvider,
    max_attempts: int,
    retry_backoff_seconds: float,
) -> dict[str, int]:
    results = {"claimed": len(rows), "sent": 0, "failed": 0, "retry_scheduled": 0}

    for row in rows:
        try:
            dispatch_outbox_row(db, provider, row)
        except Exception as exc:
            db.rollback()
            error = str(exc) or exc.__class__.__name__
            attempts = row.attempts or 0
            if attempts >= max_attempts:
                outbox_service.mark_outbox_status(
                    db, outbox=row, status=outbox_service.STATUS_FAILED, last_error=error
                )
                results["failed"] += 1
                logger.error(
                    "Outbox delivery failed permanently",
                    extra={"context": {"outbox_id": row.id, "attempts": attempts, "error": error}},
                )
                continue

            backoff = retry_backoff_seconds * (2 ** max(attempts - 1, 0))
            next_attempt_at = datetime.now(timezone.utc) + timedelta(seconds=backoff)
            outbox_service.mark_outbox_status(
                db,
                outbox=row,
                status=outbox_service.STATUS_PENDING,
                last_error=error,
                next_attempt_at=next_attempt_at,
            )
            results["retry_scheduled"] += 1
            logger.warning(
                "Outbox delivery retry scheduled",
                extra={"context": {"outbox_id": row.id, "attempts": attempts, "backoff_seconds": backoff}},
            )
            continue

        outbox_service.mark_outbox_status(db, outbox=row, status=outbox_service.STATUS_SENT)
        results["sent"] += 1
        logger.info("Outbox done", extra={"context": {"outbox_id": row.id, "kind": row.kind}})

    return results


def process_outbox_batch(
    db: Session,
    *,
    provider: MessagingProvider,
    limit: int = 10,
    max_attempts: int = 5,
    retry_backoff_seconds: float = 2.0,
) -> Optional[dict[str, int]]:
    """Claim and deliver one batch. None when nothing was due."""
    rows = outbox_service.claim_pending_outbox(db, limit=limit)
    if not rows:
        return None
    return process_outbox_rows(
        db,
        rows,
        provider=provider,
        max_attempts=max_attempts,
        retry_backoff_seconds=retry_backoff_seconds,
    )
