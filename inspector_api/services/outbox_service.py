from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from inspector_api.models import OutboxMessage
from inspector_api.schemas.workflow import WorkflowResult

KIND_REPLY = "reply"
KIND_TRIGGER = "trigger"

STATUS_PENDING = "PENDING"
STATUS_PROCESSING = "PROCESSING"
STATUS_SENT = "SENT"
STATUS_FAILED = "FAILED"


def enqueue_outbox_message(
    db: Session,
    *,
    kind: str,
    payload_json: dict[str, Any],
    conversation_id: int | None = None,
    inbound_message_id: str | None = None,
) -> OutboxMessage:
    """Queue a row in the caller's transaction; nothing is sent until commit."""
    now = datetime.now(timezone.utc)
    row = OutboxMessage(
        conversation_id=conversation_id,
        inbound_message_id=inbound_message_id,
        kind=kind,
        payload_json=payload_json,
        status=STATUS_PENDING,
        attempts=0,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.flush()
    return row


def enqueue_reply(
    db: Session,
    *,
    to: str,
    text: str,
    conversation_id: int | None = None,
    inbound_message_id: str | None = None,
) -> OutboxMessage:
    return enqueue_outbox_message(
        db,
        kind=KIND_REPLY,
        payload_json={"to": to, "text": text},
        conversation_id=conversation_id,
        inbound_message_id=inbound_message_id,
    )


def enqueue_workflow_result(
    db: Session,
    *,
    result: WorkflowResult,
    conversation_id: int | None,
    inbound_message_id: str | None,
) -> list[OutboxMessage]:
    """Replies first, then triggers, in the order the state machine produced them."""
    rows = []
    for reply in result.replies:
        rows.append(
            enqueue_reply(
                db,
                to=reply.to,
                text=reply.text,
                conversation_id=conversation_id,
                inbound_message_id=inbound_message_id,
            )
        )
    for trigger in result.triggers:
        rows.append(
            enqueue_outbox_message(
                db,
                kind=KIND_TRIGGER,
                payload_json=trigger.model_dump(),
                conversation_id=conversation_id,
                inbound_message_id=inbound_message_id,
            )
        )
    return rows


def claim_pending_outbox(db: Session, *, limit: int = 10) -> list[OutboxMessage]:
    """Move due PENDING rows to PROCESSING and commit, so other workers skip them."""
    now = datetime.now(timezone.utc)
    rows = (
        db.query(OutboxMessage)
        .filter(
            OutboxMessage.status == STATUS_PENDING,
            or_(OutboxMessage.next_attempt_at.is_(None), OutboxMessage.next_attempt_at <= now),
        )
        .order_by(OutboxMessage.created_at, OutboxMessage.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for row in rows:
        row.status = STATUS_PROCESSING
        row.attempts = (row.attempts or 0) + 1
        row.updated_at = now
    db.commit()
    return rows


def mark_outbox_status(
    db: Session,
    *,
    outbox: OutboxMessage,
    status: str,
    last_error: str | None = None,
    next_attempt_at: datetime | None = None,
) -> None:
    outbox.status = status
    outbox.last_error = last_error
    outbox.next_attempt_at = next_attempt_at
    outbox.updated_at = datetime.now(timezone.utc)
    db.commit()
