from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from inspector_api.logging_config import get_logger
from inspector_api.models import (
    ChecklistInstance,
    ChecklistInstanceItem,
    ChecklistTemplateItem,
    WorkOrder,
)
from inspector_api.services.result import Result

logger = get_logger("checklist_service")

ITEM_PENDING = "pending"
ITEM_COMPLETED = "completed"
ITEM_SKIPPED = "skipped"
ITEM_ISSUE_FOUND = "issue_found"
ITEM_STATUSES = (ITEM_PENDING, ITEM_COMPLETED, ITEM_SKIPPED, ITEM_ISSUE_FOUND)

INSTANCE_NOT_STARTED = "not_started"
INSTANCE_IN_PROGRESS = "in_progress"
INSTANCE_COMPLETED = "completed"

STATUS_LABELS = {
    ITEM_PENDING: "pending",
    ITEM_COMPLETED: "done",
    ITEM_SKIPPED: "skipped",
    ITEM_ISSUE_FOUND: "issue",
}


def get_instance(db: Session, work_order_id: int) -> Optional[ChecklistInstance]:
    return db.query(ChecklistInstance).filter(ChecklistInstance.work_order_id == work_order_id).first()


def ensure_instance(db: Session, work_order: WorkOrder) -> tuple[ChecklistInstance, bool]:
    """Get or create the checklist instance of a work order.

    An existing instance is repaired by adding rows for template items it is
    missing. Returns (instance, created).
    """
    now = datetime.now(timezone.utc)
    instance = get_instance(db, work_order.id)
    created = False
    if not instance:
        instance = ChecklistInstance(
            work_order_id=work_order.id,
            status=INSTANCE_NOT_STARTED,
            created_at=now,
        )
        db.add(instance)
        db.flush()
        created = True

    existing = {
        row.template_item_id
        for row in db.query(ChecklistInstanceItem.template_item_id).filter(
            ChecklistInstanceItem.checklist_instance_id == instance.id
        )
    }
    template_items = (
        db.query(ChecklistTemplateItem)
        .filter(ChecklistTemplateItem.template_id == work_order.checklist_template_id)
        .order_by(ChecklistTemplateItem.item_order, ChecklistTemplateItem.id)
        .all()
    )
    missing = [item for item in template_items if item.id not in existing]
    for template_item in missing:
        db.add(
            ChecklistInstanceItem(
                checklist_instance_id=instance.id,
                template_item_id=template_item.id,
                status=ITEM_PENDING,
                updated_at=now,
            )
        )
    if missing:
        db.flush()
        if not created:
            logger.warning(
                "Repaired checklist instance with missing items",
                extra={"context": {"instance_id": instance.id, "added": len(missing)}},
            )

    if instance.status == INSTANCE_NOT_STARTED:
        instance.status = INSTANCE_IN_PROGRESS
        instance.started_at = now
        db.flush()

    return instance, created


def ordered_items(db: Session, instance_id: int) -> list[ChecklistInstanceItem]:
    """Instance items in template order. Item numbers shown to users are 1-based positions here."""
    return (
        db.query(ChecklistInstanceItem)
        .join(ChecklistTemplateItem, ChecklistInstanceItem.template_item_id == ChecklistTemplateItem.id)
        .filter(ChecklistInstanceItem.checklist_instance_id == instance_id)
        .order_by(ChecklistTemplateItem.item_order, ChecklistTemplateItem.id)
        .all()
    )


def resolve_item_number(db: Session, instance_id: int, number: int) -> Optional[ChecklistInstanceItem]:
    items = ordered_items(db, instance_id)
    if number < 1 or number > len(items):
        return None
    return items[number - 1]


def item_number(db: Session, item: ChecklistInstanceItem) -> int:
    for position, candidate in enumerate(ordered_items(db, item.checklist_instance_id), start=1):
        if candidate.id == item.id:
            return position
    return 0


def get_instance_item(db: Session, instance_id: int, item_id: int) -> Optional[ChecklistInstanceItem]:
    return (
        db.query(ChecklistInstanceItem)
        .filter(
            ChecklistInstanceItem.id == item_id,
            ChecklistInstanceItem.checklist_instance_id == instance_id,
        )
        .first()
    )


def append_comment(item: ChecklistInstanceItem, text: str) -> None:
    """Add to the item's accumulated comments; status is untouched."""
    text = (text or "").strip()
    if not text:
        return
    item.comments = f"{item.comments}\n{text}" if item.comments else text
    item.updated_at = datetime.now(timezone.utc)


def set_item_status(
    db: Session,
    item: ChecklistInstanceItem,
    status: str,
    comment: Optional[str] = None,
) -> ChecklistInstanceItem:
    if status not in ITEM_STATUSES:
        raise ValueError(f"Invalid checklist item status: {status}")

    now = datetime.now(timezone.utc)
    item.status = status
    item.completed_at = now if status != ITEM_PENDING else None
    item.updated_at = now
    if comment and comment.strip():
        # a status comment replaces the running notes
        item.comments = comment.strip()
    db.flush()
    return item


def pending_items(db: Session, instance_id: int) -> list[tuple[int, ChecklistInstanceItem]]:
    """(item number, item) for every pending item."""
    return [
        (position, item)
        for position, item in enumerate(ordered_items(db, instance_id), start=1)
        if item.status == ITEM_PENDING
    ]


def can_complete(db: Session, instance_id: int) -> tuple[bool, list[tuple[int, ChecklistInstanceItem]]]:
    """Single completion gate: (all items decided, pending items)."""
    pending = pending_items(db, instance_id)
    return not pending, pending


def complete_instance(db: Session, instance: ChecklistInstance) -> Result[tuple[ChecklistInstance, bool]]:
    """Complete the instance and its work order.

    value is (instance, newly_completed); calling it again is a no-op with
    newly_completed False. Fails with code "pending_items" (value holds the
    pending items) while any item is pending.
    """
    work_order = db.get(WorkOrder, instance.work_order_id)
    if instance.status == INSTANCE_COMPLETED and work_order.status == "completed":
        return Result.success((instance, False))

    ready, pending = can_complete(db, instance.id)
    if not ready:
        return Result.failure("Checklist has pending items", code="pending_items", value=pending)

    now = datetime.now(timezone.utc)
    instance.status = INSTANCE_COMPLETED
    instance.completed_at = now
    work_order.status = "completed"
    work_order.completed_at = now
    db.flush()

    logger.info(f"Completed checklist instance {instance.id} for work order {work_order.id}")
    return Result.success((instance, True))


def checklist_progress(db: Session, instance_id: int) -> tuple[int, int]:
    """(done, total) where anything not pending counts as done."""
    items = ordered_items(db, instance_id)
    return sum(1 for item in items if item.status != ITEM_PENDING), len(items)


def format_checklist(db: Session, instance_id: int) -> str:
    lines = []
    for position, item in enumerate(ordered_items(db, instance_id), start=1):
        label = STATUS_LABELS.get(item.status, item.status)
        media_count = len(item.media)
        suffix = f", {media_count} photo(s)" if media_count else ""
        lines.append(f"{position}. {item.name} ({label}{suffix})")
    return "\n".join(lines)
