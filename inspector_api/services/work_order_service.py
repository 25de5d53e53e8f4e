from datetime import date
from typing import Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from inspector_api.models import WorkOrder

# in-progress jobs first so a resumed inspection is on top
_STATUS_RANK = case(
    (WorkOrder.status == "in_progress", 0),
    (WorkOrder.status == "scheduled", 1),
    (WorkOrder.status == "completed", 2),
    else_=3,
)


def get_work_order(db: Session, work_order_id: int) -> Optional[WorkOrder]:
    return db.get(WorkOrder, work_order_id)


def get_assigned_work_order(db: Session, work_order_id: int, inspector_id: int) -> Optional[WorkOrder]:
    """Work order only if it is assigned to this inspector."""
    work_order = get_work_order(db, work_order_id)
    if not work_order or work_order.inspector_id != inspector_id:
        return None
    return work_order


def last_completed_work_order(db: Session, inspector_id: int) -> Optional[WorkOrder]:
    return (
        db.query(WorkOrder)
        .filter(
            WorkOrder.inspector_id == inspector_id,
            WorkOrder.status == "completed",
            WorkOrder.completed_at.isnot(None),
        )
        .order_by(WorkOrder.completed_at.desc(), WorkOrder.id.desc())
        .first()
    )


def list_jobs(db: Session, inspector_id: int, day: date) -> list[WorkOrder]:
    return (
        db.query(WorkOrder)
        .filter(
            WorkOrder.inspector_id == inspector_id,
            WorkOrder.scheduled_date == day,
            WorkOrder.status != "cancelled",
        )
        .order_by(_STATUS_RANK, WorkOrder.scheduled_time_window, WorkOrder.id)
        .all()
    )


def describe_location(work_order: WorkOrder) -> str:
    contract = work_order.contract
    prop = contract.property if contract else None
    if not prop:
        return "unknown address"
    parts = [prop.address, prop.city]
    return ", ".join(part for part in parts if part)


def format_job_line(work_order: WorkOrder) -> str:
    window = f"{work_order.scheduled_time_window} " if work_order.scheduled_time_window else ""
    status = work_order.status.replace("_", " ")
    return f"#{work_order.id} {window}{describe_location(work_order)} ({status})"
