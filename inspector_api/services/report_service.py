from datetime import datetime, timezone

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inspector_api.config import settings
from inspector_api.logging_config import get_logger
from inspector_api.models import Report

logger = get_logger("report_service")

REPORT_REQUEST_TIMEOUT_SECONDS = 15.0


class ReportRequestError(Exception):
    pass


def get_or_create_report(db: Session, work_order_id: int) -> Report:
    """One report row per work order; repeated triggers reuse it."""
    report = db.query(Report).filter(Report.work_order_id == work_order_id).first()
    if report:
        return report

    report = Report(work_order_id=work_order_id, requested_at=datetime.now(timezone.utc))
    db.add(report)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        report = db.query(Report).filter(Report.work_order_id == work_order_id).one()
    return report


def request_report(db: Session, work_order_id: int) -> Report:
    """Record the report request and hand it to the rendering service, if one is configured.

    Raises ReportRequestError so the outbox retries the trigger.
    """
    report = get_or_create_report(db, work_order_id)
    if report.generated_at:
        logger.info(f"Report for work order {work_order_id} already generated")
        return report

    if not settings.report_service_url:
        logger.info(f"No report service configured; report {report.id} left pending")
        db.commit()
        return report

    try:
        with httpx.Client(timeout=REPORT_REQUEST_TIMEOUT_SECONDS) as client:
            response = client.post(
                settings.report_service_url,
                json={"report_id": report.id, "work_order_id": work_order_id},
            )
    except httpx.HTTPError as e:
        db.commit()
        raise ReportRequestError(f"Report service unreachable: {e}") from e

    if response.status_code not in (200, 201, 202):
        db.commit()
        raise ReportRequestError(f"Report service error: {response.status_code}")

    report.generated_at = datetime.now(timezone.utc)
    db.commit()
    logger.info(f"Report {report.id} requested for work order {work_order_id}")
    return report
