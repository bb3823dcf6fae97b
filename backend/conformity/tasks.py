import logging
import os
import datetime
from datetime import timezone
from celery import Celery
from celery.schedules import crontab
from sqlalchemy.orm import Session

from .database import SessionLocal
from .services import nonconformity
from . import notify

logger = logging.getLogger(__name__)

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
SLA_WARNING_HOURS = float(os.getenv("SLA_WARNING_HOURS", "2"))

celery_app = Celery("tasks", broker=CELERY_BROKER_URL)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)


def alert_due_nonconformities(
    db: Session,
    *,
    now: datetime.datetime | None = None,
    warning_hours: float = SLA_WARNING_HOURS,
) -> int:
    """E-mail detectors of open non-conformities nearing or past their SLA."""

    now = now or datetime.datetime.now(timezone.utc)
    due = nonconformity.due_for_alert(db, now=now, warning_hours=warning_hours)
    for nc in due:
        deadline = nonconformity.as_utc(nc.sla_deadline)
        if nc.detector is not None and nc.detector.email:
            notify.send_sla_reminder(
                nc.detector.email,
                number=nc.number,
                criticality=nc.criticality,
                deadline=deadline,
                overdue=deadline <= now,
            )
        nonconformity.mark_alerted(db, nc, now=now)
    return len(due)


@celery_app.task
def scan_nonconformity_slas() -> int:
    db = SessionLocal()
    try:
        count = alert_due_nonconformities(db)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("non-conformity SLA scan failed")
        raise
    finally:
        db.close()
    if count:
        logger.info("SLA scan alerted %s non-conformities", count)
    return count


celery_app.conf.beat_schedule = {
    "nonconformity-sla-scan": {
        "task": "conformity.tasks.scan_nonconformity_slas",
        "schedule": crontab(minute="*/15"),
    },
}
