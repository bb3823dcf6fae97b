"""Non-conformity triggering, workflow and SLA tracking."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from .. import audit, metrics, models, rbac
from ..errors import InvalidStateTransition, NotFoundError, ValidationError
from . import conformity

# purpose: open, deduplicate and drive non-conformities raised by failing measurements or test results
# status: active
# depends_on: backend.conformity.models.NonConformity, backend.conformity.models.CriticalityLevel

logger = logging.getLogger(__name__)

DEFAULT_TREATMENT_HOURS: dict[int, int] = {1: 168, 2: 72, 3: 24, 4: 4}

ORIGIN_MANUAL = "manual"
ORIGIN_MEASUREMENT = "measurement"
ORIGIN_TEST = "test"

_UPDATABLE_FIELDS = {"description", "nc_type", "potential_impact"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def max_treatment_hours(db: Session, criticality: int) -> int:
    level = (
        db.query(models.CriticalityLevel)
        .filter(models.CriticalityLevel.level == criticality)
        .first()
    )
    if level is not None:
        return level.max_treatment_hours
    return DEFAULT_TREATMENT_HOURS.get(criticality, DEFAULT_TREATMENT_HOURS[1])


def compute_sla_deadline(db: Session, criticality: int, detected_at: datetime) -> datetime:
    return as_utc(detected_at) + timedelta(hours=max_treatment_hours(db, criticality))


def next_number(db: Session, now: datetime | None = None) -> str:
    now = now or _utcnow()
    prefix = f"NC-{now:%Y%m%d}-"
    last = (
        db.query(models.NonConformity.number)
        .filter(models.NonConformity.number.like(f"{prefix}%"))
        .order_by(models.NonConformity.number.desc())
        .first()
    )
    sequence = int(last[0].rsplit("-", 1)[-1]) + 1 if last else 1
    return f"{prefix}{sequence:03d}"


def find_open(
    db: Session,
    test_id: UUID,
    measurement_id: UUID | None,
) -> models.NonConformity | None:
    """Return the open record for a (test, measurement) pair, if any."""

    query = db.query(models.NonConformity).filter(
        models.NonConformity.test_id == test_id,
        models.NonConformity.status.in_(models.OPEN_NONCONFORMITY_STATUSES),
    )
    if measurement_id is None:
        query = query.filter(models.NonConformity.measurement_id.is_(None))
    else:
        query = query.filter(models.NonConformity.measurement_id == measurement_id)
    return query.first()


def _open(
    db: Session,
    *,
    test: models.IndustrialTest,
    measurement: models.Measurement | None,
    criticality: int,
    origin: str,
    description: str | None,
    actor: models.Personnel | None,
    context: audit.RequestContext | None,
    nc_type: str | None = None,
    potential_impact: str | None = None,
) -> models.NonConformity:
    detected_at = _utcnow()
    nc = models.NonConformity(
        number=next_number(db, detected_at),
        test_id=test.id,
        measurement_id=measurement.id if measurement is not None else None,
        criticality=criticality,
        status=models.NonConformityStatus.OUVERTE.value,
        origin=origin,
        nc_type=nc_type,
        description=description,
        potential_impact=potential_impact,
        detected_at=detected_at,
        sla_deadline=compute_sla_deadline(db, criticality, detected_at),
        detector_id=actor.id if actor is not None else None,
        occurrence_count=1,
    )
    audit.create(db, nc, actor_id=actor.id if actor else None, context=context)
    metrics.NONCONFORMITIES_OPENED.labels(origin).inc()
    logger.info(
        "non-conformity %s opened on test %s (origin=%s, criticality=%s)",
        nc.number,
        test.number,
        origin,
        criticality,
    )
    return nc


def _ensure(
    db: Session,
    *,
    test: models.IndustrialTest,
    measurement: models.Measurement | None,
    criticality: int,
    origin: str,
    description: str,
    actor: models.Personnel | None,
    context: audit.RequestContext | None,
) -> models.NonConformity:
    existing = find_open(db, test.id, measurement.id if measurement is not None else None)
    if existing is None:
        return _open(
            db,
            test=test,
            measurement=measurement,
            criticality=criticality,
            origin=origin,
            description=description,
            actor=actor,
            context=context,
        )
    # criticality and SLA stay as first detected
    audit.update(
        db,
        existing,
        {"occurrence_count": (existing.occurrence_count or 1) + 1, "description": description},
        actor_id=actor.id if actor else None,
        context=context,
    )
    logger.info("non-conformity %s recurred (%s occurrences)", existing.number, existing.occurrence_count)
    return existing


def trigger_for_measurement(
    db: Session,
    measurement: models.Measurement,
    *,
    actor: models.Personnel | None,
    context: audit.RequestContext | None = None,
) -> models.NonConformity | None:
    """Ensure an open record for a failing critical measurement."""

    if measurement.is_conform is not False:
        return None
    criticality = conformity.effective_criticality(measurement)
    if not conformity.is_critical(criticality):
        return None
    description = (
        f"{measurement.parameter} measured {measurement.measured_value}"
        f" outside tolerance [{measurement.tolerance_min}, {measurement.tolerance_max}]"
    )
    return _ensure(
        db,
        test=measurement.test,
        measurement=measurement,
        criticality=criticality,
        origin=ORIGIN_MEASUREMENT,
        description=description,
        actor=actor,
        context=context,
    )


def trigger_for_test(
    db: Session,
    test: models.IndustrialTest,
    *,
    actor: models.Personnel | None,
    context: audit.RequestContext | None = None,
) -> models.NonConformity | None:
    """Ensure a test-level record when the aggregate result is not ``CONFORME``."""

    if test.result == models.TestResult.CONFORME.value:
        return None
    return _ensure(
        db,
        test=test,
        measurement=None,
        criticality=test.criticality,
        origin=ORIGIN_TEST,
        description=f"test {test.number} finished with result {test.result}",
        actor=actor,
        context=context,
    )


def get_nonconformity(db: Session, nc_id: UUID) -> models.NonConformity:
    nc = db.get(models.NonConformity, nc_id)
    if nc is None:
        raise NotFoundError(f"non-conformity {nc_id} not found")
    return nc


def list_nonconformities(
    db: Session,
    *,
    actor: models.Personnel,
    status: str | None = None,
    criticality: int | None = None,
    test_id: UUID | None = None,
) -> list[models.NonConformity]:
    rbac.ensure_allowed(actor, rbac.NON_CONFORMITIES, "read")
    query = db.query(models.NonConformity)
    if status:
        query = query.filter(models.NonConformity.status == status)
    if criticality is not None:
        query = query.filter(models.NonConformity.criticality == criticality)
    if test_id:
        query = query.filter(models.NonConformity.test_id == test_id)
    return query.order_by(models.NonConformity.detected_at.desc()).all()


def create_manual(
    db: Session,
    *,
    actor: models.Personnel,
    test_id: UUID,
    measurement_id: UUID | None = None,
    criticality: int | None = None,
    nc_type: str | None = None,
    description: str | None = None,
    potential_impact: str | None = None,
    context: audit.RequestContext | None = None,
) -> models.NonConformity:
    rbac.ensure_allowed(actor, rbac.NON_CONFORMITIES, "create")
    test = db.get(models.IndustrialTest, test_id)
    if test is None:
        raise NotFoundError(f"test {test_id} not found")
    measurement = None
    if measurement_id is not None:
        measurement = db.get(models.Measurement, measurement_id)
        if measurement is None or measurement.test_id != test.id:
            raise ValidationError("measurement does not belong to the referenced test")
    if find_open(db, test.id, measurement_id) is not None:
        raise ValidationError("an open non-conformity already exists for this test and measurement")
    if criticality is None:
        criticality = (
            conformity.effective_criticality(measurement) if measurement is not None else test.criticality
        )
    return _open(
        db,
        test=test,
        measurement=measurement,
        criticality=criticality,
        origin=ORIGIN_MANUAL,
        description=description,
        actor=actor,
        context=context,
        nc_type=nc_type,
        potential_impact=potential_impact,
    )


def _ensure_open(nc: models.NonConformity) -> None:
    if nc.status == models.NonConformityStatus.CLOTUREE.value:
        raise InvalidStateTransition(f"non-conformity {nc.number} is closed")


def update_nonconformity(
    db: Session,
    nc: models.NonConformity,
    values: dict[str, Any],
    *,
    actor: models.Personnel,
    context: audit.RequestContext | None = None,
) -> models.NonConformity:
    rbac.ensure_allowed(actor, rbac.NON_CONFORMITIES, "update", nc)
    _ensure_open(nc)
    unknown = set(values) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"fields not updatable: {', '.join(sorted(unknown))}")
    return audit.update(db, nc, values, actor_id=actor.id, context=context)


def analyze(
    db: Session,
    nc: models.NonConformity,
    *,
    actor: models.Personnel,
    root_cause: str | None,
    corrective_actions: str | None = None,
    context: audit.RequestContext | None = None,
) -> models.NonConformity:
    rbac.ensure_allowed(actor, rbac.NON_CONFORMITIES, "analyze", nc)
    _ensure_open(nc)
    if not root_cause or not root_cause.strip():
        raise ValidationError("a root cause is required")
    status = (
        models.NonConformityStatus.EN_TRAITEMENT
        if corrective_actions
        else models.NonConformityStatus.EN_ANALYSE
    )
    values: dict[str, Any] = {
        "root_cause": root_cause.strip(),
        "status": status.value,
        "analyzed_by_id": actor.id,
    }
    if corrective_actions:
        values["corrective_actions"] = corrective_actions
    return audit.update(db, nc, values, actor_id=actor.id, context=context)


def close(
    db: Session,
    nc: models.NonConformity,
    *,
    actor: models.Personnel,
    comment: str | None,
    context: audit.RequestContext | None = None,
) -> models.NonConformity:
    rbac.ensure_allowed(actor, rbac.NON_CONFORMITIES, "close", nc)
    _ensure_open(nc)
    if not comment or not comment.strip():
        raise ValidationError("a closure comment is required")
    audit.update(
        db,
        nc,
        {
            "status": models.NonConformityStatus.CLOTUREE.value,
            "closed_at": _utcnow(),
            "closed_by_id": actor.id,
            "closure_comment": comment.strip(),
        },
        actor_id=actor.id,
        context=context,
    )
    logger.info("non-conformity %s closed by %s", nc.number, actor.email)
    return nc


def reopen(
    db: Session,
    nc: models.NonConformity,
    *,
    actor: models.Personnel,
    reason: str | None,
    context: audit.RequestContext | None = None,
) -> models.NonConformity:
    rbac.ensure_allowed(actor, rbac.NON_CONFORMITIES, "close", nc)
    if nc.status != models.NonConformityStatus.CLOTUREE.value:
        raise InvalidStateTransition(f"non-conformity {nc.number} is not closed")
    if not reason or not reason.strip():
        raise ValidationError("a reopen reason is required")
    if find_open(db, nc.test_id, nc.measurement_id) is not None:
        raise ValidationError("another open non-conformity exists for this test and measurement")
    now = _utcnow()
    audit.update(
        db,
        nc,
        {
            "status": models.NonConformityStatus.OUVERTE.value,
            "reopen_reason": reason.strip(),
            "closed_at": None,
            "closed_by_id": None,
            "sla_deadline": compute_sla_deadline(db, nc.criticality, now),
            "sla_alerted_at": None,
        },
        actor_id=actor.id,
        context=context,
    )
    logger.info("non-conformity %s reopened by %s", nc.number, actor.email)
    return nc


def delete_nonconformity(
    db: Session,
    nc: models.NonConformity,
    *,
    actor: models.Personnel,
    context: audit.RequestContext | None = None,
) -> None:
    rbac.ensure_allowed(actor, rbac.NON_CONFORMITIES, "delete", nc)
    audit.delete(db, nc, actor_id=actor.id, context=context)


def stats(db: Session, *, actor: models.Personnel) -> dict[str, Any]:
    rbac.ensure_allowed(actor, rbac.NON_CONFORMITIES, "read")
    rows = db.query(models.NonConformity.status, models.NonConformity.criticality).all()
    by_status = Counter(status for status, _ in rows)
    by_criticality = Counter(criticality for _, criticality in rows)
    open_critical = sum(
        1
        for status, criticality in rows
        if status in models.OPEN_NONCONFORMITY_STATUSES and conformity.is_critical(criticality)
    )
    return {
        "total": len(rows),
        "by_status": dict(by_status),
        "by_criticality": {str(level): count for level, count in sorted(by_criticality.items())},
        "open_critical": open_critical,
    }


def due_for_alert(
    db: Session,
    *,
    now: datetime,
    warning_hours: float,
) -> list[models.NonConformity]:
    """Open, not yet alerted records whose SLA is past or inside the window."""

    horizon = now + timedelta(hours=warning_hours)
    candidates = (
        db.query(models.NonConformity)
        .filter(
            models.NonConformity.status.in_(models.OPEN_NONCONFORMITY_STATUSES),
            models.NonConformity.sla_alerted_at.is_(None),
        )
        .all()
    )
    return [nc for nc in candidates if as_utc(nc.sla_deadline) <= horizon]


def mark_alerted(
    db: Session,
    nc: models.NonConformity,
    *,
    now: datetime,
) -> models.NonConformity:
    return audit.update(
        db,
        nc,
        {"sla_alerted_at": now},
        actor_id=None,
        context=audit.SYSTEM_CONTEXT,
    )
