"""Industrial test lifecycle state machine."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from .. import audit, metrics, models, rbac
from ..errors import (
    ConcurrencyConflict,
    IncompleteChecklist,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from . import conformity, locking, nonconformity

# purpose: drive tests from planning to closure with authorization, lock and audit on every move
# status: active
# depends_on: backend.conformity.services.locking, backend.conformity.services.nonconformity

logger = logging.getLogger(__name__)

PLANIFIE = models.TestStatus.PLANIFIE.value
EN_COURS = models.TestStatus.EN_COURS.value
TERMINE = models.TestStatus.TERMINE.value
SUSPENDU = models.TestStatus.SUSPENDU.value
ANNULE = models.TestStatus.ANNULE.value

# transition -> (permission action, allowed source states, target state)
TRANSITIONS: dict[str, tuple[str, frozenset[str], str]] = {
    "demarrer": ("execute", frozenset({PLANIFIE}), EN_COURS),
    "terminer": ("execute", frozenset({EN_COURS}), TERMINE),
    "suspendre": ("suspend", frozenset({PLANIFIE, EN_COURS}), SUSPENDU),
    "annuler": ("cancel", frozenset({PLANIFIE, EN_COURS, SUSPENDU}), ANNULE),
}

_UPDATABLE_FIELDS = {"responsible_id", "criticality", "location", "planned_date", "observations"}
_REQUIRED_FIELDS = {"criticality"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_number(db: Session, now: datetime | None = None) -> str:
    now = now or _utcnow()
    prefix = f"TEST-{now:%Y}-"
    last = (
        db.query(models.IndustrialTest.number)
        .filter(models.IndustrialTest.number.like(f"{prefix}%"))
        .order_by(models.IndustrialTest.number.desc())
        .first()
    )
    sequence = int(last[0].rsplit("-", 1)[-1]) + 1 if last else 1
    return f"{prefix}{sequence:03d}"


def get_test(db: Session, test_id: UUID, *, for_update: bool = False) -> models.IndustrialTest:
    query = db.query(models.IndustrialTest).filter(models.IndustrialTest.id == test_id)
    if for_update:
        query = query.with_for_update()
    test = query.first()
    if test is None:
        raise NotFoundError(f"test {test_id} not found")
    return test


def list_tests(
    db: Session,
    *,
    actor: models.Personnel,
    status: str | None = None,
    responsible_id: UUID | None = None,
    test_type_id: UUID | None = None,
) -> list[models.IndustrialTest]:
    rbac.ensure_allowed(actor, rbac.TESTS, "read")
    query = rbac.scope_test_query(actor, db.query(models.IndustrialTest))
    if status:
        query = query.filter(models.IndustrialTest.status == status)
    if responsible_id:
        query = query.filter(models.IndustrialTest.responsible_id == responsible_id)
    if test_type_id:
        query = query.filter(models.IndustrialTest.test_type_id == test_type_id)
    return query.order_by(models.IndustrialTest.created_at.desc()).all()


def _validate_criticality(criticality: int | None) -> None:
    if criticality is not None and not 1 <= criticality <= 4:
        raise ValidationError("criticality must be between 1 and 4")


def _validate_responsible(db: Session, responsible_id: UUID | None) -> None:
    if responsible_id is not None and db.get(models.Personnel, responsible_id) is None:
        raise ValidationError(f"responsible {responsible_id} does not exist")


def create_test(
    db: Session,
    *,
    actor: models.Personnel,
    test_type_id: UUID,
    criticality: int = 1,
    responsible_id: UUID | None = None,
    location: str | None = None,
    planned_date: datetime | None = None,
    observations: str | None = None,
    context: audit.RequestContext | None = None,
) -> models.IndustrialTest:
    rbac.ensure_allowed(actor, rbac.TESTS, "create")
    test_type = db.get(models.TestType, test_type_id)
    if test_type is None or not test_type.is_active:
        raise ValidationError(f"test type {test_type_id} is unknown or inactive")
    _validate_criticality(criticality)
    _validate_responsible(db, responsible_id)
    test = models.IndustrialTest(
        number=next_number(db),
        test_type_id=test_type.id,
        status=PLANIFIE,
        criticality=criticality,
        responsible_id=responsible_id,
        created_by=actor.id,
        location=location,
        planned_date=planned_date,
        observations=observations,
    )
    audit.create(db, test, actor_id=actor.id, context=context)
    logger.info("test %s planned by %s", test.number, actor.email)
    return test


def update_test(
    db: Session,
    test: models.IndustrialTest,
    values: dict[str, Any],
    *,
    actor: models.Personnel,
    context: audit.RequestContext | None = None,
) -> models.IndustrialTest:
    rbac.ensure_allowed(actor, rbac.TESTS, "update", test)
    locking.ensure_unlocked(test)
    unknown = set(values) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"fields not updatable: {', '.join(sorted(unknown))}")
    cleared = sorted(key for key in _REQUIRED_FIELDS if key in values and values[key] is None)
    if cleared:
        raise ValidationError(f"fields cannot be null: {', '.join(cleared)}")
    _validate_criticality(values.get("criticality"))
    _validate_responsible(db, values.get("responsible_id"))
    return audit.update(db, test, values, actor_id=actor.id, context=context)


def delete_test(
    db: Session,
    test: models.IndustrialTest,
    *,
    actor: models.Personnel,
    context: audit.RequestContext | None = None,
) -> None:
    rbac.ensure_allowed(actor, rbac.TESTS, "delete", test)
    locking.ensure_unlocked(test)
    for nc in list(test.nonconformities):
        audit.delete(db, nc, actor_id=actor.id, context=context)
    for measurement in list(test.measurements):
        audit.delete(db, measurement, actor_id=actor.id, context=context)
    db.expire(test, ["measurements", "nonconformities"])
    number = test.number
    audit.delete(db, test, actor_id=actor.id, context=context)
    logger.info("test %s deleted by %s", number, actor.email)


def _guard(
    test: models.IndustrialTest,
    name: str,
    *,
    actor: models.Personnel,
    expected_version: int | None,
    retried: bool,
) -> str:
    action, sources, target = TRANSITIONS[name]
    rbac.ensure_allowed(actor, rbac.TESTS, action, test)
    # a row already in the target state was moved by a request that won the race
    if test.status == target or (retried and test.status not in sources):
        raise ConcurrencyConflict(
            f"test {test.number} moved to {test.status} during {name}",
            current_status=test.status,
        )
    locking.ensure_unlocked(test)
    if expected_version is not None and test.version != expected_version:
        raise ConcurrencyConflict(
            f"test {test.number} is at version {test.version}, expected {expected_version}",
            current_version=test.version,
        )
    if test.status not in sources:
        raise InvalidStateTransition(
            f"cannot {name} a test in status {test.status}",
            current_status=test.status,
        )
    return target


def _applied(test: models.IndustrialTest, name: str, actor: models.Personnel | None) -> None:
    metrics.TEST_TRANSITIONS.labels(name).inc()
    logger.info(
        "test %s %s -> %s by %s",
        test.number,
        name,
        test.status,
        actor.email if actor else "system",
    )


def demarrer(
    db: Session,
    test: models.IndustrialTest,
    *,
    actor: models.Personnel,
    context: audit.RequestContext | None = None,
    expected_version: int | None = None,
    retried: bool = False,
) -> models.IndustrialTest:
    target = _guard(test, "demarrer", actor=actor, expected_version=expected_version, retried=retried)
    with audit.tracking(db, test, actor_id=actor.id, context=context):
        test.status = target
        test.started_at = _utcnow()
    _applied(test, "demarrer", actor)
    return test


def terminer(
    db: Session,
    test: models.IndustrialTest,
    *,
    actor: models.Personnel,
    context: audit.RequestContext | None = None,
    expected_version: int | None = None,
    retried: bool = False,
) -> models.IndustrialTest:
    """Finish a running test, aggregate its result and seal it."""

    target = _guard(test, "terminer", actor=actor, expected_version=expected_version, retried=retried)
    missing = conformity.missing_mandatory_items(test)
    if missing:
        raise IncompleteChecklist(
            f"{len(missing)} mandatory checklist item(s) have no measurement",
            [str(item.id) for item in missing],
        )
    now = _utcnow()
    with audit.tracking(db, test, actor_id=actor.id, context=context):
        test.status = target
        test.finished_at = now
        if test.started_at is not None:
            elapsed = now - nonconformity.as_utc(test.started_at)
            test.actual_duration_hours = round(elapsed.total_seconds() / 3600, 2)
        test.result = conformity.aggregate_result(test.measurements).value
        test.conformity_rate = conformity.conformity_rate(test.measurements)
        locking.seal(test, now=now)
    nonconformity.trigger_for_test(db, test, actor=actor, context=context)
    _applied(test, "terminer", actor)
    return test


def _interrupt(
    db: Session,
    test: models.IndustrialTest,
    name: str,
    *,
    actor: models.Personnel,
    reason: str | None,
    context: audit.RequestContext | None,
    expected_version: int | None,
    retried: bool,
) -> models.IndustrialTest:
    target = _guard(test, name, actor=actor, expected_version=expected_version, retried=retried)
    if not reason or not reason.strip():
        raise ValidationError(f"a reason is required to {name} a test")
    with audit.tracking(db, test, actor_id=actor.id, context=context):
        test.status = target
        test.status_reason = reason.strip()
    _applied(test, name, actor)
    return test


def suspendre(
    db: Session,
    test: models.IndustrialTest,
    *,
    actor: models.Personnel,
    reason: str | None,
    context: audit.RequestContext | None = None,
    expected_version: int | None = None,
    retried: bool = False,
) -> models.IndustrialTest:
    return _interrupt(
        db,
        test,
        "suspendre",
        actor=actor,
        reason=reason,
        context=context,
        expected_version=expected_version,
        retried=retried,
    )


def annuler(
    db: Session,
    test: models.IndustrialTest,
    *,
    actor: models.Personnel,
    reason: str | None,
    context: audit.RequestContext | None = None,
    expected_version: int | None = None,
    retried: bool = False,
) -> models.IndustrialTest:
    return _interrupt(
        db,
        test,
        "annuler",
        actor=actor,
        reason=reason,
        context=context,
        expected_version=expected_version,
        retried=retried,
    )


def ensure_accepts_measurements(test: models.IndustrialTest) -> None:
    if test.status in (SUSPENDU, ANNULE):
        raise InvalidStateTransition(
            f"test {test.number} is {test.status} and does not accept measurements",
            current_status=test.status,
        )
