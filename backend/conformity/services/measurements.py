"""Measurement recording scoped to an industrial test."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from .. import audit, models, rbac
from ..errors import NotFoundError, ValidationError
from . import conformity, lifecycle, locking, nonconformity

# purpose: persist readings with server-side derivation and trigger non-conformities on critical failures
# status: active

logger = logging.getLogger(__name__)

_RAW_FIELDS = {
    "parameter",
    "measured_value",
    "reference_value",
    "tolerance_min",
    "tolerance_max",
    "unit",
    "criticality",
    "measured_at",
}
_DERIVED_FIELDS = {"deviation_abs", "deviation_pct", "is_conform"}


def _validate(measurement: models.Measurement) -> None:
    if not measurement.parameter:
        raise ValidationError("a parameter name is required")
    if measurement.measured_value is None:
        raise ValidationError("a measured value is required")
    if (
        measurement.tolerance_min is not None
        and measurement.tolerance_max is not None
        and measurement.tolerance_min > measurement.tolerance_max
    ):
        raise ValidationError("tolerance_min exceeds tolerance_max")
    if measurement.criticality is not None and not 1 <= measurement.criticality <= 4:
        raise ValidationError("criticality must be between 1 and 4")


def list_measurements(
    db: Session,
    test: models.IndustrialTest,
    *,
    actor: models.Personnel,
) -> list[models.Measurement]:
    rbac.ensure_allowed(actor, rbac.MEASUREMENTS, "read")
    return list(test.measurements)


def get_measurement(
    db: Session,
    test: models.IndustrialTest,
    measurement_id: UUID,
) -> models.Measurement:
    measurement = db.get(models.Measurement, measurement_id)
    if measurement is None or measurement.test_id != test.id:
        raise NotFoundError(f"measurement {measurement_id} not found on test {test.number}")
    return measurement


def create_measurement(
    db: Session,
    test: models.IndustrialTest,
    values: dict[str, Any],
    *,
    actor: models.Personnel,
    checklist_item_id: UUID | None = None,
    context: audit.RequestContext | None = None,
) -> models.Measurement:
    """Record a reading on ``test``, starting the test if it is still planned."""

    rbac.ensure_allowed(actor, rbac.MEASUREMENTS, "create", test)
    locking.ensure_unlocked(test)
    lifecycle.ensure_accepts_measurements(test)

    item = None
    if checklist_item_id is not None:
        item = db.get(models.ChecklistItem, checklist_item_id)
        if item is None:
            raise ValidationError(f"checklist item {checklist_item_id} does not exist")
        if item.test_type_id != test.test_type_id:
            raise ValidationError("checklist item belongs to another test type")

    if test.status == lifecycle.PLANIFIE:
        lifecycle.demarrer(db, test, actor=actor, context=context)

    raw = {key: value for key, value in values.items() if key in _RAW_FIELDS}
    measurement = models.Measurement(
        test=test,
        checklist_item=item,
        operator_id=actor.id,
        **raw,
    )
    if item is not None:
        measurement.parameter = measurement.parameter or item.label
        for field in ("reference_value", "tolerance_min", "tolerance_max", "unit", "criticality"):
            if getattr(measurement, field) is None:
                setattr(measurement, field, getattr(item, field))
    if measurement.measured_at is None:
        measurement.measured_at = datetime.now(timezone.utc)
    _validate(measurement)
    conformity.apply_derivation(measurement)

    audit.create(db, measurement, actor_id=actor.id, context=context)
    nonconformity.trigger_for_measurement(db, measurement, actor=actor, context=context)
    if measurement.is_conform is False:
        logger.info(
            "measurement %s on test %s is out of tolerance (%s)",
            measurement.parameter,
            test.number,
            measurement.measured_value,
        )
    return measurement


def update_measurement(
    db: Session,
    measurement: models.Measurement,
    values: dict[str, Any],
    *,
    actor: models.Personnel,
    context: audit.RequestContext | None = None,
) -> models.Measurement:
    rbac.ensure_allowed(actor, rbac.MEASUREMENTS, "update", measurement)
    locking.ensure_unlocked(measurement.test)
    lifecycle.ensure_accepts_measurements(measurement.test)
    unknown = set(values) - _RAW_FIELDS - _DERIVED_FIELDS
    if unknown:
        raise ValidationError(f"fields not updatable: {', '.join(sorted(unknown))}")
    with audit.tracking(db, measurement, actor_id=actor.id, context=context):
        for key, value in values.items():
            if key in _RAW_FIELDS:
                setattr(measurement, key, value)
        _validate(measurement)
        conformity.apply_derivation(measurement)
    nonconformity.trigger_for_measurement(db, measurement, actor=actor, context=context)
    return measurement


def delete_measurement(
    db: Session,
    measurement: models.Measurement,
    *,
    actor: models.Personnel,
    context: audit.RequestContext | None = None,
) -> None:
    rbac.ensure_allowed(actor, rbac.MEASUREMENTS, "delete", measurement)
    locking.ensure_unlocked(measurement.test)
    referenced = (
        db.query(models.NonConformity)
        .filter(models.NonConformity.measurement_id == measurement.id)
        .first()
    )
    if referenced is not None:
        raise ValidationError(
            f"measurement is referenced by non-conformity {referenced.number}",
            nonconformity_id=str(referenced.id),
        )
    audit.delete(db, measurement, actor_id=actor.id, context=context)
