"""Seal management for finalized industrial tests."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from .. import audit, models, rbac
from ..errors import InvalidStateTransition, LockedRecordError, ValidationError
from . import conformity, nonconformity

# purpose: keep finalized tests and their measurements read-only outside the audited override path
# status: active
# depends_on: backend.conformity.audit.tracking

logger = logging.getLogger(__name__)

LOCK_OVERRIDE_TAG = "LOCK_OVERRIDE"


def ensure_unlocked(test: models.IndustrialTest) -> None:
    """Fail fast when ``test`` is sealed."""

    if test.is_locked:
        raise LockedRecordError(f"test {test.number} is locked", test_id=str(test.id))


def seal(test: models.IndustrialTest, *, now: datetime | None = None) -> None:
    test.is_locked = True
    test.locked_at = now or datetime.now(timezone.utc)


def unlock(
    db: Session,
    test: models.IndustrialTest,
    *,
    actor: models.Personnel,
    reason: str | None,
    context: audit.RequestContext | None = None,
) -> models.IndustrialTest:
    """Lift the seal of a finalized test through the privileged override."""

    rbac.ensure_allowed(actor, rbac.TESTS, "unlock", test)
    if not test.is_locked:
        raise InvalidStateTransition(f"test {test.number} is not locked")
    if not reason or not reason.strip():
        raise ValidationError("an unlock reason is required")
    audit.update(
        db,
        test,
        {"is_locked": False, "locked_at": None, "lock_override_reason": reason.strip()},
        actor_id=actor.id,
        context=context,
        tag=LOCK_OVERRIDE_TAG,
    )
    logger.warning("test %s unlocked by %s: %s", test.number, actor.email, reason.strip())
    return test


def relock(
    db: Session,
    test: models.IndustrialTest,
    *,
    actor: models.Personnel,
    context: audit.RequestContext | None = None,
) -> models.IndustrialTest:
    """Seal an overridden test again, refreshing its aggregate result."""

    rbac.ensure_allowed(actor, rbac.TESTS, "unlock", test)
    if test.is_locked:
        raise InvalidStateTransition(f"test {test.number} is already locked")
    if test.status != models.TestStatus.TERMINE.value:
        raise InvalidStateTransition(f"only finished tests can be sealed, test is {test.status}")
    with audit.tracking(db, test, actor_id=actor.id, context=context, tag=LOCK_OVERRIDE_TAG):
        result = conformity.aggregate_result(test.measurements)
        test.result = result.value
        test.conformity_rate = conformity.conformity_rate(test.measurements)
        seal(test)
    if result != models.TestResult.CONFORME:
        nonconformity.trigger_for_test(db, test, actor=actor, context=context)
    logger.info("test %s relocked by %s", test.number, actor.email)
    return test
