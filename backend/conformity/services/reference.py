"""Reference data consumed by the conformity engine."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from .. import models, rbac

# purpose: idempotently provision roles and criticality levels
# status: active

logger = logging.getLogger(__name__)

CRITICALITY_LEVELS: list[dict[str, object]] = [
    {"code": "NC1", "level": 1, "label": "Mineure", "max_treatment_hours": 168},
    {"code": "NC2", "level": 2, "label": "Moyenne", "max_treatment_hours": 72},
    {"code": "NC3", "level": 3, "label": "Majeure", "max_treatment_hours": 24},
    {"code": "NC4", "level": 4, "label": "Critique", "max_treatment_hours": 4},
]


def seed_roles(db: Session) -> int:
    created = 0
    for definition in rbac.DEFAULT_ROLES:
        role = db.query(models.Role).filter(models.Role.name == definition["name"]).first()
        if role is None:
            db.add(models.Role(**definition))
            created += 1
    db.flush()
    return created


def seed_criticality_levels(db: Session) -> int:
    created = 0
    for definition in CRITICALITY_LEVELS:
        level = (
            db.query(models.CriticalityLevel)
            .filter(models.CriticalityLevel.code == definition["code"])
            .first()
        )
        if level is None:
            db.add(models.CriticalityLevel(**definition))
            created += 1
    db.flush()
    return created


def seed_all(db: Session) -> dict[str, int]:
    summary = {
        "roles": seed_roles(db),
        "criticality_levels": seed_criticality_levels(db),
    }
    logger.info("reference data seeded: %s", summary)
    return summary
