from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from . import models
from .errors import AuthorizationDenied

# purpose: single authorization gate combining role matrices and ownership predicates
# status: active

ELEVATED_ACCESS_LEVEL = 3
LOCK_OVERRIDE_LEVEL = 4

TESTS = "tests"
MEASUREMENTS = "measurements"
NON_CONFORMITIES = "non_conformities"
AUDIT = "audit"

_ALL_TEST_ACTIONS = ["create", "read", "update", "delete", "execute", "suspend", "cancel", "unlock"]
_ALL_NC_ACTIONS = ["create", "read", "update", "delete", "analyze", "close"]
_CRUD = ["create", "read", "update", "delete"]

DEFAULT_ROLES: list[dict[str, Any]] = [
    {
        "name": "Admin",
        "access_level": 4,
        "description": "Administrateur système",
        "permissions": {
            TESTS: _ALL_TEST_ACTIONS,
            MEASUREMENTS: _CRUD,
            NON_CONFORMITIES: _ALL_NC_ACTIONS,
            AUDIT: ["read"],
        },
    },
    {
        "name": "Ingénieur",
        "access_level": 3,
        "description": "Ingénieur qualité",
        "permissions": {
            TESTS: ["create", "read", "update", "execute", "suspend", "cancel"],
            MEASUREMENTS: _CRUD,
            NON_CONFORMITIES: ["create", "read", "update", "analyze", "close"],
            AUDIT: ["read"],
        },
    },
    {
        "name": "Technicien",
        "access_level": 2,
        "description": "Technicien de test",
        "permissions": {
            TESTS: ["read", "update", "execute"],
            MEASUREMENTS: _CRUD,
            NON_CONFORMITIES: ["create", "read", "update"],
        },
    },
    {
        "name": "Lecteur",
        "access_level": 1,
        "description": "Consultation uniquement",
        "permissions": {
            TESTS: ["read"],
            MEASUREMENTS: ["read"],
            NON_CONFORMITIES: ["read"],
        },
    },
]

# actions that no role matrix can grant below the listed clearance
_MIN_LEVELS: dict[tuple[str, str], int] = {
    (TESTS, "suspend"): ELEVATED_ACCESS_LEVEL,
    (TESTS, "cancel"): ELEVATED_ACCESS_LEVEL,
    (TESTS, "unlock"): LOCK_OVERRIDE_LEVEL,
    (NON_CONFORMITIES, "analyze"): ELEVATED_ACCESS_LEVEL,
    (NON_CONFORMITIES, "close"): ELEVATED_ACCESS_LEVEL,
}


@dataclass(frozen=True)
class AuthorizationDecision:
    """Outcome of one gate evaluation."""

    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def _owns_test(actor: models.Personnel, test: models.IndustrialTest) -> bool:
    # creator privilege survives reassignment of the responsible
    return actor.id in (test.responsible_id, test.created_by)


def _owns_parent_test(actor: models.Personnel, measurement: Any) -> bool:
    test = measurement if isinstance(measurement, models.IndustrialTest) else measurement.test
    return _owns_test(actor, test)


def _detected_nonconformity(actor: models.Personnel, nc: models.NonConformity) -> bool:
    return nc.detector_id == actor.id


OWNERSHIP_RULES: dict[tuple[str, str], Callable[[models.Personnel, Any], bool]] = {
    (TESTS, "update"): _owns_test,
    (TESTS, "execute"): _owns_test,
    (MEASUREMENTS, "create"): _owns_parent_test,
    (MEASUREMENTS, "update"): _owns_parent_test,
    (MEASUREMENTS, "delete"): _owns_parent_test,
    (NON_CONFORMITIES, "update"): _detected_nonconformity,
}


def access_level(actor: models.Personnel | None) -> int:
    if actor is None or actor.role is None or not actor.role.is_active:
        return 0
    return actor.role.access_level


def is_elevated(actor: models.Personnel | None) -> bool:
    return access_level(actor) >= ELEVATED_ACCESS_LEVEL


def role_allows(actor: models.Personnel, resource: str, action: str) -> bool:
    permissions = actor.role.permissions or {}
    return action in permissions.get(resource, [])


def authorize(
    actor: models.Personnel | None,
    resource: str,
    action: str,
    target: Any = None,
) -> AuthorizationDecision:
    """Decide whether ``actor`` may perform ``action`` on ``resource``.

    The role matrix is consulted first, then the clearance floor of the
    action, then the ownership predicate registered for non-elevated roles.
    """

    if actor is None or not actor.is_active or actor.role is None or not actor.role.is_active:
        return AuthorizationDecision(False, "actor is inactive or has no active role")
    if not role_allows(actor, resource, action):
        return AuthorizationDecision(False, f"role {actor.role.name} may not {action} {resource}")
    floor = _MIN_LEVELS.get((resource, action))
    if floor is not None and access_level(actor) < floor:
        return AuthorizationDecision(False, f"{action} on {resource} requires clearance level {floor}")
    if is_elevated(actor):
        return AuthorizationDecision(True, "elevated clearance")
    rule = OWNERSHIP_RULES.get((resource, action))
    if rule is not None and target is not None and not rule(actor, target):
        return AuthorizationDecision(False, f"actor does not own this {resource} record")
    return AuthorizationDecision(True, "role permission")


def ensure_allowed(
    actor: models.Personnel | None,
    resource: str,
    action: str,
    target: Any = None,
) -> None:
    decision = authorize(actor, resource, action, target)
    if not decision.allowed:
        raise AuthorizationDenied(decision.reason, resource=resource, action=action)


def scope_test_query(actor: models.Personnel, query):
    """Restrict test listings of execution roles to their own tests."""

    if is_elevated(actor) or not role_allows(actor, TESTS, "execute"):
        return query
    return query.filter(
        (models.IndustrialTest.responsible_id == actor.id)
        | (models.IndustrialTest.created_by == actor.id)
    )
