"""Append-only audit ledger wrapped around the persistence write path."""

# purpose: record one immutable diff entry per committed create/update/delete on audited entities
# status: active
# depends_on: backend.conformity.models.AuditEntry

from __future__ import annotations

import enum
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Iterator, Mapping
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import AuditWriteError, NotFoundError

logger = logging.getLogger(__name__)

HOUSEKEEPING_FIELDS = frozenset(
    field.strip()
    for field in os.getenv("AUDIT_HOUSEKEEPING_FIELDS", "created_at,updated_at,deleted_at").split(",")
    if field.strip()
)

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"


@dataclass(frozen=True)
class AuditedEntity:
    """Audit configuration registered for one mapped class."""

    entity_type: str
    tag: str
    exclude: frozenset[str]


@dataclass(frozen=True)
class RequestContext:
    """Request metadata captured alongside every audit entry."""

    url: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


SYSTEM_CONTEXT = RequestContext(url="system://scheduler")

AUDITED_ENTITIES: dict[type, AuditedEntity] = {}


def audited(entity_type: str, *, tag: str | None = None, exclude: tuple[str, ...] = ()):
    """Register a mapped class with the ledger.

    The classification tag defaults to the upper-cased table name; ``exclude``
    extends the housekeeping fields ignored by the diff.
    """

    def decorator(cls):
        AUDITED_ENTITIES[cls] = AuditedEntity(
            entity_type=entity_type,
            tag=tag or cls.__tablename__.upper(),
            exclude=HOUSEKEEPING_FIELDS | frozenset(exclude),
        )
        return cls

    return decorator


def _config_for(instance: Any) -> AuditedEntity:
    config = AUDITED_ENTITIES.get(type(instance))
    if config is None:
        raise TypeError(f"{type(instance).__name__} is not registered with the audit ledger")
    return config


def _json_safe(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if value is None or isinstance(value, (str, int, float, bool, list, dict)):
        return value
    return str(value)


def snapshot(instance: Any) -> dict[str, Any]:
    """Return the column attributes of ``instance`` as JSON-safe values."""

    mapper = sa.inspect(instance).mapper
    return {attr.key: _json_safe(getattr(instance, attr.key)) for attr in mapper.column_attrs}


def compute_diff(
    old: Mapping[str, Any],
    new: Mapping[str, Any],
    exclude: frozenset[str] | set[str] = HOUSEKEEPING_FIELDS,
) -> dict[str, dict[str, Any]]:
    """Return ``{field: {"old", "new"}}`` for every non-excluded field that differs."""

    changes: dict[str, dict[str, Any]] = {}
    for key in sorted(set(old) | set(new)):
        if key in exclude:
            continue
        before = old.get(key)
        after = new.get(key)
        if before != after:
            changes[key] = {"old": before, "new": after}
    return changes


def _append(
    db: Session,
    *,
    config: AuditedEntity,
    entity_id: Any,
    event: str,
    changes: dict[str, dict[str, Any]],
    actor_id: UUID | None,
    context: RequestContext | None,
    tag: str | None,
):
    from . import models

    context = context or RequestContext()
    entry = models.AuditEntry(
        actor_id=actor_id,
        event=event,
        entity_type=config.entity_type,
        entity_id=str(entity_id),
        changes=changes,
        tag=tag or config.tag,
        url=context.url,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        created_at=datetime.now(timezone.utc),
    )
    try:
        db.add(entry)
        db.flush()
    except SQLAlchemyError as exc:
        logger.error(
            "audit write failed for %s %s (%s): %s",
            config.entity_type,
            entity_id,
            event,
            exc,
        )
        raise AuditWriteError(f"audit entry for {config.entity_type} {entity_id} could not be written") from exc
    return entry


def create(
    db: Session,
    instance: Any,
    *,
    actor_id: UUID | None,
    context: RequestContext | None = None,
    tag: str | None = None,
):
    """Persist a new audited instance and append its ``created`` entry."""

    config = _config_for(instance)
    db.add(instance)
    db.flush()
    changes = compute_diff({}, snapshot(instance), config.exclude)
    _append(
        db,
        config=config,
        entity_id=instance.id,
        event=CREATED,
        changes=changes,
        actor_id=actor_id,
        context=context,
        tag=tag,
    )
    return instance


@contextmanager
def tracking(
    db: Session,
    instance: Any,
    *,
    actor_id: UUID | None,
    context: RequestContext | None = None,
    tag: str | None = None,
) -> Iterator[Any]:
    """Audit every attribute change made to ``instance`` inside the block.

    Writes nothing when only housekeeping fields moved.
    """

    config = _config_for(instance)
    before = snapshot(instance)
    yield instance
    db.flush()
    changes = compute_diff(before, snapshot(instance), config.exclude)
    if not changes:
        return
    _append(
        db,
        config=config,
        entity_id=instance.id,
        event=UPDATED,
        changes=changes,
        actor_id=actor_id,
        context=context,
        tag=tag,
    )


def update(
    db: Session,
    instance: Any,
    values: Mapping[str, Any],
    *,
    actor_id: UUID | None,
    context: RequestContext | None = None,
    tag: str | None = None,
):
    """Apply ``values`` to ``instance`` through the audited write path."""

    with tracking(db, instance, actor_id=actor_id, context=context, tag=tag):
        for key, value in values.items():
            setattr(instance, key, value)
    return instance


def delete(
    db: Session,
    instance: Any,
    *,
    actor_id: UUID | None,
    context: RequestContext | None = None,
    tag: str | None = None,
) -> None:
    """Delete ``instance`` and append its ``deleted`` entry."""

    config = _config_for(instance)
    before = snapshot(instance)
    entity_id = instance.id
    db.delete(instance)
    db.flush()
    _append(
        db,
        config=config,
        entity_id=entity_id,
        event=DELETED,
        changes=compute_diff(before, {}, config.exclude),
        actor_id=actor_id,
        context=context,
        tag=tag,
    )


def refuse_ledger_mutation(mapper, connection, target) -> None:
    raise AuditWriteError("audit entries are append-only")


def list_entries(
    db: Session,
    *,
    event: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    actor_id: UUID | None = None,
    tag: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
):
    from . import models

    query = db.query(models.AuditEntry)
    if event:
        query = query.filter(models.AuditEntry.event == event)
    if entity_type:
        query = query.filter(models.AuditEntry.entity_type == entity_type)
    if entity_id:
        query = query.filter(models.AuditEntry.entity_id == str(entity_id))
    if actor_id:
        query = query.filter(models.AuditEntry.actor_id == actor_id)
    if tag:
        query = query.filter(models.AuditEntry.tag == tag)
    if start:
        query = query.filter(models.AuditEntry.created_at >= start)
    if end:
        query = query.filter(models.AuditEntry.created_at <= end)
    total = query.count()
    items = (
        query.order_by(models.AuditEntry.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def get_entry(db: Session, entry_id: UUID):
    from . import models

    entry = db.get(models.AuditEntry, entry_id)
    if entry is None:
        raise NotFoundError(f"audit entry {entry_id} not found")
    return entry


def generate_report(
    db: Session,
    start: datetime,
    end: datetime,
    actor_id: UUID | None = None,
):
    from . import models

    query = db.query(models.AuditEntry).filter(
        models.AuditEntry.created_at >= start,
        models.AuditEntry.created_at <= end,
    )
    if actor_id:
        query = query.filter(models.AuditEntry.actor_id == actor_id)
    rows = (
        query.with_entities(
            models.AuditEntry.entity_type,
            models.AuditEntry.event,
            func.count(models.AuditEntry.id),
        )
        .group_by(models.AuditEntry.entity_type, models.AuditEntry.event)
        .all()
    )
    return [{"entity_type": r[0], "event": r[1], "count": r[2]} for r in rows]
