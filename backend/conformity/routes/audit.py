from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import audit, models, rbac, schemas
from ..auth import get_current_user
from ..database import get_db

# purpose: read-only query surface over the audit ledger
# status: active

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/entries", response_model=schemas.AuditEntryPage)
def list_entries(
    event: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    actor_id: Optional[UUID] = None,
    tag: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
):
    rbac.ensure_allowed(user, rbac.AUDIT, "read")
    items, total = audit.list_entries(
        db,
        event=event,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        tag=tag,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return {"items": items, "total": total, "limit": limit, "offset": offset}


@router.get("/entries/{entry_id}", response_model=schemas.AuditEntryOut)
def get_entry(
    entry_id: UUID,
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
):
    rbac.ensure_allowed(user, rbac.AUDIT, "read")
    return audit.get_entry(db, entry_id)


@router.get("/report", response_model=list[schemas.AuditReportItem])
def audit_report(
    start: datetime,
    end: datetime,
    actor_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
):
    rbac.ensure_allowed(user, rbac.AUDIT, "read")
    return audit.generate_report(db, start, end, actor_id)
