"""Non-conformity workflow API routes."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from .. import models, rbac, schemas
from ..audit import RequestContext
from ..auth import get_current_user, get_request_context
from ..database import get_db, run_atomic
from ..services import nonconformity

# purpose: expose non-conformity creation, analysis, closure and statistics
# status: active
# depends_on: backend.conformity.services.nonconformity

router = APIRouter(prefix="/api/nonconformities", tags=["nonconformities"])


@router.get("", response_model=list[schemas.NonConformityOut])
def list_nonconformities(
    status_filter: Optional[str] = Query(None, alias="status"),
    criticality: Optional[int] = None,
    test_id: Optional[UUID] = None,
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
):
    return nonconformity.list_nonconformities(
        db,
        actor=user,
        status=status_filter,
        criticality=criticality,
        test_id=test_id,
    )


@router.get("/stats", response_model=schemas.NonConformityStats)
def nonconformity_stats(
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
):
    return nonconformity.stats(db, actor=user)


@router.post("", response_model=schemas.NonConformityOut, status_code=status.HTTP_201_CREATED)
def create_nonconformity(
    payload: schemas.NonConformityCreate,
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
):
    nc = run_atomic(
        db,
        lambda retried: nonconformity.create_manual(db, actor=user, context=context, **payload.model_dump()),
    )
    db.refresh(nc)
    return nc


@router.get("/{nc_id}", response_model=schemas.NonConformityOut)
def get_nonconformity(
    nc_id: UUID,
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
):
    rbac.ensure_allowed(user, rbac.NON_CONFORMITIES, "read")
    return nonconformity.get_nonconformity(db, nc_id)


def _apply(db, nc_id, action):
    def operation(retried: bool):
        return action(nonconformity.get_nonconformity(db, nc_id))

    nc = run_atomic(db, operation)
    db.refresh(nc)
    return nc


@router.patch("/{nc_id}", response_model=schemas.NonConformityOut)
def update_nonconformity(
    nc_id: UUID,
    payload: schemas.NonConformityUpdate,
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
):
    values = payload.model_dump(exclude_unset=True)
    return _apply(
        db,
        nc_id,
        lambda nc: nonconformity.update_nonconformity(db, nc, values, actor=user, context=context),
    )


@router.post("/{nc_id}/analyze", response_model=schemas.NonConformityOut)
def analyze_nonconformity(
    nc_id: UUID,
    payload: schemas.NonConformityAnalysis,
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
):
    return _apply(
        db,
        nc_id,
        lambda nc: nonconformity.analyze(
            db,
            nc,
            actor=user,
            root_cause=payload.root_cause,
            corrective_actions=payload.corrective_actions,
            context=context,
        ),
    )


@router.post("/{nc_id}/close", response_model=schemas.NonConformityOut)
def close_nonconformity(
    nc_id: UUID,
    payload: schemas.NonConformityClosure,
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
):
    return _apply(
        db,
        nc_id,
        lambda nc: nonconformity.close(db, nc, actor=user, comment=payload.comment, context=context),
    )


@router.post("/{nc_id}/reopen", response_model=schemas.NonConformityOut)
def reopen_nonconformity(
    nc_id: UUID,
    payload: schemas.NonConformityReopen,
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
):
    return _apply(
        db,
        nc_id,
        lambda nc: nonconformity.reopen(db, nc, actor=user, reason=payload.reason, context=context),
    )


@router.delete("/{nc_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_nonconformity(
    nc_id: UUID,
    db: Session = Depends(get_db),
    user: models.Personnel = Depends(get_current_user),
    context: RequestContext = Depends(get_request_context),
):
    def operation(retried: bool):
        nc = nonconformity.get_nonconformity(db, nc_id)
        nonconformity.delete_nonconformity(db, nc, actor=user, context=context)

    run_atomic(db, operation)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
