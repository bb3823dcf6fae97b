"""Pydantic schemas for the non-conformity workflow."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class NonConformityCreate(BaseModel):
    test_id: UUID
    measurement_id: Optional[UUID] = None
    criticality: Optional[int] = Field(default=None, ge=1, le=4)
    nc_type: Optional[str] = None
    description: Optional[str] = None
    potential_impact: Optional[str] = None


class NonConformityUpdate(BaseModel):
    nc_type: Optional[str] = None
    description: Optional[str] = None
    potential_impact: Optional[str] = None


class NonConformityAnalysis(BaseModel):
    root_cause: Optional[str] = None
    corrective_actions: Optional[str] = None


class NonConformityClosure(BaseModel):
    comment: Optional[str] = None


class NonConformityReopen(BaseModel):
    reason: Optional[str] = None


class NonConformityOut(BaseModel):
    id: UUID
    number: str
    test_id: UUID
    measurement_id: Optional[UUID] = None
    criticality: int
    status: str
    origin: str
    nc_type: Optional[str] = None
    description: Optional[str] = None
    potential_impact: Optional[str] = None
    detected_at: datetime
    sla_deadline: datetime
    detector_id: Optional[UUID] = None
    occurrence_count: int
    root_cause: Optional[str] = None
    corrective_actions: Optional[str] = None
    analyzed_by_id: Optional[UUID] = None
    closed_at: Optional[datetime] = None
    closed_by_id: Optional[UUID] = None
    closure_comment: Optional[str] = None
    reopen_reason: Optional[str] = None
    sla_alerted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NonConformityStats(BaseModel):
    total: int
    by_status: dict[str, int]
    by_criticality: dict[str, int]
    open_critical: int
